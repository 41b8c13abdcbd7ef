"""A program under test described entirely by the configuration file."""

import subprocess
from collections.abc import Sequence

from .common import CommandLine
from .langs import create_broken_files
from .program import ASAN_ENVS, ProgramConfig, asan_envs_enabled
from .settings import FILE_PATHS_PLACEHOLDER, CheckGroupFileMode, CustomItems, Setting, StabilityMode


class CustomProgram(ProgramConfig):
    """A tool run with a configured command line and judged by configured output texts."""

    def __init__(self, settings: Setting, custom_items: CustomItems | None = None) -> None:
        super().__init__(settings)
        items = custom_items if custom_items is not None else settings.custom_items
        if items is None:
            raise ValueError("Custom program needs custom items in the settings")
        self.custom_items = items

    def broken_items(self) -> list[str]:
        return list(self.custom_items.search_items)

    def ignored_items(self) -> list[str]:
        return list(self.custom_items.ignored_items)

    def is_broken(self, content: str) -> bool:
        found = any(item in content for item in self.custom_items.search_items)
        return found and not self.ignored_signal_output(content)

    def stability_mode(self) -> StabilityMode:
        return self.custom_items.stability_mode

    def ignored_signal_output(self, output: str) -> bool:
        return any(item in output for item in self.custom_items.ignored_items)

    def _command_with(self, replacement: str) -> CommandLine:
        command = self.basic_run_command()
        command.add(*(part.replace(FILE_PATHS_PLACEHOLDER, replacement) for part in self.custom_items.command_parts[1:]))
        return command

    def get_full_command(self, full_name: str) -> CommandLine:
        command = self._command_with(full_name)
        if asan_envs_enabled():
            command.env.update(ASAN_ENVS)
        return command

    def get_group_command(self, files: Sequence[str]) -> CommandLine:
        return self._command_with(" ".join(files))

    def basic_run_command(self) -> CommandLine:
        return CommandLine(self.custom_items.command_parts[0])

    def broken_file_creator(self) -> subprocess.Popen:
        return create_broken_files(self.settings, self.custom_items.file_type)

    def files_group_mode(self) -> CheckGroupFileMode:
        return self.custom_items.group_mode