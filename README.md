# fuzzharness

A harness for fuzzing command-line tools with mutated input files.

Each loop follows the same steps:

1. It takes a folder of valid input files and makes broken variants of them with the external
   `create_broken_files` program.
2. It runs the tool under test on every variant.
3. It saves each file whose run counts as broken into the broken files folder. A run counts as broken when
   its output holds a crash marker, its exit status is not in the allowed list, it ends by a signal, or it
   hits the timeout.
4. If `minimize_output` is set, it can also reduce each saved file with the external `minimizer` program.

When `grouping` is greater than 1 and the tool supports it, files are first checked in groups. Only the files
of groups that turn out broken are then checked one by one, and copies of those groups are kept in
`custom_folder_path`.

Two kinds of target are supported:

- **ruff** (`RuffProgram`): the linter (`lint_check`), the fixer (`lint_check_fix`), the formatter
  (`format`) or `red_knot`, with crash markers built in.
- **custom** (`CustomProgram`): any command. The command is split on `|`. `FILE_PATHS_TO_PROVIDE` is
  replaced by the checked file path, and the search and ignore strings come from the configuration.

## Running

```
fuzzharness [TIMEOUT_SECONDS]
```

The optional argument sets after how many seconds the run stops starting new work. Settings are read from
`fuzz_settings.toml` in the current directory:

- The `[general]` section holds the common settings.
- The section named by `current_mode` describes the tool. A mode name that contains `custom` selects a
  custom tool; `ruff` selects ruff.

An example for a custom tool:

```toml
[general]
current_mode = "custom_mytool"
loop_number = 10
broken_files_for_each_file = 5
timeout = 0
allowed_error_statuses = "0,1"
error_when_found_signal = true
ignore_timeout_errors = false
grouping = 1
max_collected_files = 100000
temp_folder = "tmp/work"
temp_possible_broken_files_dir = "tmp/generated"
custom_folder_path = "tmp/groups"
minimize_output = false
minimization_attempts = 300
minimization_repeat = false
minimization_attempts_with_signal_timeout = 50
remove_non_crashing_items_from_broken_files = false
find_minimal_rules = false
check_if_file_is_parsable = false
check_for_stability = false
stability_runs = 3
debug_print_results = false
debug_print_broken_files_creator = false
debug_executed_commands = false

[custom_mytool]
name = "mytool"
extensions = "txt, json"
valid_input_files_dir = "inputs"
broken_files_dir = "broken"
command = "mytool|--check|FILE_PATHS_TO_PROVIDE"
file_type = "text"
group_mode = "none"
stability_mode = "none"
search_item_1 = "panicked at"
ignored_item_1 = "out of memory"
```

For a custom tool, these settings take a fixed set of values:

- `file_type`: one of `text`, `binary`, `js`, `go`, `rust`, `lua`, `python`, `slint`, `jsvuesvelte`.
- `group_mode`: one of `none`, `by_files`, `by_group`.
- `stability_mode`: one of `none`, `console_output`, `file_content`, `output_content`.

A ruff section takes `app_binary`, `app_config`, `additional_minimization_command`, `tool_type` and
`stability_mode` in place of the custom keys.

Two settings in `[general]` make the run do something else:

- **`remove_non_crashing_items_from_broken_files`** re-checks the files already saved. It deletes those that
  no longer crash. For each file that still crashes, it writes a report folder into `temp_folder` holding a
  report text, the file and a zip of it.
- **`find_minimal_rules`** (ruff only). For the linter, it narrows each crashing file down to the smallest
  set of rules that still triggers the problem. It writes report folders and prints a table of how often
  each rule appears. For the formatter, it writes a report folder for each file that still breaks it.

If `check_for_stability` is set and the tool has a stability mode, the harness looks for something else. It
runs each file `stability_runs` times and saves those whose console output or rewritten file content
differs between runs.

## Using it as a library

`fuzzharness.settings.load_settings(path)` reads a TOML, JSON or INI file into a `Setting`.
`fuzzharness.cli.get_object(settings)` builds the program under test from it. The search loops live in:

- `fuzzharness.text_status.find_broken_files_by_text_status`
- `fuzzharness.different_output.find_broken_files_by_different_output`
- `fuzzharness.remove_crashing.remove_non_crashing_files`
- `fuzzharness.minimal_rules.check_code`

The loops stop once the timeout set with `fuzzharness.common.set_timeout` has passed.

## Red-knot runner

```
fuzzharness-red-knot [MAX_SECONDS]
```

This runner works in the current directory and uses four folders there:

- It generates broken Python files from `input` into `temp1`.
- It checks them with `red_knot` in groups, using `temp2` as its working folder.
- It reduces each crashing file with `minimizer`.
- It stores the result, with a log, in `broken`.

The default time limit is 600 seconds.

## What it does not do

The harness does not mutate files or minimize them itself. Both jobs are left to external programs, which
must be on `PATH`:

- `create_broken_files`
- the tool under test (`ruff` for the ruff target)
- `minimizer`, when minimization is used
- `python3`, when ruff files are checked for parsability
- `timeout`, when a timeout is configured