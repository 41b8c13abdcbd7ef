"""Harness for fuzzing command-line tools with mutated input files and collecting crashing inputs."""

__version__ = "0.1.0"