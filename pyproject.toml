[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fuzzharness"
version = "0.1.0"
description = "Fuzzing harness that mutates input files, runs a tool on them and collects the files that make it crash"
requires-python = ">=3.11"
keywords = ["fuzzing", "testing", "crash", "minimization", "ruff"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
    "Topic :: Software Development :: Quality Assurance",
]
dependencies = [
    "humanize",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
fuzzharness = "fuzzharness.cli:main"
fuzzharness-red-knot = "fuzzharness.red_knot:main"

[tool.hatch.build.targets.wheel]
packages = ["fuzzharness"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 110
target-version = "py311"
