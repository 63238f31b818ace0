[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "breakpad-syms"
version = "0.1.0"
description = "Parse Breakpad text-format symbol files and evaluate their STACK CFI and STACK WIN unwinding rules."
requires-python = ">=3.10"
dependencies = []
keywords = ["breakpad", "symbols", "crash", "stack", "unwinding", "cfi", "debugging"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["breakpad_syms"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
