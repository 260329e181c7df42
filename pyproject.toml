[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "agatekv"
version = "0.1.0"
description = "Building blocks of an LSM-tree key-value store: write-ahead log, value log, watermarks and merge iteration"
requires-python = ">=3.10"
dependencies = []
keywords = ["key-value", "lsm-tree", "storage", "wal", "value-log", "database"]
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
    "Topic :: Database :: Database Engines/Servers",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["agatekv"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
