[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "comlink"
version = "0.1.0"
description = "Durable append-only message logs and ordering policies for partially ordered group conversations"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "distributed-systems",
    "message-log",
    "write-ahead-log",
    "causal-order",
    "total-order",
    "vector-clock",
    "group-communication",
]
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
    "Topic :: System :: Distributed Computing",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["comlink"]

[tool.hatch.build.targets.sdist]
include = ["comlink", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
