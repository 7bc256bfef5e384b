[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "membersync"
version = "0.1.0"
description = "Building blocks for turning Salesforce B2B key-value records into denormalized membership index documents"
requires-python = ">=3.10"
dependencies = [
    "msgpack",
]
keywords = ["membership", "indexer", "key-value", "salesforce", "optimistic-concurrency", "msgpack"]
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
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["membersync"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
