[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chainkeeper"
version = "0.1.0"
description = "Write-ahead log and ledger state storage on SQLite for a chain-following node"
requires-python = ">=3.10"
dependencies = [
    "cbor2",
]
keywords = ["blockchain", "wal", "write-ahead-log", "ledger", "utxo", "sqlite", "storage"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Framework :: AsyncIO",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["chainkeeper"]

[tool.pytest.ini_options]
addopts = "-ra"
