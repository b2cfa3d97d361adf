[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "celestia_node"
version = "0.1.0"
description = "Header stores, a header syncer and a JSON-RPC client for Celestia data availability nodes"
requires-python = ">=3.10"
keywords = ["celestia", "blockchain", "data-availability", "light-node", "headers", "json-rpc", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "platformdirs",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["celestia_node"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
