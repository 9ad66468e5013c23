[build-system]
requires = ["setuptools>=61.0"]
build-backend = "setuptools.build_meta"

[project]
name = "migrateflow"
version = "0.1.0"
description = "Run versioned up and down migrations from a source against a database, with locking, dirty-state tracking and migration file scaffolding."
requires-python = ">=3.10"
dependencies = []
keywords = ["migrations", "database", "schema", "versioning", "sql"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["migrateflow*"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
