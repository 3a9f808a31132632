[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pgflex"
version = "0.1.0"
description = "Helpers for highly available PostgreSQL clusters: Barman backup configuration and scheduling, restore targeting, health checks, admin SQL helpers and API responses."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "postgresql",
    "barman",
    "backup",
    "restore",
    "health-checks",
    "replication",
    "high-availability",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: System :: Archiving :: Backup",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
flexctl = "pgflex.flexctl:main"
failover_validation = "pgflex.failover:main"

[tool.hatch.build.targets.wheel]
packages = ["pgflex"]

[tool.hatch.build.targets.sdist]
include = ["pgflex", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
