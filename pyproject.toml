[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pulsedaemon"
version = "1.0.0"
description = "A small TCP daemon that answers each client with a one-line health pulse of the host: CPU load, database presence, uptime, disk and memory."
requires-python = ">=3.10"
keywords = ["monitoring", "health-check", "daemon", "metrics", "database", "heartbeat"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Networking :: Monitoring",
]
dependencies = [
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
pulsedaemon = "pulsedaemon.server:main"

[tool.hatch.build.targets.wheel]
packages = ["pulsedaemon"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
