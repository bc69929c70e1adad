[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dtqs"
version = "0.1.0"
description = "Distributed task queue with an HTTP submission API, priority-scheduling workers and a terminal dashboard"
requires-python = ">=3.10"
keywords = ["task queue", "rabbitmq", "postgresql", "workers", "server-sent events"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Environment :: Console :: Curses",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "sqlalchemy>=2.0",
    "pika>=1.3",
    "aiohttp>=3.9",
    "tenacity>=8.2",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
dtqs-api = "dtqs.api:main"
dtqs-worker = "dtqs.worker:main"
dtqs-dashboard = "dtqs.dashboard:main"

[tool.hatch.build.targets.wheel]
packages = ["dtqs"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
