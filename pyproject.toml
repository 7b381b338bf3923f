[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "apfsds"
version = "0.2.0"
description = "Proxy client toolkit: configuration, SOCKS5 CONNECT front end, tunnel DNS encoding, emergency shutdown checks and a management CLI"
requires-python = ">=3.11"
keywords = ["proxy", "socks5", "dns", "tun", "cli", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
]
dependencies = [
    "requests>=2.28",
    "tabulate>=0.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7",
    "pytest-asyncio>=0.21",
    "responses>=0.23",
]

[project.scripts]
apfsds-cli = "apfsds.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["apfsds"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
