[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "modemlink"
version = "0.1.0"
description = "Cellular modem link layer: DTE command channel, CMUX multiplexing and PPP network interface glue"
requires-python = ">=3.10"
dependencies = []
keywords = ["modem", "cmux", "at-commands", "ppp", "serial", "termios"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["modemlink"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
