[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "espflasher"
version = "0.1.0"
description = "Host-side loader for flashing and loading programs into ESP chips over UART or SPI"
requires-python = ">=3.10"
dependencies = []
keywords = ["esp32", "esp8266", "flasher", "bootloader", "slip", "embedded"]
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
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["espflasher"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
