[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "qflash"
version = "0.1.0"
description = "Sahara programmer loading, packet layouts, device channels and checksums for Qualcomm-based cellular modules"
requires-python = ">=3.10"
keywords = ["sahara", "modem", "emergency-download", "ramdump", "md5", "crc16"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
]
dependencies = [
    "pyserial",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["qflash"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
