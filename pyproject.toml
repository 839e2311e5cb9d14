[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "usdcrate"
version = "0.1.4"
description = "Reader for binary USD crate (.usdc) files and the crate layers inside USDZ archives"
requires-python = ">=3.10"
keywords = ["usd", "usdc", "usdz", "crate", "3d", "scene description"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics :: 3D Modeling",
    "Topic :: File Formats",
]
dependencies = [
    "lz4",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["usdcrate"]

[tool.pytest.ini_options]
addopts = "-ra"
