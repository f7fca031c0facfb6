[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "imgrelay"
version = "3.23.0"
description = "Building blocks for an image proxy server: URL signatures, source checks, routing, caching headers, SVG sanitizing, and BMP/ICO handling"
requires-python = ">=3.10"
dependencies = []
keywords = ["image", "proxy", "http", "svg", "bmp", "ico", "signature", "hmac"]
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
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Multimedia :: Graphics",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["imgrelay"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
