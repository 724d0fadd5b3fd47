[build-system]
requires = ["setuptools>=61.0"]
build-backend = "setuptools.build_meta"

[project]
name = "mallocsim"
version = "0.1.0"
description = "A simulated heap, an implicit-free-list allocator and a trace-driven driver that scores it"
requires-python = ">=3.10"
dependencies = []
keywords = ["malloc", "allocator", "heap", "simulation", "teaching", "memory", "trace"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Education",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
mdriver = "mallocsim.driver:main"

[tool.setuptools.packages.find]
include = ["mallocsim*"]

[tool.pytest.ini_options]
addopts = "-ra"
