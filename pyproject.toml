[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fusewire"
version = "0.1.0"
description = "Low-level FUSE kernel protocol: mount, decode requests, encode replies"
requires-python = ">=3.10"
dependencies = []
keywords = ["fuse", "filesystem", "kernel", "protocol", "userspace", "fusermount"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["fusewire"]

[tool.pytest.ini_options]
addopts = "-ra"
