[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kindnodes"
version = "0.1.0"
description = "Manage local Kubernetes clusters whose nodes run as Docker containers"
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "docker", "containers", "cluster", "nodes"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kindnodes"]

[tool.pytest.ini_options]
addopts = "-ra"
