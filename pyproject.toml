[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vulnfeeds"
version = "0.1.0"
description = "Parse locally cached vulnerability feeds (NVD, OSV, Debian, Photon, openEuler, EulerOS, GLAD, Node.js) into an in-memory advisory store"
requires-python = ">=3.10"
keywords = ["vulnerability", "security", "advisory", "cve", "osv", "nvd", "debian", "cvss"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
]
dependencies = [
    "packaging",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["vulnfeeds"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
