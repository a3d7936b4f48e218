[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dnstunnel"
version = "0.1.0"
description = "Building blocks for tunnelling IP over DNS: tun devices, user tables and DNS header handling"
requires-python = ">=3.10"
dependencies = []
keywords = ["dns", "tunnel", "tun", "networking", "ip-over-dns"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["dnstunnel"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
