[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "amneziawg"
version = "0.1.0"
description = "Junk packet generation, allowed-IP routing table and UDP bind layer for an AmneziaWG-style tunnel"
requires-python = ">=3.10"
dependencies = []
keywords = ["wireguard", "amneziawg", "vpn", "udp", "obfuscation", "networking"]
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
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["amneziawg"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
