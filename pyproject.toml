[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pgpackets"
version = "0.1.0"
description = "Parsing and serialization of OpenPGP packets: framing, public keys, signatures and MDC-protected encrypted data"
requires-python = ">=3.10"
keywords = ["openpgp", "pgp", "rfc4880", "packets", "signatures", "cryptography"]
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
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["pgpackets"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
