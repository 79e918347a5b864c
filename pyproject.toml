[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "muxagent"
version = "0.1.0"
description = "Machine-side relay library for coding-agent sessions: encrypted RPC routing, event buffering and local key storage"
requires-python = ">=3.10"
keywords = [
    "agent",
    "relay",
    "rpc",
    "end-to-end encryption",
    "xchacha20-poly1305",
    "hkdf",
    "event buffer",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: Security :: Cryptography",
    "Typing :: Typed",
]
dependencies = [
    "cryptography",
    "pynacl",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["muxagent"]

[tool.hatch.build.targets.sdist]
include = [
    "muxagent",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
check_untyped_defs = true
