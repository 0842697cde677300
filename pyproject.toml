[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "proxyrules"
version = "0.1.0"
description = "Rule-based proxy configuration parsing and connection routing"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["proxy", "rules", "routing", "dns", "configuration", "yaml"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
proxyrules = "proxyrules.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["proxyrules"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
