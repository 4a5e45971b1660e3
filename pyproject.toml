[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "magikoopa"
version = "0.1.0"
description = "Patch toolkit for 3DS title code: hook linking, loader and new-code insertion, exheader fixing"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "3ds",
    "romhacking",
    "patching",
    "hooks",
    "exheader",
    "arm",
    "symbols",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
magikoopa = "magikoopa.patchmaker:main"

[tool.hatch.build.targets.wheel]
packages = ["magikoopa"]

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
