[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "jccobj"
version = "1.0.0"
description = "Tools for MVS object decks: ESD/XSD symbol renaming and a RENT-aware prelinker"
requires-python = ">=3.10"
dependencies = []
keywords = ["mvs", "object deck", "esd", "xsd", "prelink", "ebcdic", "linker"]
classifiers = [
    "Development Status :: 4 - Beta",
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
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
objscan = "jccobj.objscan:main"
prelink = "jccobj.prelink:main"

[tool.hatch.build.targets.wheel]
packages = ["jccobj"]

[tool.pytest.ini_options]
addopts = "-ra"
