[build-system]
requires = ["setuptools>=61.0"]
build-backend = "setuptools.build_meta"

[project]
name = "nachkit"
version = "0.1.0"
description = "Toolkit for a teaching operating system: COFF/NOFF object conversion, a MIPS disassembler and interpreter, and sector-based file storage"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "mips",
    "emulator",
    "interpreter",
    "disassembler",
    "coff",
    "noff",
    "disk",
    "operating-systems",
    "education",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: Software Development :: Disassemblers",
    "Topic :: System :: Filesystems",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
nachkit-coff2noff = "nachkit.convert:main_noff"
nachkit-coff2flat = "nachkit.convert:main_flat"
nachkit-disasm = "nachkit.disassembler:main"

[tool.setuptools.packages.find]
include = ["nachkit*"]

[tool.pytest.ini_options]
addopts = "-ra"
