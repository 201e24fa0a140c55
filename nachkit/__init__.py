"""COFF/NOFF object conversion, MIPS disassembly and interpretation, and sector-based disk storage."""

__version__ = "0.1.0"