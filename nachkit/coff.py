"""Reading MIPS little-endian COFF object files."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

MIPSEL_MAGIC = 0x0162
OMAGIC = 0o407
SOMAGIC = 0x0701


class CoffError(ValueError):
    """Raised when a COFF file is malformed or of the wrong kind."""


def _unpack(layout: struct.Struct, data, offset: int = 0) -> tuple:
    try:
        return layout.unpack_from(data, offset)
    except struct.error as exc:
        raise CoffError("File is too short") from exc


@dataclass(frozen=True)
class CoffFileHeader:
    """The COFF file header."""

    magic: int
    num_sections: int
    timestamp: int
    symbol_pointer: int
    num_symbols: int
    optional_header_size: int
    flags: int

    FORMAT: ClassVar[struct.Struct] = struct.Struct("<HHiIiHH")
    SIZE: ClassVar[int] = FORMAT.size

    @classmethod
    def parse(cls, data) -> "CoffFileHeader":
        return cls(*_unpack(cls.FORMAT, data))


@dataclass(frozen=True)
class AoutHeader:
    """The a.out ("system") header that follows the file header."""

    magic: int
    version_stamp: int
    text_size: int
    data_size: int
    bss_size: int
    entry: int
    text_start: int
    data_start: int
    bss_start: int
    gpr_mask: int
    cpr_mask: tuple[int, int, int, int]
    gp_value: int

    FORMAT: ClassVar[struct.Struct] = struct.Struct("<hh3i5I4II")
    SIZE: ClassVar[int] = FORMAT.size

    @classmethod
    def parse(cls, data) -> "AoutHeader":
        values = _unpack(cls.FORMAT, data)
        return cls(*values[:10], tuple(values[10:14]), values[14])


@dataclass(frozen=True)
class SectionHeader:
    """One COFF section header."""

    name: str
    paddr: int
    vaddr: int
    size: int
    scnptr: int
    relptr: int
    lnnoptr: int
    nreloc: int
    nlnno: int
    flags: int

    FORMAT: ClassVar[struct.Struct] = struct.Struct("<8sIIIIIIHHI")
    SIZE: ClassVar[int] = FORMAT.size

    @classmethod
    def parse(cls, data) -> "SectionHeader":
        raw_name, *rest = _unpack(cls.FORMAT, data)
        name = raw_name.split(b"\0", 1)[0].decode("latin-1")
        return cls(name, *rest)


@dataclass(frozen=True)
class CoffFile:
    """A parsed COFF object file together with its raw bytes."""

    header: CoffFileHeader
    aout: AoutHeader
    sections: tuple[SectionHeader, ...]
    data: bytes

    def section(self, name: str) -> SectionHeader | None:
        """Return the first section called ``name``, or None if there is none."""
        return next((s for s in self.sections if s.name == name), None)

    def section_data(self, section: SectionHeader) -> bytes:
        """Return the raw contents of ``section`` from the file."""
        end = section.scnptr + section.size
        if end > len(self.data):
            raise CoffError("File is too short")
        return self.data[section.scnptr:end]


def read_coff(data) -> CoffFile:
    """Parse a MIPS little-endian OMAGIC COFF file."""
    data = bytes(data)
    header = CoffFileHeader.parse(data)
    if header.magic != MIPSEL_MAGIC:
        raise CoffError("File is not a MIPSEL COFF file")
    view = memoryview(data)
    aout = AoutHeader.parse(view[CoffFileHeader.SIZE:])
    if aout.magic != OMAGIC:
        raise CoffError("File is not a OMAGIC file")
    base = CoffFileHeader.SIZE + AoutHeader.SIZE
    sections = tuple(
        SectionHeader.parse(view[base + index * SectionHeader.SIZE:])
        for index in range(header.num_sections)
    )
    return CoffFile(header, aout, sections, data)