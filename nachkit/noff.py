"""The simple object code format loaded by the simulated machine."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import ClassVar

NOFF_MAGIC = 0xBADFAD

_WORD = 0xFFFFFFFF


@dataclass
class Segment:
    """Where a segment lives in the address space and in the file."""

    virtual_addr: int = 0
    in_file_addr: int = 0
    size: int = 0


@dataclass
class NoffHeader:
    """Header describing the code, initialised data and uninitialised data."""

    magic: int = NOFF_MAGIC
    code: Segment = field(default_factory=Segment)
    init_data: Segment = field(default_factory=Segment)
    uninit_data: Segment = field(default_factory=Segment)

    FORMAT: ClassVar[struct.Struct] = struct.Struct("<10I")
    SIZE: ClassVar[int] = FORMAT.size

    def pack(self) -> bytes:
        """Encode the header as little-endian words."""
        values = [self.magic]
        for segment in (self.code, self.init_data, self.uninit_data):
            values += [segment.virtual_addr, segment.in_file_addr, segment.size]
        return self.FORMAT.pack(*(value & _WORD for value in values))

    @classmethod
    def parse(cls, data) -> "NoffHeader":
        """Decode a header from the start of ``data``."""
        try:
            magic, *rest = cls.FORMAT.unpack_from(data)
        except struct.error as exc:
            raise ValueError("NOFF header is too short") from exc
        return cls(magic, Segment(*rest[0:3]), Segment(*rest[3:6]), Segment(*rest[6:9]))