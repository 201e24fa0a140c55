"""Free-sector maps and on-disk file headers (i-nodes)."""

from __future__ import annotations

import struct

from .synchdisk import SynchDisk

_INT_SIZE = 4


def _div_round_up(value: int, divisor: int) -> int:
    return -(-value // divisor)


class FreeMap:
    """A bitmap recording which disk sectors are in use."""

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("bitmap size must not be negative")
        self.size = size
        self._bits = bytearray(_div_round_up(size, 8))

    def __len__(self) -> int:
        return self.size

    def _check(self, index: int) -> None:
        if not 0 <= index < self.size:
            raise IndexError(f"bit out of range: {index}")

    def mark(self, index: int) -> None:
        """Mark ``index`` as in use."""
        self._check(index)
        self._bits[index >> 3] |= 1 << (index & 7)

    def clear(self, index: int) -> None:
        """Mark ``index`` as free."""
        self._check(index)
        self._bits[index >> 3] &= ~(1 << (index & 7)) & 0xFF

    def test(self, index: int) -> bool:
        """Whether ``index`` is in use."""
        self._check(index)
        return bool(self._bits[index >> 3] & (1 << (index & 7)))

    def find(self) -> int | None:
        """Mark and return the first free index, or None if all are in use."""
        index = next((i for i in range(self.size) if not self.test(i)), None)
        if index is not None:
            self.mark(index)
        return index

    def num_clear(self) -> int:
        """Number of free indices."""
        return sum(1 for i in range(self.size) if not self.test(i))

    def to_bytes(self) -> bytes:
        """Encode with bit ``i`` in byte ``i // 8``, bit position ``i % 8``."""
        return bytes(self._bits)

    @classmethod
    def from_bytes(cls, data, size: int) -> "FreeMap":
        """Decode a bitmap of ``size`` bits produced by :meth:`to_bytes`."""
        free_map = cls(size)
        data = bytes(data)
        needed = len(free_map._bits)
        if len(data) < needed:
            raise ValueError("bitmap data is too short")
        free_map._bits[:] = data[:needed]
        if size % 8:
            free_map._bits[-1] &= (1 << (size % 8)) - 1
        return free_map


class FileHeader:
    """The table of data sectors describing one file, stored in one sector."""

    def __init__(self, disk: SynchDisk) -> None:
        self.disk = disk
        self.num_bytes = 0
        self.data_sectors: list[int] = []

    @property
    def num_direct(self) -> int:
        """How many data sectors fit in the header."""
        return (self.disk.sector_size - 2 * _INT_SIZE) // _INT_SIZE

    @property
    def max_file_size(self) -> int:
        return self.num_direct * self.disk.sector_size

    @property
    def num_sectors(self) -> int:
        return len(self.data_sectors)

    @property
    def length(self) -> int:
        """Number of bytes in the file."""
        return self.num_bytes

    def allocate(self, free_map: FreeMap, file_size: int) -> bool:
        """Take data sectors for a new file; False if there is not enough space."""
        if file_size < 0:
            raise ValueError("file size must not be negative")
        sectors = _div_round_up(file_size, self.disk.sector_size)
        if sectors > self.num_direct or free_map.num_clear() < sectors:
            return False
        self.num_bytes = file_size
        self.data_sectors = [free_map.find() for _ in range(sectors)]
        return True

    def deallocate(self, free_map: FreeMap) -> None:
        """Return the file's data sectors to ``free_map``."""
        for sector in self.data_sectors:
            if not free_map.test(sector):
                raise ValueError(f"sector {sector} is not marked in use")
            free_map.clear(sector)

    def fetch_from(self, sector: int) -> None:
        """Load the header stored in ``sector``."""
        raw = self.disk.read_sector(sector)
        num_bytes, num_sectors = struct.unpack_from("<ii", raw)
        if not 0 <= num_sectors <= self.num_direct:
            raise ValueError(f"corrupt file header in sector {sector}")
        self.num_bytes = num_bytes
        self.data_sectors = list(
            struct.unpack_from(f"<{num_sectors}i", raw, 2 * _INT_SIZE)
        )

    def write_back(self, sector: int) -> None:
        """Store the header in ``sector``."""
        raw = struct.pack(
            f"<ii{self.num_sectors}i", self.num_bytes, self.num_sectors, *self.data_sectors
        )
        self.disk.write_sector(sector, raw)

    def byte_to_sector(self, offset: int) -> int:
        """The disk sector holding byte ``offset`` of the file."""
        index = offset // self.disk.sector_size
        if offset < 0 or index >= self.num_sectors:
            raise ValueError(f"offset out of range: {offset}")
        return self.data_sectors[index]

    def describe(self) -> str:
        """The header and the file's contents, printable bytes as text."""
        lines = [
            f"FileHeader contents.  File size: {self.num_bytes}.  File blocks:\n",
            "".join(f"{sector} " for sector in self.data_sectors),
            "\nFile contents:\n",
        ]
        remaining = self.num_bytes
        for sector in self.data_sectors:
            chunk = self.disk.read_sector(sector)[:max(remaining, 0)]
            remaining -= len(chunk)
            lines.append(
                "".join(chr(b) if 0x20 <= b <= 0x7E else f"\\{b:x}" for b in chunk)
            )
            lines.append("\n")
        return "".join(lines)