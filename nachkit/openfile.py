"""Open files on the simulated disk: sequential and positioned access."""

from __future__ import annotations

from .filehdr import FileHeader
from .synchdisk import SynchDisk


class OpenFile:
    """A file whose header is kept in memory while it is open.

    Reads and writes never change the file's length: transfers are cut
    short at the end of the file.
    """

    def __init__(self, disk: SynchDisk, sector: int) -> None:
        self.disk = disk
        self.sector = sector
        self.header = FileHeader(disk)
        self.header.fetch_from(sector)
        self.position = 0

    @property
    def length(self) -> int:
        """Number of bytes in the file."""
        return self.header.length

    def __len__(self) -> int:
        return self.length

    def seek(self, position: int) -> None:
        """Set where the next :meth:`read` or :meth:`write` starts."""
        self.position = position

    def read(self, num_bytes: int) -> bytes:
        """Read from the current position and advance past what was read."""
        data = self.read_at(num_bytes, self.position)
        self.position += len(data)
        return data

    def write(self, data) -> int:
        """Write at the current position; return and advance by the count written."""
        written = self.write_at(data, self.position)
        self.position += written
        return written

    def _span(self, num_bytes: int, position: int) -> int:
        if position < 0:
            raise ValueError(f"negative file position: {position}")
        length = self.length
        if num_bytes <= 0 or position >= length:
            return 0
        return min(num_bytes, length - position)

    def _sector_of(self, index: int) -> int:
        return self.header.byte_to_sector(index * self.disk.sector_size)

    def read_at(self, num_bytes: int, position: int) -> bytes:
        """Return up to ``num_bytes`` bytes starting at ``position``."""
        count = self._span(num_bytes, position)
        if count == 0:
            return b""
        size = self.disk.sector_size
        first = position // size
        last = (position + count - 1) // size
        buffer = b"".join(
            self.disk.read_sector(self._sector_of(index))
            for index in range(first, last + 1)
        )
        start = position - first * size
        return buffer[start:start + count]

    def write_at(self, data, position: int) -> int:
        """Write ``data`` starting at ``position``; return the bytes written."""
        data = bytes(data)
        count = self._span(len(data), position)
        if count == 0:
            return 0
        size = self.disk.sector_size
        first = position // size
        last = (position + count - 1) // size
        buffer = bytearray((last - first + 1) * size)
        # sectors only partly overwritten keep their other bytes
        if position != first * size:
            buffer[:size] = self.disk.read_sector(self._sector_of(first))
        if position + count != (last + 1) * size:
            buffer[-size:] = self.disk.read_sector(self._sector_of(last))
        start = position - first * size
        buffer[start:start + count] = data[:count]
        for offset, index in enumerate(range(first, last + 1)):
            chunk = buffer[offset * size:(offset + 1) * size]
            self.disk.write_sector(self._sector_of(index), chunk)
        return count