"""A synchronous sector-addressed disk, stored in memory or in a host file."""

from __future__ import annotations

import os
import threading
from pathlib import Path

SECTOR_SIZE = 128
NUM_SECTORS = 1024


class DiskError(Exception):
    """Raised for invalid disk requests."""


class SynchDisk:
    """A disk whose requests complete before they return.

    Only one request is served at a time.  Without a path the contents live
    in memory; with a path they are kept in that file.
    """

    def __init__(
        self,
        path: str | os.PathLike | None = None,
        *,
        sector_size: int = SECTOR_SIZE,
        num_sectors: int = NUM_SECTORS,
    ) -> None:
        if sector_size <= 0 or num_sectors <= 0:
            raise DiskError("disk geometry must be positive")
        self.sector_size = sector_size
        self.num_sectors = num_sectors
        self._lock = threading.Lock()
        self._closed = False
        total = sector_size * num_sectors
        if path is None:
            self._file = None
            self._memory = bytearray(total)
            return
        target = Path(path)
        self._memory = None
        self._file = open(target, "r+b" if target.exists() else "w+b")
        self._file.seek(0, os.SEEK_END)
        length = self._file.tell()
        if length < total:
            self._file.write(bytes(total - length))
            self._file.flush()

    def _check(self, sector: int) -> None:
        if self._closed:
            raise DiskError("disk is closed")
        if not 0 <= sector < self.num_sectors:
            raise DiskError(f"sector out of range: {sector}")

    def read_sector(self, sector: int) -> bytes:
        """Return the contents of ``sector``."""
        with self._lock:
            self._check(sector)
            start = sector * self.sector_size
            if self._memory is not None:
                return bytes(self._memory[start:start + self.sector_size])
            self._file.seek(start)
            return self._file.read(self.sector_size)

    def write_sector(self, sector: int, data) -> None:
        """Store ``data`` in ``sector``, zero-filling a short buffer."""
        data = bytes(data)
        if len(data) > self.sector_size:
            raise DiskError(
                f"{len(data)} bytes do not fit in a {self.sector_size}-byte sector"
            )
        data += bytes(self.sector_size - len(data))
        with self._lock:
            self._check(sector)
            start = sector * self.sector_size
            if self._memory is not None:
                self._memory[start:start + self.sector_size] = data
                return
            self._file.seek(start)
            self._file.write(data)
            self._file.flush()

    def close(self) -> None:
        """Release the backing file; further requests fail."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._file is not None:
                self._file.close()

    def __enter__(self) -> "SynchDisk":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()