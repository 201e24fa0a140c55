"""Converting COFF object files to NOFF and flat memory images."""

from __future__ import annotations

import contextlib
import os
import sys
from pathlib import Path
from typing import Callable

from .coff import CoffError, CoffFile, read_coff
from .noff import NoffHeader, Segment

STACK_SIZE = 1024

_BSS_NAMES = (".bss", ".sbss")
_DATA_NAMES = (".data", ".rdata")


class ConversionError(Exception):
    """Raised when an object file cannot be converted."""


def _load(data) -> CoffFile:
    try:
        return read_coff(data)
    except CoffError as exc:
        raise ConversionError(str(exc)) from exc


def _contents(coff: CoffFile, section) -> bytes:
    try:
        return coff.section_data(section)
    except CoffError as exc:
        raise ConversionError(str(exc)) from exc


def coff_to_noff(data) -> bytes:
    """Return the NOFF image (header followed by segments) for a COFF file."""
    coff = _load(data)
    header = NoffHeader()
    body = bytearray()
    for section in coff.sections:
        if section.size == 0:
            continue
        if section.name == ".text":
            header.code = Segment(section.paddr, NoffHeader.SIZE + len(body), section.size)
            body += _contents(coff, section)
        elif section.name in _DATA_NAMES:
            if header.init_data.size != 0:
                raise ConversionError("Can't handle both data and rdata")
            header.init_data = Segment(
                section.paddr, NoffHeader.SIZE + len(body), section.size
            )
            body += _contents(coff, section)
        elif section.name in _BSS_NAMES:
            uninit = header.uninit_data
            if uninit.size != 0:
                if section.paddr == uninit.virtual_addr + uninit.size:
                    raise ConversionError("Can't handle both bss and sbss")
                header.uninit_data = Segment(
                    uninit.virtual_addr, uninit.in_file_addr, uninit.size + section.size
                )
            else:
                header.uninit_data = Segment(section.paddr, 0, section.size)
        else:
            raise ConversionError(f"Unknown segment type: {section.name}")
    return header.pack() + bytes(body)


def coff_to_flat(data, stack_size: int = STACK_SIZE) -> bytes:
    """Return a flat image of the loaded sections followed by stack space."""
    if stack_size < 4:
        raise ValueError("stack size must be at least one word")
    coff = _load(data)
    image = bytearray()
    top = 0
    for section in coff.sections:
        top = max(top, section.paddr + section.size)
        if section.name not in _BSS_NAMES:
            image += _contents(coff, section)
    end = top + stack_size
    if len(image) < end:
        image.extend(bytes(end - len(image)))
    # a blank word marks where the image ends
    image[end - 4:end] = bytes(4)
    return bytes(image)


def _print_sections(coff: CoffFile) -> None:
    print(f"Loading {len(coff.sections)} sections:")
    for s in coff.sections:
        print(
            f'\t"{s.name}", filepos 0x{s.scnptr:x}, '
            f"mempos 0x{s.paddr:x}, size 0x{s.size:x}"
        )


def _run(
    argv: list[str] | None,
    usage_target: str,
    convert: Callable[[bytes], bytes],
    before: Callable[[CoffFile], None],
    after: Callable[[], None],
    remove_on_error: bool,
) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    prog = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "convert"
    if len(args) < 2:
        print(f"Usage: {prog} <coffFileName> <{usage_target}>", file=sys.stderr)
        return 1
    source, target = args[0], args[1]
    try:
        data = Path(source).read_bytes()
    except OSError as exc:
        print(f"{source}: {exc.strerror}", file=sys.stderr)
        return 1
    try:
        before(_load(data))
        result = convert(data)
    except ConversionError as exc:
        print(exc, file=sys.stderr)
        if remove_on_error:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(target)
        return 1
    after()
    try:
        Path(target).write_bytes(result)
    except OSError as exc:
        print(f"{target}: {exc.strerror}", file=sys.stderr)
        return 1
    return 0


def main_noff(argv: list[str] | None = None) -> int:
    """Convert a COFF file to a NOFF file: ``<coff> <noff>``."""

    def before(coff: CoffFile) -> None:
        print(f"numsections {len(coff.sections)} ")
        _print_sections(coff)

    return _run(argv, "noffFileName", coff_to_noff, before, lambda: None, True)


def main_flat(argv: list[str] | None = None) -> int:
    """Convert a COFF file to a flat memory image: ``<coff> <flat>``."""

    def after() -> None:
        print(f"Adding stack of size: {STACK_SIZE}")

    return _run(argv, "flatFileName", coff_to_flat, _print_sections, after, False)