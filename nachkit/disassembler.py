"""Disassembling MIPS machine code and the disassembler command."""

from __future__ import annotations

import os
import struct
import sys
from pathlib import Path
from typing import Iterator

from .coff import (
    MIPSEL_MAGIC,
    AoutHeader,
    CoffError,
    CoffFile,
    CoffFileHeader,
    SectionHeader,
)
from .instructions import (
    NOP,
    BcondOp,
    Op,
    SpecialOp,
    immed,
    normal_op_name,
    off16,
    off26,
    rd,
    rs,
    rt,
    shamt,
    special_op_name,
    top4,
)

MEM_SIZE = 1 << 24
MEM_OFFSET = 0x10000000

_WORD = 0xFFFFFFFF

_REGISTERS = (
    "0", "r1", "r2", "r3", "r4", "r5", "r6", "r7", "r8", "r9",
    "r10", "r11", "r12", "r13", "r14", "r15", "r16", "r17", "r18", "r19",
    "r20", "r21", "r22", "r23", "r24", "r25", "r26", "r27", "gp", "sp",
    "r30", "r31",
)

_SHIFT_IMMEDIATE = frozenset({SpecialOp.SLL, SpecialOp.SRL, SpecialOp.SRA})
_SHIFT_VARIABLE = frozenset({SpecialOp.SLLV, SpecialOp.SRLV, SpecialOp.SRAV})
_ONLY_RS = frozenset({SpecialOp.JR, SpecialOp.JALR, SpecialOp.MFLO, SpecialOp.MTLO})
_ONLY_RD = frozenset({SpecialOp.MFHI, SpecialOp.MTHI})
_RS_RT = frozenset({SpecialOp.MULT, SpecialOp.MULTU, SpecialOp.DIV, SpecialOp.DIVU})
_THREE_REG = frozenset({
    SpecialOp.ADD, SpecialOp.ADDU, SpecialOp.SUB, SpecialOp.SUBU, SpecialOp.AND,
    SpecialOp.OR, SpecialOp.XOR, SpecialOp.NOR, SpecialOp.SLT, SpecialOp.SLTU,
})

_JUMPS = frozenset({Op.J, Op.JAL})
_BRANCHES = frozenset({Op.BEQ, Op.BNE})
_IMMEDIATE = frozenset({
    Op.ADDI, Op.ADDIU, Op.SLTI, Op.SLTIU, Op.ANDI, Op.ORI, Op.XORI,
})
_MEMORY = frozenset({
    Op.LB, Op.LH, Op.LWL, Op.LW, Op.LBU, Op.LHU, Op.LWR,
    Op.SB, Op.SH, Op.SWL, Op.SW, Op.SWR,
    Op.LWC0, Op.LWC1, Op.LWC2, Op.LWC3, Op.SWC0, Op.SWC1, Op.SWC2, Op.SWC3,
})

_LOAD_ORDER = (".text", ".rdata", ".data", ".sdata", ".sbss", ".bss")


def register_name(index: int) -> str:
    """Assembler name of general register ``index``."""
    if not 0 <= index < len(_REGISTERS):
        raise ValueError(f"register out of range: {index}")
    return _REGISTERS[index]


def _hex(value: int) -> str:
    return f"{value & _WORD:x}"


def _hex8(value: int) -> str:
    return f"{value & _WORD:08x}"


def _special(word: int) -> str:
    funct = word & 0x3F
    reg_d, reg_t, reg_s = (register_name(f(word)) for f in (rd, rt, rs))
    if funct in _SHIFT_IMMEDIATE:
        operands = f"{reg_d},{reg_t},0x{shamt(word):x}"
    elif funct in _SHIFT_VARIABLE:
        operands = f"{reg_d},{reg_t},{reg_s}"
    elif funct in _ONLY_RS:
        operands = reg_s
    elif funct in _ONLY_RD:
        operands = reg_d
    elif funct in _RS_RT:
        operands = f"{reg_s},{reg_t}"
    elif funct in _THREE_REG:
        operands = f"{reg_d},{reg_s},{reg_t}"
    else:
        operands = ""
    return f"{special_op_name(funct)}\t{operands}"


def _bcond(word: int, pc: int) -> str:
    try:
        name = BcondOp(rt(word)).name.lower()
    except ValueError:
        name = "BCOND"
    return f"{name}\t{register_name(rs(word))},{_hex8(off16(word) + pc + 4)}"


def _normal(word: int, opcode: int, pc: int) -> str:
    reg_t, reg_s = register_name(rt(word)), register_name(rs(word))
    if opcode in _JUMPS:
        operands = _hex8(top4(pc) | off26(word))
    elif opcode in _BRANCHES:
        operands = f"{reg_t},{reg_s},{_hex8(off16(word) + pc + 4)}"
    elif opcode in _IMMEDIATE:
        operands = f"{reg_t},{reg_s},0x{_hex(immed(word))}"
    elif opcode == Op.LUI:
        operands = f"{reg_t},0x{_hex(immed(word))}"
    elif opcode in _MEMORY:
        operands = f"{reg_t},0x{_hex(immed(word))}({reg_s})"
    else:
        operands = ""
    return f"{normal_op_name(opcode)}\t{operands}"


def format_instruction(word: int, pc: int, with_address: bool = True) -> str:
    """Render one instruction word located at ``pc`` as assembler text."""
    word &= _WORD
    prefix = f"{_hex8(pc)}: {word:08x}  " if with_address else ""
    opcode = word >> 26
    if word == NOP:
        body = "nop"
    elif opcode == Op.SPECIAL:
        body = _special(word)
    elif opcode == Op.BCOND:
        body = _bcond(word, pc)
    else:
        body = _normal(word, opcode, pc)
    return f"{prefix}\t{body}"


def disassemble(code, start: int = MEM_OFFSET) -> Iterator[str]:
    """Yield one line per little-endian word of ``code``, starting at ``start``."""
    code = bytes(code)
    code += bytes(-len(code) % 4)
    for index, (word,) in enumerate(struct.iter_unpack("<I", code)):
        yield format_instruction(word, start + 4 * index)


class _MemoryTooSmall(Exception):
    pass


def _open_object(data: bytes) -> CoffFile:
    header = CoffFileHeader.parse(data)
    if header.magic != MIPSEL_MAGIC:
        return CoffFile(header, None, (), data)  # type: ignore[arg-type]
    view = memoryview(data)
    aout = AoutHeader.parse(view[CoffFileHeader.SIZE:])
    base = CoffFileHeader.SIZE + AoutHeader.SIZE
    sections = tuple(
        SectionHeader.parse(view[base + i * SectionHeader.SIZE:])
        for i in range(header.num_sections)
    )
    return CoffFile(header, aout, sections, data)


def _load_sections(coff: CoffFile) -> bytearray:
    memory = bytearray()
    for name in _LOAD_ORDER:
        section = coff.section(name)
        if section is None:
            print(f"{name[1:]} section header missing")
            continue
        if section.scnptr == 0:
            continue
        start = section.vaddr - MEM_OFFSET
        end = start + section.size
        if start < 0 or end > MEM_SIZE:
            raise _MemoryTooSmall
        contents = coff.section_data(section)
        if len(memory) < end:
            memory.extend(bytes(end - len(memory)))
        memory[start:end] = contents
    return memory


def main(argv: list[str] | None = None) -> int:
    """Disassemble the text section of a COFF file: ``[options] [file]``."""
    args = sys.argv[1:] if argv is None else list(argv)
    prog = sys.argv[0] if sys.argv and sys.argv[0] else "disassemble"
    prog = os.path.basename(prog)
    while args and args[0].startswith("-"):
        args.pop(0)
    filename = args[0] if args else "a.out"
    try:
        data = Path(filename).read_bytes()
    except OSError:
        print(f"{prog}: Could not open '{filename}'", file=sys.stderr)
        return 0
    try:
        coff = _open_object(data)
        if coff.header.magic != MIPSEL_MAGIC:
            print("big-endian object file (little-endian interp)", file=sys.stderr)
            return 0
        memory = _load_sections(coff)
    except CoffError:
        print(f"{prog}: Load read error on {filename}", file=sys.stderr)
        return 0
    except _MemoryTooSmall:
        print("MEMSIZE too small. Fix and recompile.")
        return 1
    text = coff.section(".text")
    size = text.size if text is not None else 0
    code = bytes(memory[:size])
    code += bytes(size - len(code))
    for line in disassemble(code, MEM_OFFSET):
        print(line)
    return 0