"""Instruction encodings and field extraction for the MIPS instruction set."""

from __future__ import annotations

from enum import IntEnum

NOP = 0


class Op(IntEnum):
    """Primary opcodes (bits 31..26)."""

    SPECIAL = 0o00
    BCOND = 0o01
    J = 0o02
    JAL = 0o03
    BEQ = 0o04
    BNE = 0o05
    BLEZ = 0o06
    BGTZ = 0o07
    ADDI = 0o10
    ADDIU = 0o11
    SLTI = 0o12
    SLTIU = 0o13
    ANDI = 0o14
    ORI = 0o15
    XORI = 0o16
    LUI = 0o17
    COP0 = 0o20
    COP1 = 0o21
    COP2 = 0o22
    COP3 = 0o23
    LB = 0o40
    LH = 0o41
    LWL = 0o42
    LW = 0o43
    LBU = 0o44
    LHU = 0o45
    LWR = 0o46
    SB = 0o50
    SH = 0o51
    SWL = 0o52
    SW = 0o53
    SWR = 0o56
    LWC0 = 0o60
    LWC1 = 0o61
    LWC2 = 0o62
    LWC3 = 0o63
    SWC0 = 0o70
    SWC1 = 0o71
    SWC2 = 0o72
    SWC3 = 0o73


class SpecialOp(IntEnum):
    """Function codes (bits 5..0) of SPECIAL instructions."""

    SLL = 0o00
    SRL = 0o02
    SRA = 0o03
    SLLV = 0o04
    SRLV = 0o06
    SRAV = 0o07
    JR = 0o10
    JALR = 0o11
    SYSCALL = 0o14
    BREAK = 0o15
    MFHI = 0o20
    MTHI = 0o21
    MFLO = 0o22
    MTLO = 0o23
    MULT = 0o30
    MULTU = 0o31
    DIV = 0o32
    DIVU = 0o33
    ADD = 0o40
    ADDU = 0o41
    SUB = 0o42
    SUBU = 0o43
    AND = 0o44
    OR = 0o45
    XOR = 0o46
    NOR = 0o47
    SLT = 0o52
    SLTU = 0o53


class BcondOp(IntEnum):
    """Branch conditions, encoded in the rt field of BCOND instructions."""

    BLTZ = 0o00
    BGEZ = 0o01
    BLTZAL = 0o20
    BGEZAL = 0o21


_NORMAL_OPS = (
    "special", "bcond", "j", "jal", "beq", "bne", "blez", "bgtz",
    "addi", "addiu", "slti", "sltiu", "andi", "ori", "xori", "lui",
    "cop0", "cop1", "cop2", "cop3", "024", "025", "026", "027",
    "030", "031", "032", "033", "034", "035", "036", "037",
    "lb", "lh", "lwl", "lw", "lbu", "lhu", "lwr", "047",
    "sb", "sh", "swl", "sw", "054", "055", "swr", "057",
    "lwc0", "lwc1", "lwc2", "lwc3", "064", "065", "066", "067",
    "swc0", "swc1", "swc2", "swc3", "074", "075", "076", "077",
)

_SPECIAL_OPS = (
    "sll", "001", "srl", "sra", "sllv", "005", "srlv", "srav",
    "jr", "jalr", "012", "013", "syscall", "break", "016", "017",
    "mfhi", "mthi", "mflo", "mtlo", "024", "025", "026", "027",
    "mult", "multu", "div", "divu", "034", "035", "036", "037",
    "add", "addu", "sub", "subu", "and", "or", "xor", "nor",
    "050", "051", "slt", "sltu", "054", "055", "056", "057",
    "060", "061", "062", "063", "064", "065", "066", "067",
    "070", "071", "072", "073", "074", "075", "076", "077",
)


def rd(word: int) -> int:
    """Destination register field (bits 15..11)."""
    return (word >> 11) & 0x1F


def rt(word: int) -> int:
    """Target register field (bits 20..16)."""
    return (word >> 16) & 0x1F


def rs(word: int) -> int:
    """Source register field (bits 25..21)."""
    return (word >> 21) & 0x1F


def shamt(word: int) -> int:
    """Shift amount field (bits 10..6)."""
    return (word >> 6) & 0x1F


def immed(word: int) -> int:
    """The low 16 bits, sign-extended."""
    if word & 0x8000:
        return (word & 0x7FFF) - 0x8000
    return word & 0x7FFF


def off16(word: int) -> int:
    """The sign-extended 16-bit branch offset, in bytes."""
    return immed(word) << 2


def off26(word: int) -> int:
    """The 26-bit jump target, in bytes."""
    return (word & ((1 << 26) - 1)) << 2


def top4(word: int) -> int:
    """The top four bits of a 32-bit address."""
    return word & 0xF0000000


def _lookup(table: tuple[str, ...], code: int, what: str) -> str:
    if not 0 <= code < len(table):
        raise ValueError(f"{what} out of range: {code}")
    return table[code]


def normal_op_name(opcode: int) -> str:
    """Mnemonic for a primary opcode (octal digits when unassigned)."""
    return _lookup(_NORMAL_OPS, opcode, "opcode")


def special_op_name(funct: int) -> str:
    """Mnemonic for a SPECIAL function code (octal digits when unassigned)."""
    return _lookup(_SPECIAL_OPS, funct, "function code")