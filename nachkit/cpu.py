"""Interpreter for little-endian MIPS user programs held in simulated memory."""

from __future__ import annotations

import os
import struct
import sys
from typing import Callable, Iterable, TextIO

from .disassembler import MEM_OFFSET, MEM_SIZE, format_instruction
from .instructions import BcondOp, Op, SpecialOp, immed, rd, rs, rt, shamt

_MASK = 0xFFFFFFFF
_ARGUMENT_AREA = 1024
_POINTER_AREA = 32

_WORD = struct.Struct("<i")
_UWORD = struct.Struct("<I")
_HALF = struct.Struct("<h")
_UHALF = struct.Struct("<H")

_COPROCESSOR_OPS = frozenset({
    Op.LWC0, Op.LWC1, Op.LWC2, Op.LWC3, Op.SWC0, Op.SWC1, Op.SWC2, Op.SWC3,
    Op.COP0, Op.COP1, Op.COP2, Op.COP3,
})


def _u32(value: int) -> int:
    return value & _MASK


def _s32(value: int) -> int:
    value &= _MASK
    return value - (1 << 32) if value & 0x80000000 else value


class CpuError(Exception):
    """Raised when the simulated machine cannot continue."""


class UnimplementedInstruction(CpuError):
    """Raised for an instruction the interpreter does not implement."""


class ProgramExit(Exception):
    """Raised (normally by a system call handler) when the program exits."""

    def __init__(self, code: int = 0) -> None:
        super().__init__(f"program exited with status {code}")
        self.code = code


class Memory:
    """Byte-addressed main memory starting at ``offset``."""

    def __init__(self, size: int = MEM_SIZE, offset: int = MEM_OFFSET) -> None:
        if size <= 0:
            raise ValueError("memory size must be positive")
        self.size = size
        self.offset = offset
        self._data = bytearray(size)

    def _index(self, address: int, length: int) -> int:
        index = _u32(address) - self.offset
        if index < 0 or index + length > self.size:
            raise CpuError(f"address out of range: 0x{_u32(address):08x}")
        return index

    def load(self, address: int, data) -> None:
        """Copy a program segment into memory."""
        data = bytes(data)
        index = _u32(address) - self.offset
        if index < 0 or index + len(data) > self.size:
            raise CpuError("MEMSIZE too small")
        self._data[index:index + len(data)] = data

    def read_bytes(self, address: int, length: int) -> bytes:
        index = self._index(address, length)
        return bytes(self._data[index:index + length])

    def write_bytes(self, address: int, data) -> None:
        data = bytes(data)
        index = self._index(address, len(data))
        self._data[index:index + len(data)] = data

    def read_cstring(self, address: int) -> bytes:
        """Return the NUL-terminated byte string at ``address``."""
        start = self._index(address, 1)
        end = self._data.find(b"\0", start)
        if end < 0:
            raise CpuError(f"unterminated string at 0x{_u32(address):08x}")
        return bytes(self._data[start:end])

    def _unpack(self, layout: struct.Struct, address: int) -> int:
        return layout.unpack_from(self._data, self._index(address, layout.size))[0]

    def fetch_word(self, address: int) -> int:
        return self._unpack(_WORD, address)

    def fetch_half(self, address: int) -> int:
        return self._unpack(_HALF, address)

    def fetch_uhalf(self, address: int) -> int:
        return self._unpack(_UHALF, address)

    def fetch_byte(self, address: int) -> int:
        value = self._data[self._index(address, 1)]
        return value - 0x100 if value & 0x80 else value

    def fetch_ubyte(self, address: int) -> int:
        return self._data[self._index(address, 1)]

    def store_word(self, address: int, value: int) -> None:
        _UWORD.pack_into(self._data, self._index(address, 4), _u32(value))

    def store_half(self, address: int, value: int) -> None:
        _UHALF.pack_into(self._data, self._index(address, 2), value & 0xFFFF)

    def store_byte(self, address: int, value: int) -> None:
        self._data[self._index(address, 1)] = value & 0xFF


SyscallHandler = Callable[["CPU", bool], None]


class CPU:
    """The register state and fetch/execute loop of the simulated processor.

    ``syscall`` is called as ``syscall(cpu, is_break)`` for SYSCALL and BREAK
    instructions; it ends the program by raising :class:`ProgramExit`.
    """

    def __init__(
        self,
        memory: Memory,
        syscall: SyscallHandler | None = None,
        *,
        trace: bool = False,
        regtrace: bool = False,
        output: TextIO | None = None,
    ) -> None:
        self.memory = memory
        self.syscall = syscall
        self.trace = trace
        self.regtrace = regtrace
        self.output = output
        self.registers = [0] * 32
        self.hi = 0
        self.lo = 0
        self.pc = memory.offset
        self.npc = memory.offset + 4
        self.icount = 0

    def _set(self, index: int, value: int) -> None:
        self.registers[index] = _s32(value)

    def setup_arguments(self, argv: Iterable[str | bytes]) -> None:
        """Place argc and the argument strings below the top of memory."""
        args = [os.fsencode(arg) for arg in argv]
        sp = self.memory.offset + self.memory.size - _ARGUMENT_AREA
        self._set(29, sp)
        self.memory.store_word(sp, len(args))
        pointer = sp + 4
        string = pointer + _POINTER_AREA
        for arg in args:
            self.memory.write_bytes(string, arg + b"\0")
            self.memory.store_word(pointer, string)
            pointer += 4
            string += len(arg) + 1

    def _trap(self, is_break: bool) -> None:
        if self.syscall is None:
            raise CpuError("no system call handler")
        self.syscall(self, is_break)

    def _branch(self, taken: bool, xpc: int, word: int) -> None:
        if taken:
            self.npc = _u32(xpc + 4 + (immed(word) << 2))

    def _multiply(self, t1: int, t2: int, signed: bool) -> None:
        negative = False
        if signed:
            if t1 < 0:
                t1 = _s32(-t1)
                negative = not negative
            if t2 < 0:
                t2 = _s32(-t2)
                negative = not negative
        lo = _s32(t1 * t2)
        t1l, t1h = t1 & 0xFFFF, (t1 >> 16) & 0xFFFF
        t2l, t2h = t2 & 0xFFFF, (t2 >> 16) & 0xFFFF
        # the high word ignores carries out of the low partial products
        hi = _s32(_s32(t1h * t2h) + (_s32(t1h * t2l) >> 16) + (_s32(t2h * t1l) >> 16))
        if negative:
            lo = _s32(~lo + 1)
            hi = ~hi
            if lo == 0:
                hi = _s32(hi + 1)
        self.lo, self.hi = lo, hi

    def _divide(self, dividend: int, divisor: int) -> None:
        if divisor == 0:
            raise CpuError("division by zero")
        quotient = abs(dividend) // abs(divisor)
        if (dividend < 0) != (divisor < 0):
            quotient = -quotient
        if quotient != _s32(quotient):
            raise CpuError("integer overflow in division")
        self.lo = quotient
        self.hi = dividend - quotient * divisor

    def _divide_unsigned(self, dividend: int, divisor: int) -> None:
        dividend, divisor = _u32(dividend), _u32(divisor)
        if divisor == 0:
            raise CpuError("division by zero")
        self.lo = _s32(dividend // divisor)
        self.hi = _s32(dividend % divisor)

    def _special(self, word: int, xpc: int) -> None:
        s = self.registers[rs(word)]
        t = self.registers[rt(word)]
        d = rd(word)
        match word & 0x3F:
            case SpecialOp.SLL:
                self._set(d, t << shamt(word))
            case SpecialOp.SRL:
                self._set(d, _u32(t) >> shamt(word))
            case SpecialOp.SRA:
                self._set(d, t >> shamt(word))
            case SpecialOp.SLLV:
                self._set(d, t << (s & 31))
            case SpecialOp.SRLV:
                self._set(d, _u32(t) >> (s & 31))
            case SpecialOp.SRAV:
                self._set(d, t >> (s & 31))
            case SpecialOp.JR:
                self.npc = _u32(s)
            case SpecialOp.JALR:
                self.npc = _u32(s)
                self._set(d, xpc + 8)
            case SpecialOp.SYSCALL:
                self._trap(False)
            case SpecialOp.BREAK:
                self._trap(True)
            case SpecialOp.MFHI:
                self._set(d, self.hi)
            case SpecialOp.MTHI:
                self.hi = s
            case SpecialOp.MFLO:
                self._set(d, self.lo)
            case SpecialOp.MTLO:
                self.lo = s
            case SpecialOp.MULT:
                self._multiply(s, t, True)
            case SpecialOp.MULTU:
                self._multiply(s, t, False)
            case SpecialOp.DIV:
                self._divide(s, t)
            case SpecialOp.DIVU:
                self._divide_unsigned(s, t)
            case SpecialOp.ADD | SpecialOp.ADDU:
                self._set(d, s + t)
            case SpecialOp.SUB | SpecialOp.SUBU:
                self._set(d, s - t)
            case SpecialOp.AND:
                self._set(d, s & t)
            case SpecialOp.OR:
                self._set(d, s | t)
            case SpecialOp.XOR:
                self._set(d, s ^ t)
            case SpecialOp.NOR:
                self._set(d, ~(s | t))
            case SpecialOp.SLT:
                self._set(d, int(s < t))
            case SpecialOp.SLTU:
                self._set(d, int(_u32(s) < _u32(t)))
            case _:
                raise UnimplementedInstruction("Unimplemented Instruction")

    def _bcond(self, word: int, xpc: int) -> None:
        s = self.registers[rs(word)]
        match rt(word):
            case BcondOp.BLTZ:
                self._branch(s < 0, xpc, word)
            case BcondOp.BGEZ:
                self._branch(s >= 0, xpc, word)
            case BcondOp.BLTZAL:
                self._set(31, xpc + 8)
                self._branch(s < 0, xpc, word)
            case BcondOp.BGEZAL:
                self._set(31, xpc + 8)
                self._branch(s >= 0, xpc, word)
            case _:
                raise UnimplementedInstruction("Unimplemented Instruction")

    def _lwl(self, word: int, address: int) -> None:
        target = rt(word)
        # the mask (-1 >> n) keeps every bit, so only the OR has an effect
        fetched = self.memory.fetch_word(address & 0xFFFFFFFC)
        self._set(target, self.registers[target] | (fetched << 8 * (address & 3)))

    def _lwr(self, word: int, address: int) -> None:
        target = rt(word)
        value = self.registers[target] & (-1 << 8 * (address & 3))
        if address & 3 == 0:
            value = 0
        fetched = self.memory.fetch_word(address & 0xFFFFFFFC)
        self._set(target, value | (fetched >> 8 * ((-address) & 3)))

    def _normal(self, word: int, opcode: int, xpc: int) -> None:
        memory = self.memory
        s = self.registers[rs(word)]
        t_index = rt(word)
        t = self.registers[t_index]
        imm = immed(word)
        address = s + imm
        if opcode in _COPROCESSOR_OPS:
            raise CpuError("Sorry, no coprocessors.")
        match opcode:
            case Op.J:
                self.npc = (xpc & 0xF0000000) | ((word & 0x03FFFFFF) << 2)
            case Op.JAL:
                self._set(31, xpc + 8)
                self.npc = (xpc & 0xF0000000) | ((word & 0x03FFFFFF) << 2)
            case Op.BEQ:
                self._branch(s == t, xpc, word)
            case Op.BNE:
                self._branch(s != t, xpc, word)
            case Op.BLEZ:
                self._branch(s <= 0, xpc, word)
            case Op.BGTZ:
                self._branch(s > 0, xpc, word)
            case Op.ADDI | Op.ADDIU:
                self._set(t_index, s + imm)
            case Op.SLTI:
                self._set(t_index, int(s < imm))
            case Op.SLTIU:
                self._set(t_index, int(_u32(s) < _u32(imm)))
            case Op.ANDI:
                self._set(t_index, s & imm)
            case Op.ORI:
                self._set(t_index, s | imm)
            case Op.XORI:
                self._set(t_index, s ^ imm)
            case Op.LUI:
                self._set(t_index, word << 16)
            case Op.LB:
                self._set(t_index, memory.fetch_byte(address))
            case Op.LH:
                self._set(t_index, memory.fetch_half(address))
            case Op.LWL:
                self._lwl(word, address)
            case Op.LW:
                self._set(t_index, memory.fetch_word(address))
            case Op.LBU:
                self._set(t_index, memory.fetch_ubyte(address))
            case Op.LHU:
                self._set(t_index, memory.fetch_uhalf(address))
            case Op.LWR:
                self._lwr(word, address)
            case Op.SB:
                memory.store_byte(address, t)
            case Op.SH:
                memory.store_half(address, t)
            case Op.SW:
                memory.store_word(address, t)
            case Op.SWL:
                raise UnimplementedInstruction("sorry, no SWL yet.")
            case Op.SWR:
                raise UnimplementedInstruction("sorry, no SWR yet.")
            case _:
                raise UnimplementedInstruction("Unimplemented Instruction")

    def step(self) -> int:
        """Execute the instruction at ``pc`` and return its word."""
        self.icount += 1
        xpc = self.pc
        self.pc = self.npc
        self.npc = _u32(self.pc + 4)
        word = _u32(self.memory.fetch_word(xpc))
        self.registers[0] = 0
        if word != 0:
            opcode = (word >> 26) & 0x3F
            if opcode == Op.SPECIAL:
                self._special(word, xpc)
            elif opcode == Op.BCOND:
                self._bcond(word, xpc)
            else:
                self._normal(word, opcode, xpc)
        if self.trace:
            out = self.output if self.output is not None else sys.stdout
            print(format_instruction(word, xpc), file=out)
            if self.regtrace:
                out.write(self.dump_registers())
        return word

    def run(self, start_pc: int | None = None, argv: Iterable[str | bytes] = ()) -> int:
        """Run from ``start_pc`` until the program exits; return its status."""
        start = self.memory.offset if start_pc is None else start_pc
        self.pc = _u32(start)
        self.npc = _u32(start + 4)
        self.setup_arguments(argv)
        try:
            while True:
                self.step()
        except ProgramExit as exc:
            return exc.code

    def dump_registers(self) -> str:
        """The general registers as four lines of eight hex words."""
        lines = []
        for base in range(0, 32, 8):
            words = "".join(f" {_u32(r):08x}" for r in self.registers[base:base + 8])
            lines.append(f"{base:2d}:{words}")
        return "\n".join(lines) + "\n"


def ilog2(value: int) -> int:
    """Number of significant bits of ``value`` taken as an unsigned word."""
    return _u32(value).bit_length()