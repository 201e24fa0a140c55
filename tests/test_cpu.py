import io
import struct

import pytest

from nachkit.cpu import (
    CPU,
    CpuError,
    Memory,
    ProgramExit,
    UnimplementedInstruction,
    ilog2,
)
from nachkit.disassembler import MEM_OFFSET, format_instruction
from nachkit.instructions import BcondOp, Op, SpecialOp

SIZE = 0x10000
DATA = MEM_OFFSET + 0x1000


def r_type(funct, s=0, t=0, d=0, sh=0):
    return (s << 21) | (t << 16) | (d << 11) | (sh << 6) | int(funct)


def i_type(op, s=0, t=0, imm=0):
    return (int(op) << 26) | (s << 21) | (t << 16) | (imm & 0xFFFF)


def make_cpu(words=(), syscall=None, **kwargs):
    memory = Memory(size=SIZE)
    memory.load(MEM_OFFSET, b"".join(struct.pack("<I", w) for w in words))
    return CPU(memory, syscall, **kwargs)


def execute(cpu, count):
    for _ in range(count):
        cpu.step()


# --- memory ---------------------------------------------------------------

def test_word_round_trip_and_little_endian_layout():
    memory = Memory(size=SIZE)
    memory.store_word(DATA, 0x01020304)
    assert memory.read_bytes(DATA, 4) == b"\x04\x03\x02\x01"
    memory.store_word(DATA, -2)
    assert memory.fetch_word(DATA) == -2


def test_half_and_byte_signedness():
    memory = Memory(size=SIZE)
    memory.store_half(DATA, 0xFFFE)
    assert memory.fetch_half(DATA) == -2
    assert memory.fetch_uhalf(DATA) == 0xFFFE
    memory.store_byte(DATA + 4, 0xF0)
    assert memory.fetch_byte(DATA + 4) == 0xF0 - 0x100
    assert memory.fetch_ubyte(DATA + 4) == 0xF0


def test_out_of_range_access_raises():
    memory = Memory(size=SIZE)
    with pytest.raises(CpuError):
        memory.fetch_word(MEM_OFFSET - 4)
    with pytest.raises(CpuError):
        memory.store_word(MEM_OFFSET + SIZE - 2, 1)


def test_load_too_large_raises():
    memory = Memory(size=SIZE)
    with pytest.raises(CpuError):
        memory.load(MEM_OFFSET + SIZE - 1, b"ab")


def test_read_cstring():
    memory = Memory(size=SIZE)
    memory.write_bytes(DATA, b"hello\0world")
    assert memory.read_cstring(DATA) == b"hello"
    assert memory.read_cstring(DATA + 6) == b"world"


# --- arithmetic and logic ---------------------------------------------------

def test_addu_wraps_and_subu_inverts():
    cpu = make_cpu([r_type(SpecialOp.ADDU, 1, 2, 3), r_type(SpecialOp.SUBU, 3, 2, 4)])
    cpu.registers[1] = 0x7FFFFFFF
    cpu.registers[2] = 1
    execute(cpu, 2)
    assert cpu.registers[3] == -0x80000000
    assert cpu.registers[4] == cpu.registers[1]


def test_logic_invariants():
    words = [r_type(op, 1, 2, d) for d, op in enumerate(
        (SpecialOp.AND, SpecialOp.OR, SpecialOp.XOR, SpecialOp.NOR), start=3)]
    cpu = make_cpu(words)
    cpu.registers[1] = 12
    cpu.registers[2] = 10
    execute(cpu, 4)
    and_, or_, xor, nor = cpu.registers[3:7]
    assert and_ | xor == or_
    assert and_ & xor == 0
    assert nor == ~or_


def test_signed_and_unsigned_compare():
    cpu = make_cpu([r_type(SpecialOp.SLT, 1, 2, 3), r_type(SpecialOp.SLTU, 1, 2, 4)])
    cpu.registers[1] = -1
    cpu.registers[2] = 1
    execute(cpu, 2)
    assert cpu.registers[3] == 1
    assert cpu.registers[4] == 0


def test_shifts():
    cpu = make_cpu([
        r_type(SpecialOp.SRA, 0, 1, 2, 2),
        r_type(SpecialOp.SRL, 0, 1, 3, 2),
        r_type(SpecialOp.SLL, 0, 1, 4, 2),
    ])
    cpu.registers[1] = -16
    execute(cpu, 3)
    assert cpu.registers[2] == -16 >> 2
    assert cpu.registers[3] == 0xFFFFFFF0 >> 2
    assert cpu.registers[4] == -16 * 4


def test_lui_and_addiu_negative_immediate():
    cpu = make_cpu([i_type(Op.LUI, 0, 1, 0x1234), i_type(Op.ADDIU, 0, 2, -5)])
    execute(cpu, 2)
    assert cpu.registers[1] == 0x12340000
    assert cpu.registers[2] == -5


def test_register_zero_is_forced_to_zero():
    cpu = make_cpu([i_type(Op.ADDIU, 0, 0, 7), 0])
    execute(cpu, 2)
    assert cpu.registers[0] == 0


def test_mult_signed_and_unsigned():
    cpu = make_cpu([r_type(SpecialOp.MULT, 1, 2)])
    cpu.registers[1] = -3
    cpu.registers[2] = 4
    cpu.step()
    assert (cpu.lo, cpu.hi) == (-12, -1)
    cpu = make_cpu([r_type(SpecialOp.MULTU, 1, 2)])
    cpu.registers[1] = 3
    cpu.registers[2] = 4
    cpu.step()
    assert (cpu.lo, cpu.hi) == (12, 0)


def test_div_truncates_toward_zero():
    cpu = make_cpu([r_type(SpecialOp.DIV, 1, 2)])
    cpu.registers[1] = 7
    cpu.registers[2] = -2
    cpu.step()
    assert cpu.lo * -2 + cpu.hi == 7
    assert cpu.lo == -3


def test_divu_treats_operands_as_unsigned():
    cpu = make_cpu([r_type(SpecialOp.DIVU, 1, 2)])
    cpu.registers[1] = -1
    cpu.registers[2] = 2
    cpu.step()
    assert cpu.lo == 0x7FFFFFFF
    assert cpu.hi == 1


def test_division_by_zero_raises():
    cpu = make_cpu([r_type(SpecialOp.DIV, 1, 2)])
    cpu.registers[1] = 7
    with pytest.raises(CpuError):
        cpu.step()


def test_hi_lo_moves():
    cpu = make_cpu([r_type(SpecialOp.MTHI, 1), r_type(SpecialOp.MFHI, d=2),
                    r_type(SpecialOp.MTLO, 3), r_type(SpecialOp.MFLO, d=4)])
    cpu.registers[1] = 42
    cpu.registers[3] = -9
    execute(cpu, 4)
    assert cpu.registers[2] == 42
    assert cpu.registers[4] == -9


# --- control flow -----------------------------------------------------------

def test_taken_branch_sets_next_pc_after_delay_slot():
    cpu = make_cpu([i_type(Op.BEQ, 0, 0, 3)])
    cpu.step()
    assert cpu.pc == MEM_OFFSET + 4
    assert cpu.npc == MEM_OFFSET + 4 + (3 << 2)


def test_untaken_branch_falls_through():
    cpu = make_cpu([i_type(Op.BNE, 0, 0, 3)])
    cpu.step()
    assert cpu.npc == MEM_OFFSET + 8


def test_bltzal_links_and_branches():
    cpu = make_cpu([i_type(Op.BCOND, 1, BcondOp.BLTZAL, 2)])
    cpu.registers[1] = -1
    cpu.step()
    assert cpu.registers[31] == MEM_OFFSET + 8
    assert cpu.npc == MEM_OFFSET + 4 + (2 << 2)


def test_jump_executes_delay_slot():
    target = MEM_OFFSET | (0x10 << 2)
    cpu = make_cpu([(int(Op.JAL) << 26) | 0x10, i_type(Op.ADDIU, 0, 2, 2)])
    execute(cpu, 2)
    assert cpu.registers[2] == 2
    assert cpu.registers[31] == MEM_OFFSET + 8
    assert cpu.pc == target


def test_jalr_jumps_to_register():
    cpu = make_cpu([r_type(SpecialOp.JALR, 1, 0, 5)])
    cpu.registers[1] = MEM_OFFSET + 0x40
    cpu.step()
    assert cpu.npc == MEM_OFFSET + 0x40
    assert cpu.registers[5] == MEM_OFFSET + 8


# --- loads and stores -------------------------------------------------------

def test_byte_and_half_loads():
    cpu = make_cpu([
        i_type(Op.LB, 1, 2, 0), i_type(Op.LBU, 1, 3, 0),
        i_type(Op.LH, 1, 4, 2), i_type(Op.LHU, 1, 5, 2),
    ])
    cpu.memory.store_byte(DATA, 0xF0)
    cpu.memory.store_half(DATA + 2, 0xFFFE)
    cpu.registers[1] = DATA
    execute(cpu, 4)
    assert cpu.registers[2] == cpu.memory.fetch_byte(DATA)
    assert cpu.registers[3] == 0xF0
    assert cpu.registers[4] == -2
    assert cpu.registers[5] == 0xFFFE


def test_stores_round_trip_through_loads():
    cpu = make_cpu([
        i_type(Op.SW, 1, 2, 0), i_type(Op.LW, 1, 3, 0),
        i_type(Op.SB, 1, 2, 8), i_type(Op.SH, 1, 2, 12),
    ])
    cpu.registers[1] = DATA
    cpu.registers[2] = -123456
    execute(cpu, 4)
    assert cpu.registers[3] == -123456
    assert cpu.memory.fetch_ubyte(DATA + 8) == -123456 & 0xFF
    assert cpu.memory.fetch_uhalf(DATA + 12) == -123456 & 0xFFFF


def test_aligned_lwr_and_lwl():
    cpu = make_cpu([i_type(Op.LWR, 1, 2, 0), i_type(Op.LWL, 1, 3, 0)])
    cpu.memory.store_word(DATA, 0x12340000)
    cpu.registers[1] = DATA
    cpu.registers[2] = 0x55
    cpu.registers[3] = 0x5678
    execute(cpu, 2)
    assert cpu.registers[2] == 0x12340000
    assert cpu.registers[3] == 0x12340000 | 0x5678


# --- unsupported instructions -----------------------------------------------

@pytest.mark.parametrize("word", [
    r_type(1),
    i_type(Op.SWL, 0, 0, 0),
    i_type(Op.SWR, 0, 0, 0),
    i_type(Op.BCOND, 0, 5, 0),
    0o24 << 26,
])
def test_unimplemented_instructions(word):
    cpu = make_cpu([word])
    with pytest.raises(UnimplementedInstruction):
        cpu.step()


def test_coprocessor_instruction_raises():
    cpu = make_cpu([i_type(Op.COP0, 0, 0, 0)])
    with pytest.raises(CpuError):
        cpu.step()


# --- system calls and running ------------------------------------------------

def test_syscall_and_break_reach_handler():
    calls = []
    cpu = make_cpu([r_type(SpecialOp.SYSCALL), r_type(SpecialOp.BREAK)],
                   lambda machine, is_break: calls.append((machine, is_break)))
    execute(cpu, 2)
    assert calls == [(cpu, False), (cpu, True)]


def test_syscall_without_handler_raises():
    cpu = make_cpu([r_type(SpecialOp.SYSCALL)])
    with pytest.raises(CpuError):
        cpu.step()


def _exit_handler(cpu, is_break):
    if cpu.registers[2] == 1:
        raise ProgramExit(cpu.registers[4])


def test_run_returns_exit_status():
    program = [i_type(Op.ADDIU, 0, 4, 5), i_type(Op.ADDIU, 0, 2, 1),
               r_type(SpecialOp.SYSCALL)]
    cpu = make_cpu(program, _exit_handler)
    assert cpu.run(MEM_OFFSET, ["prog"]) == 5
    assert cpu.icount == 3


def test_setup_arguments_layout():
    cpu = make_cpu()
    cpu.setup_arguments(["prog", "hello"])
    sp = cpu.registers[29]
    assert sp == MEM_OFFSET + SIZE - 1024
    assert cpu.memory.fetch_word(sp) == 2
    pointers = [cpu.memory.fetch_word(sp + 4), cpu.memory.fetch_word(sp + 8)]
    assert [cpu.memory.read_cstring(p) for p in pointers] == [b"prog", b"hello"]


def test_trace_writes_disassembly_and_registers():
    program = [i_type(Op.ADDIU, 0, 2, 1), r_type(SpecialOp.SYSCALL)]
    out = io.StringIO()
    cpu = make_cpu(program, _exit_handler, trace=True, regtrace=True, output=out)
    cpu.run()
    text = out.getvalue()
    assert format_instruction(program[0], MEM_OFFSET) + "\n" in text
    assert " 0: 00000000 00000001" not in text
    assert "00000001" in text


def test_dump_registers_format():
    cpu = make_cpu()
    cpu.registers[1] = 0xABCDEF
    cpu.registers[31] = -1
    lines = cpu.dump_registers().splitlines()
    assert [line[:3] for line in lines] == [" 0:", " 8:", "16:", "24:"]
    assert lines[0].split()[1:3] == ["00000000", "00abcdef"]
    assert lines[3].split()[-1] == "ffffffff"
    assert all(len(line.split()) == 9 for line in lines)


# --- ilog2 ------------------------------------------------------------------

def test_ilog2_small_values():
    assert [ilog2(v) for v in (0, 1, 3)] == [0, 1, 2]


def test_ilog2_treats_negative_as_unsigned():
    assert ilog2(-1) == 32


@pytest.mark.parametrize("bit", range(32))
def test_ilog2_powers_of_two(bit):
    assert ilog2(1 << bit) == bit + 1
    assert ilog2((1 << (bit + 1)) - 1) == bit + 1