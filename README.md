# nachkit

Tools for working with programs and disks of a small teaching operating
system running on a simulated little-endian MIPS machine:

- **Object files** (`nachkit.coff`, `nachkit.noff`): read MIPS
  little-endian COFF executables and read or write NOFF headers.
- **Conversion** (`nachkit.convert`): turn a COFF executable into a NOFF
  executable or into a flat memory image.
- **Disassembler** (`nachkit.instructions`, `nachkit.disassembler`):
  decode instruction fields and list code as MIPS assembly.
- **Interpreter** (`nachkit.cpu`): simulated memory and a processor that
  executes user-mode MIPS code, handing system calls to a callable you
  supply.
- **Disk storage** (`nachkit.synchdisk`, `nachkit.filehdr`,
  `nachkit.openfile`): a sector-addressed disk, a free-sector bitmap,
  per-file headers and open-file handles.

No third-party libraries are needed.

## Installation

```
pip install .
```

For running the test suite:

```
pip install .[test]
pytest
```

## Command-line tools

### Converting executables

```
nachkit-coff2noff program.coff program.noff
nachkit-coff2flat program.coff program.flat
```

`nachkit-coff2noff` copies the `.text` and `.data` (or `.rdata`) sections
into the output and records the `.bss`/`.sbss` extent in the NOFF header.
It refuses files that are not MIPS little-endian COFF, files that are not
`OMAGIC`, files with both `.data` and `.rdata`, and unknown sections; on
failure any file already at the output path is removed.

`nachkit-coff2flat` writes every section other than `.bss`/`.sbss` one
after another and reserves 1024 bytes of stack after the highest section,
ending with a blank word.

Both print the sections they load and exit with status 1 on error.

### Disassembling

```
nachkit-disasm program.coff
```

Each word of the `.text` section is printed with its address and raw
value, followed by the mnemonic and operands. Without a file name,
`a.out` is used; leading arguments starting with `-` are ignored.

## Library use

### Object files and conversion

```python
from nachkit.coff import read_coff
from nachkit.convert import coff_to_noff, coff_to_flat
from nachkit.noff import NoffHeader

with open("program.coff", "rb") as f:
    data = f.read()

coff = read_coff(data)
text = coff.section(".text")
print(text, len(coff.section_data(text)))

noff_image = coff_to_noff(data)
header = NoffHeader.parse(noff_image)
print(header.code, header.init_data, header.uninit_data)

flat_image = coff_to_flat(data, stack_size=1024)
```

`read_coff` raises `CoffError`; the conversion functions raise
`ConversionError`.

### Instructions

```python
from nachkit.instructions import rs, rt, immed
from nachkit.disassembler import format_instruction, disassemble

word = 0x2404002A           # addiu r4,0,0x2a
print(rs(word), rt(word), immed(word))
print(format_instruction(word, 0x10000000, True))

for line in disassemble(b"\x2a\x00\x04\x24", 0x10000000):
    print(line)
```

### Running code

```python
import struct
from nachkit.cpu import CPU, Memory, ProgramExit

def handler(cpu, is_break):
    # treat every system call as "exit with the value in r4"
    raise ProgramExit(cpu.registers[4])

memory = Memory()
memory.load(memory.offset, struct.pack("<2I", 0x24040007, 0x0000000C))
cpu = CPU(memory, handler)
print(cpu.run(argv=["prog"]))   # 7
```

`CPU.run` places `argc` and the argument strings below the top of memory,
steps until the handler raises `ProgramExit`, and returns its code. With
`trace=True` each executed instruction is printed, and with
`regtrace=True` the registers as well. Bad addresses, division by zero
and coprocessor instructions raise `CpuError`; unsupported instructions
raise `UnimplementedInstruction`.

### Disk storage

```python
from nachkit.synchdisk import SynchDisk
from nachkit.filehdr import FreeMap, FileHeader
from nachkit.openfile import OpenFile

with SynchDisk() as disk:               # in memory; pass a path to use a file
    free_map = FreeMap(disk.num_sectors)
    free_map.mark(0)                    # sector 0 holds the header
    header = FileHeader(disk)
    header.allocate(free_map, 300)
    header.write_back(0)

    f = OpenFile(disk, 0)
    f.write(b"hello")
    f.seek(0)
    print(f.read(5))                    # b'hello'
```

Files have the size given to `FileHeader.allocate`; reads and writes stop
at the end of the file. Invalid sectors raise `DiskError`.

## What is not included

- There is no command that runs a COFF executable, and no ready-made
  system-call layer on the host: to run code you load it into `Memory`
  yourself and give `CPU` your own system-call handler.
- There is no directory of file names and no file-system object that
  creates, opens or removes files by name. Disk storage stops at free-sector
  bitmaps, file headers addressed by sector number, and `OpenFile`.