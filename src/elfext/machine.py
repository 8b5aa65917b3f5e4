"""Properties of the processor a program is loaded for: its name, word size,
byte order and register file.
"""

import struct
from typing import Dict, Optional, Tuple

import attr

from elfext.exceptions import LoaderError


@attr.s(auto_attribs=True, frozen=True)
class Register:
    name: str
    bit_length: int

    @property
    def max_value(self) -> int:
        return (1 << self.bit_length) - 1


def _registers(bit_length: int, *names: str) -> Tuple[Register, ...]:
    return tuple(Register(name, bit_length) for name in names)


X86_REGISTERS = _registers(
    32, "EAX", "ECX", "EDX", "EBX", "ESP", "EBP", "ESI", "EDI", "EIP"
)
X86_64_REGISTERS = _registers(
    64,
    "RAX", "RCX", "RDX", "RBX", "RSP", "RBP", "RSI", "RDI",
    "R8", "R9", "R10", "R11", "R12", "R13", "R14", "R15", "RIP",
) + X86_REGISTERS
ARM_REGISTERS = _registers(32, *(f"r{i}" for i in range(13)), "sp", "lr", "pc")
AARCH64_REGISTERS = _registers(64, *(f"x{i}" for i in range(31)), "sp", "pc")
MIPS_REGISTERS = _registers(32, *(f"r{i}" for i in range(32)), "pc")


@attr.s(auto_attribs=True, frozen=True)
class Machine:
    """Describes the processor (the "language") selected for a load."""

    #: Processor name (``x86``, ``ARM``, ``AARCH64``, ``MIPS``)
    name: str
    #: Size of an address/word in bits
    bit_width: int
    big_endian: bool = False
    registers: Tuple[Register, ...] = ()

    @property
    def sizeof_word(self) -> int:
        return self.bit_width // 8

    @property
    def _word_format(self) -> str:
        order = ">" if self.big_endian else "<"
        return order + ("Q" if self.bit_width == 64 else "I")

    def pack_word(self, word: int) -> bytes:
        return struct.pack(self._word_format, word)

    def unpack_word(self, raw: bytes) -> int:
        return int(struct.unpack(self._word_format, raw)[0])

    def get_register(self, name: str) -> Optional[Register]:
        for register in self.registers:
            if register.name == name:
                return register
        return None


X86 = Machine("x86", 32, False, X86_REGISTERS)
X86_64 = Machine("x86", 64, False, X86_64_REGISTERS)

#: e_machine -> (processor name, bit width or None to use the ELF class, registers)
_MACHINES: Dict[str, Tuple[str, Optional[int], Tuple[Register, ...]]] = {
    "EM_386": ("x86", 32, X86_REGISTERS),
    "EM_X86_64": ("x86", 64, X86_64_REGISTERS),
    "EM_ARM": ("ARM", 32, ARM_REGISTERS),
    "EM_AARCH64": ("AARCH64", 64, AARCH64_REGISTERS),
    "EM_MIPS": ("MIPS", None, MIPS_REGISTERS),
}


def machine_from_header(header) -> Machine:
    """Select the default ``Machine`` for an ``ElfHeader``."""
    try:
        name, bit_width, registers = _MACHINES[header.e_machine]
    except KeyError:
        raise LoaderError(f"Unsupported machine {header.e_machine}") from None
    return Machine(
        name=name,
        bit_width=bit_width or header.elf_class,
        big_endian=not header.little_endian,
        registers=registers,
    )


def machine_from_elf(filename: str) -> Machine:
    # The loader package imports this module, so defer the import
    from elfext.loader.elf.header import read_elf_header

    with open(filename, "rb") as stream:
        return machine_from_header(read_elf_header(stream))
