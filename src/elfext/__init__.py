"""elfext: an in-memory program model for ELF binaries, with per-machine
extensions that run after the generic ELF load.
"""

from elfext.address import Address, AddressFactory, AddressRange, AddressSpace
from elfext.loader.base import LoadOptions, MessageLog, PassResult
from elfext.loader.elf import ElfLoader, LoadResult, load_elf
from elfext.machine import Machine, Register, machine_from_elf
from elfext.program import Program

__version__ = "0.1.0"

__all__ = [
    "Address",
    "AddressFactory",
    "AddressRange",
    "AddressSpace",
    "ElfLoader",
    "LoadOptions",
    "LoadResult",
    "Machine",
    "MessageLog",
    "PassResult",
    "Program",
    "Register",
    "load_elf",
    "machine_from_elf",
]
