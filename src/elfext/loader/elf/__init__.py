from elfext.loader.elf.dynamic import ElfDynamicTable
from elfext.loader.elf.extend import (
    EXTENSIONS,
    ElfExtension,
    ExtensionTag,
    get_elf_extension,
    process_got_plt,
)
from elfext.loader.elf.header import ElfHeader, ElfSectionHeader, read_elf_header
from elfext.loader.elf.helper import ElfLoadHelper
from elfext.loader.elf.loader import ElfLoader, LoadResult, load_elf

__all__ = [
    "EXTENSIONS",
    "ElfDynamicTable",
    "ElfExtension",
    "ElfHeader",
    "ElfLoadHelper",
    "ElfLoader",
    "ElfSectionHeader",
    "ExtensionTag",
    "LoadResult",
    "get_elf_extension",
    "load_elf",
    "process_got_plt",
    "read_elf_header",
]
