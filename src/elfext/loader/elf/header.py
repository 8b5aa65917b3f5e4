"""The parts of an ELF file the loader and its extensions need: the machine
identification, the section table and the dynamic table, plus the prelink
and image base information required to turn stored values into addresses.
"""

import os
import struct
from typing import IO, List, Optional

import attr
from elftools.common.exceptions import ELFError
from elftools.construct import ConstructError
from elftools.elf.constants import SH_FLAGS
from elftools.elf.dynamic import DynamicSection
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import Section

from elfext.exceptions import LoaderError
from elfext.loader.elf.dynamic import ElfDynamicTable

#: Marks the 8-byte trailer appended by the Android prelinker: the image base
#: the file was prelinked at, followed by this magic.
PRELINK_MAGIC = b"PRE "


@attr.s(auto_attribs=True)
class ElfSectionHeader:
    name: str
    #: ``sh_addr``, relative to the binary's own image base
    address: int = 0
    size: int = 0
    flags: int = 0
    sh_type: str = "SHT_PROGBITS"
    #: ``sh_offset`` in the file
    offset: int = 0

    @staticmethod
    def from_section(section: Section) -> "ElfSectionHeader":
        return ElfSectionHeader(
            name=section.name,
            address=section["sh_addr"],
            size=section["sh_size"],
            flags=section["sh_flags"],
            sh_type=str(section["sh_type"]),
            offset=section["sh_offset"],
        )

    @property
    def is_executable(self) -> bool:
        return bool(self.flags & SH_FLAGS.SHF_EXECINSTR)

    @property
    def is_alloc(self) -> bool:
        return bool(self.flags & SH_FLAGS.SHF_ALLOC)

    @property
    def is_writable(self) -> bool:
        return bool(self.flags & SH_FLAGS.SHF_WRITE)

    @property
    def is_nobits(self) -> bool:
        return self.sh_type == "SHT_NOBITS"

    def in_group(self, prefix: str, separator: str = ".") -> bool:
        """Whether the section is ``prefix`` itself or one of its
        sub-sections (``prefix`` + ``separator`` + anything).
        """
        return self.name == prefix or self.name.startswith(prefix + separator)


@attr.s(auto_attribs=True)
class ElfHeader:
    #: pyelftools' name of the machine (``EM_386``, ``EM_X86_64``, ...)
    e_machine: str
    #: 32 or 64
    elf_class: int = 32
    little_endian: bool = True
    e_type: str = "ET_DYN"
    sections: List[ElfSectionHeader] = attr.Factory(list)
    #: ``None`` when the binary has no dynamic table
    dynamic_table: Optional[ElfDynamicTable] = None
    #: The lowest ``PT_LOAD`` virtual address
    image_base: int = 0
    #: The base recorded by a prelinker, if the file was prelinked
    prelink_image_base: Optional[int] = None

    @property
    def is_32bit(self) -> bool:
        return self.elf_class == 32

    @property
    def is_64bit(self) -> bool:
        return self.elf_class == 64

    def get_sections(self, name: Optional[str] = None) -> List[ElfSectionHeader]:
        if name is None:
            return list(self.sections)
        return [section for section in self.sections if section.name == name]

    def get_section(self, name: str) -> Optional[ElfSectionHeader]:
        return next(iter(self.get_sections(name)), None)

    def adjust_address_for_prelink(self, address: int) -> int:
        """Undo the shift applied to stored addresses by a prelinker.

        Prelinked files keep some addresses relative to the prelink base.
        Addresses below the base get it added back; addresses already at or
        above it are left alone.
        """
        base = self.prelink_image_base
        if base is None or address >= base:
            return address
        return (address + base) & ((1 << self.elf_class) - 1)


def read_prelink_base(stream: IO, little_endian: bool = True) -> Optional[int]:
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    if size < 8:
        return None
    stream.seek(size - 8)
    trailer = stream.read(8)
    if trailer[4:] != PRELINK_MAGIC:
        return None
    return int(struct.unpack("<I" if little_endian else ">I", trailer[:4])[0])


def read_dynamic_table(elf: ELFFile) -> Optional[ElfDynamicTable]:
    """Read the dynamic table from ``PT_DYNAMIC``, falling back to the
    ``.dynamic`` section for files without program headers.
    """
    for segment in elf.iter_segments():
        if segment["p_type"] == "PT_DYNAMIC":
            return ElfDynamicTable.from_dynamic(segment)
    for section in elf.iter_sections():
        if isinstance(section, DynamicSection):
            return ElfDynamicTable.from_dynamic(section)
    return None


def read_elf_header(stream: IO) -> ElfHeader:
    """Parse the ELF file in ``stream``.

    Raises:
        LoaderError: The file is not a (well formed) ELF file.

    """
    try:
        elf = ELFFile(stream)
        sections = [
            ElfSectionHeader.from_section(section) for section in elf.iter_sections()
        ]
        load_addresses = [
            segment["p_vaddr"]
            for segment in elf.iter_segments()
            if segment["p_type"] == "PT_LOAD"
        ]
        header = ElfHeader(
            e_machine=str(elf["e_machine"]),
            elf_class=elf.elfclass,
            little_endian=elf.little_endian,
            e_type=str(elf["e_type"]),
            sections=sections,
            dynamic_table=read_dynamic_table(elf),
            image_base=min(load_addresses, default=0),
        )
    except (ELFError, ConstructError) as exc:
        raise LoaderError(f"Malformed ELF file: {exc}") from exc
    header.prelink_image_base = read_prelink_base(stream, header.little_endian)
    return header
