"""Builds minimal ELF32 images for tests that go through pyelftools."""

import struct
from typing import Iterable, List, Optional, Tuple

import attr

SHT_PROGBITS = 1
SHT_STRTAB = 3
SHT_DYNAMIC = 6
SHT_NOBITS = 8

SHF_WRITE = 0x1
SHF_ALLOC = 0x2
SHF_EXECINSTR = 0x4

EM_386 = 3
EM_X86_64 = 62

DT_NULL = 0
DT_PLTGOT = 3


@attr.s(auto_attribs=True)
class SectionSpec:
    name: str
    address: int = 0
    data: bytes = b""
    flags: int = SHF_ALLOC
    sh_type: int = SHT_PROGBITS
    #: Declared ``sh_size`` (defaults to the length of ``data``)
    size: int = 0


def build_elf32(
    sections: Iterable[SectionSpec],
    dynamic: Optional[List[Tuple[int, int]]] = None,
    e_machine: int = EM_386,
    prelink_base: Optional[int] = None,
) -> bytes:
    """Assemble a little endian ELF32 shared object with no program headers.

    ``dynamic`` entries are written to a ``.dynamic`` section (a ``DT_NULL``
    terminator is appended).
    """
    sections = list(sections)
    if dynamic is not None:
        raw = b"".join(struct.pack("<iI", tag, value) for tag, value in dynamic)
        sections.append(
            SectionSpec(".dynamic", data=raw + struct.pack("<iI", DT_NULL, 0),
                        flags=SHF_ALLOC | SHF_WRITE, sh_type=SHT_DYNAMIC)
        )

    names = bytearray(b"\x00")
    name_offsets = []
    for section in sections + [SectionSpec(".shstrtab")]:
        name_offsets.append(len(names))
        names += section.name.encode() + b"\x00"

    body = bytearray()
    data_offset = 0x40
    headers = [struct.pack("<10I", *([0] * 10))]
    for section, name_offset in zip(sections, name_offsets):
        offset = data_offset + len(body)
        if section.sh_type == SHT_NOBITS:
            size = section.size
        else:
            size = section.size or len(section.data)
            body += section.data
        entsize = 8 if section.sh_type == SHT_DYNAMIC else 0
        headers.append(struct.pack(
            "<10I", name_offset, section.sh_type, section.flags, section.address,
            offset, size, 0, 0, 4, entsize,
        ))
    headers.append(struct.pack(
        "<10I", name_offsets[-1], SHT_STRTAB, 0, 0, data_offset + len(body),
        len(names), 0, 0, 1, 0,
    ))
    body += names
    body += bytes(-len(body) % 4)

    ident = b"\x7fELF" + bytes([1, 1, 1, 0]) + bytes(8)
    header = struct.pack(
        "<16sHHIIIIIHHHHHH",
        ident, 3, e_machine, 1, 0, 0, data_offset + len(body), 0,
        52, 32, 0, 40, len(headers), len(headers) - 1,
    )
    image = header + bytes(data_offset - len(header)) + bytes(body) + b"".join(headers)
    if prelink_base is not None:
        image += struct.pack("<I", prelink_base) + b"PRE "
    return image
