import io

import pytest

from elfext import ElfLoader, LoadOptions, PassResult, load_elf
from elfext.exceptions import InternalConsistencyError, LoaderError
from elfext.loader.elf.extend.x86 import X86_32
from elfext.loader.elf.loader import SOURCE_NAME
from elfext.machine import X86_64
from elfext.memory import MemoryBlockFlags

from elf_builder import (
    DT_PLTGOT,
    SHF_ALLOC,
    SHF_EXECINSTR,
    SHF_WRITE,
    SHT_NOBITS,
    SectionSpec,
    build_elf32,
)

PLT_CODE = bytes.fromhex("ff b3 04 00 00 00 ff a3 08 00 00 00 00 00 00 00")


def build_library(**kwargs):
    return build_elf32(
        [
            SectionSpec(".plt", 0x1000, PLT_CODE, SHF_ALLOC | SHF_EXECINSTR),
            SectionSpec(".text", 0x1100, b"\x90" * 0x20, SHF_ALLOC | SHF_EXECINSTR),
            SectionSpec(".got.plt", 0x3000, bytes(12), SHF_ALLOC | SHF_WRITE),
            SectionSpec(".bss", 0x4000, sh_type=SHT_NOBITS, size=0x40,
                        flags=SHF_ALLOC | SHF_WRITE),
            SectionSpec(".comment", 0, b"GCC", 0),
        ],
        dynamic=[(DT_PLTGOT, 0x3000)],
        **kwargs,
    )


def load(image, **options):
    return ElfLoader(LoadOptions(**options)).load_stream(io.BytesIO(image), "libtest.so")


def test_load_x86_library():
    result = load(build_library(), image_base=0x10000)
    program = result.program
    assert result.extension is X86_32
    assert result.result is PassResult.COMPLETED
    assert not program.has_exclusive_access()

    plt = program.memory.get_block(".plt")
    assert plt.start == program.get_address(0x11000)
    assert plt.get_data() == PLT_CODE
    assert plt.flags == MemoryBlockFlags.READ | MemoryBlockFlags.EXECUTE
    assert plt.source_name == SOURCE_NAME
    (source,) = plt.get_source_infos()
    assert source.file_name == "libtest.so"
    assert source.file_offset == 0x40

    ebx = program.get_register("EBX")
    assert program.memory.get_register_value(ebx, plt.start).value == 0x13000
    assert program.memory.get_register_value(ebx, plt.end).value == 0x13000
    assert program.memory.get_register_value(ebx, program.get_address(0x11100)) is None

    got = program.memory.get_block(".got.plt")
    assert got.flags == MemoryBlockFlags.READ | MemoryBlockFlags.WRITE
    bss = program.memory.get_block(".bss")
    assert not bss.is_initialized
    assert bss.size == 0x40
    assert program.memory.get_block(".comment") is None
    assert result.helper.messages == []


def test_load_keeps_linked_base():
    program = load(build_library()).program
    assert program.image_base.offset == 0
    assert program.memory.get_block(".plt").start == program.get_address(0x1000)


def test_load_prelinked_library():
    result = load(build_library(prelink_base=0x40000000), image_base=0x10000)
    program = result.program
    ebx = program.get_register("EBX")
    plt = program.memory.get_block(".plt")
    assert program.memory.get_register_value(ebx, plt.start).value == 0x40013000


def test_load_with_other_machine():
    result = load(build_library(), machine=X86_64)
    assert result.extension is None
    assert result.result is PassResult.COMPLETED
    assert not list(result.program.memory.context.get_registers_with_values())


def test_load_without_mapping_sections():
    result = load(build_library(), map_sections=False)
    assert len(result.program.memory) == 0
    assert result.helper.messages == [
        "Skipped processing of .plt: memory block not found"
    ]


def test_overlapping_sections_are_skipped():
    image = build_elf32(
        [
            SectionSpec(".text", 0x1000, b"\x90" * 0x10, SHF_ALLOC | SHF_EXECINSTR),
            SectionSpec(".init", 0x1008, b"\xc3" * 4, SHF_ALLOC | SHF_EXECINSTR),
        ]
    )
    result = load(image)
    assert result.program.memory.get_block(".init") is None
    assert len(result.helper.messages) == 1
    assert result.helper.messages[0].startswith("Skipped loading of .init")
    assert result.result is PassResult.SKIPPED


def failing_pass(helper, is_cancelled):
    raise InternalConsistencyError("GOT vanished")


def test_internal_error_is_logged():
    loader = ElfLoader(default_processor=failing_pass)
    result = loader.load_stream(io.BytesIO(build_library()), "libtest.so")
    assert result.result is None
    assert result.helper.messages == ["GOT/PLT processing failed: GOT vanished"]
    assert result.program.memory.get_block(".plt") is not None


def test_internal_error_in_strict_mode():
    loader = ElfLoader(LoadOptions(strict=True), default_processor=failing_pass)
    with pytest.raises(InternalConsistencyError):
        loader.load_stream(io.BytesIO(build_library()), "libtest.so")


def test_cancelled_load():
    loader = ElfLoader()
    result = loader.load_stream(
        io.BytesIO(build_library()), "libtest.so", is_cancelled=lambda: True
    )
    assert result.result is PassResult.CANCELLED
    assert not list(result.program.memory.context.get_registers_with_values())


def test_invalid_image_base():
    with pytest.raises(LoaderError):
        load(build_library(), image_base=1 << 32)


def test_malformed_file():
    with pytest.raises(LoaderError):
        load(b"\x7fELF" + bytes(12))


def test_load_elf_from_path(tmp_path):
    path = tmp_path / "libtest.so"
    path.write_bytes(build_library())
    program = load_elf(str(path), LoadOptions(image_base=0x10000))
    assert program.name == "libtest.so"
    assert program.memory.get_block(".plt").start == program.get_address(0x11000)


def test_section_beyond_address_space_is_skipped():
    image = build_elf32(
        [
            SectionSpec(".text", 0x1000, b"\x90" * 0x10, SHF_ALLOC | SHF_EXECINSTR),
            SectionSpec(".data", 0x2000, b"\x01" * 0x10, SHF_ALLOC | SHF_WRITE,
                        size=0xFFFFF000),
        ]
    )
    result = load(image)
    assert result.program.memory.get_block(".data") is None
    assert result.program.memory.get_block(".text") is not None
    assert len(result.helper.messages) == 1
    assert result.helper.messages[0].startswith("Skipped loading of .data")


def test_oversized_section_maps_bytes_present_in_file():
    image = build_elf32(
        [
            SectionSpec(".text", 0x1000, b"\x90" * 0x10, SHF_ALLOC | SHF_EXECINSTR),
            SectionSpec(".data", 0x8000, b"\x01" * 0x10, SHF_ALLOC | SHF_WRITE,
                        size=0xF0000000),
        ]
    )
    result = load(image)
    data = result.program.memory.get_block(".data")
    # .data is the second section, right after the 0x10 bytes of .text
    assert data.size == len(image) - 0x50
    assert data.read(data.start, 0x10) == b"\x01" * 0x10
    assert data.is_initialized
    assert result.helper.messages == [
        f".data is truncated: {len(image) - 0x50:#x} of 0xf0000000 bytes present in the file"
    ]
