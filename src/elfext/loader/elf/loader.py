"""Implementation of the generic ELF loader.

The loader maps the allocated sections of an ELF file into memory blocks of
a new ``Program``, then hands over to the GOT/PLT passes of the generic
loader and of the matching machine extension.

Examples:
    >>> result = ElfLoader(LoadOptions(image_base=0x10000)).load("libfoo.so")
    >>> print(result.extension)
    x86-32
    >>> plt = result.program.memory.get_block(".plt")
    >>> ebx = result.program.get_register("EBX")
    >>> result.program.memory.get_register_value(ebx, plt.start)
    RegisterValue(register=Register(name='EBX', bit_length=32), value=77824)
"""

import os
from typing import IO, Optional, Sequence

import attr
from loguru import logger

from elfext.exceptions import (
    AddressOutOfBoundsError,
    InternalConsistencyError,
    InvalidNameError,
    LoaderError,
    MemoryConflictError,
)
from elfext.loader.base import CancelCheck, LoadOptions, PassResult, never_cancelled
from elfext.loader.elf.extend import (
    EXTENSIONS,
    ElfExtension,
    GotPltProcessor,
    default_got_plt,
    get_elf_extension,
    process_got_plt,
)
from elfext.loader.elf.header import ElfHeader, ElfSectionHeader, read_elf_header
from elfext.loader.elf.helper import ElfLoadHelper
from elfext.machine import machine_from_header
from elfext.memory.block import MemoryBlock, MemoryBlockFlags
from elfext.program import Program

#: ``source_name`` of the blocks created by this loader
SOURCE_NAME = "Elf Loader"


def get_flags(section: ElfSectionHeader) -> MemoryBlockFlags:
    """Convert ELF section flags to block permissions"""
    flags = MemoryBlockFlags.READ
    if section.is_writable:
        flags |= MemoryBlockFlags.WRITE
    if section.is_executable:
        flags |= MemoryBlockFlags.EXECUTE
    return flags


def is_loadable_section(section: ElfSectionHeader) -> bool:
    # Sections without ALLOC, or empty ones, never reach memory
    return section.is_alloc and section.size > 0


@attr.s(auto_attribs=True)
class LoadResult:
    program: Program
    helper: ElfLoadHelper
    #: The extension selected for the load, if any
    extension: Optional[ElfExtension]
    #: Outcome of the GOT/PLT processing (``None`` if it failed)
    result: Optional[PassResult]


class ElfLoader:
    """Loads ELF files into new programs."""

    options: LoadOptions
    #: The extensions to choose from, in order of preference
    extensions: Sequence[ElfExtension]
    #: The generic GOT/PLT pass, run before any extension's pass
    default_processor: GotPltProcessor

    def __init__(
        self,
        options: Optional[LoadOptions] = None,
        extensions: Sequence[ElfExtension] = EXTENSIONS,
        default_processor: GotPltProcessor = default_got_plt,
    ):
        self.options = options or LoadOptions()
        self.extensions = extensions
        self.default_processor = default_processor

    def load(self, filename: str, is_cancelled: CancelCheck = never_cancelled) -> LoadResult:
        with open(filename, "rb") as stream:
            return self.load_stream(stream, os.path.basename(filename), is_cancelled)

    def create_program(self, name: str, header: ElfHeader) -> Program:
        machine = self.options.machine or machine_from_header(header)
        image_base = self.options.image_base
        if image_base is None:
            image_base = header.image_base
        try:
            return Program(name, machine, image_base)
        except AddressOutOfBoundsError as exc:
            raise LoaderError(f"Invalid image base {image_base:#x}") from exc

    def load_stream(
        self, stream: IO, name: str, is_cancelled: CancelCheck = never_cancelled
    ) -> LoadResult:
        """Load the ELF file in ``stream`` into a new program named ``name``.

        Raises:
            LoaderError: The file cannot be parsed, or its machine is not
                supported.
            InternalConsistencyError: An extension pass failed and
                ``options.strict`` is set.

        """
        header = read_elf_header(stream)
        program = self.create_program(name, header)
        helper = ElfLoadHelper(header, program)
        logger.info(f"Loading {name} as {program.machine.name}:{program.machine.bit_width}")

        with program.exclusive_access():
            if self.options.map_sections:
                self.map_sections(helper, stream)
            extension = get_elf_extension(helper, self.extensions)
            result = self.process_got_plt(helper, is_cancelled)

        return LoadResult(program, helper, extension, result)

    def process_got_plt(
        self, helper: ElfLoadHelper, is_cancelled: CancelCheck
    ) -> Optional[PassResult]:
        try:
            return process_got_plt(
                helper, is_cancelled, self.extensions, self.default_processor
            )
        except InternalConsistencyError as exc:
            if self.options.strict:
                raise
            logger.exception(f"GOT/PLT processing of {helper.program.name} failed")
            helper.log(f"GOT/PLT processing failed: {exc}")
            return None

    def map_sections(self, helper: ElfLoadHelper, stream: IO):
        """Create a memory block for each allocated, non-empty section."""
        for section in filter(is_loadable_section, helper.header.sections):
            try:
                block = self.map_section(helper, stream, section)
            except (AddressOutOfBoundsError, InvalidNameError, MemoryConflictError) as exc:
                helper.log(f"Skipped loading of {section.name or '<unnamed>'}: {exc}")
                continue
            block.source_name = SOURCE_NAME
            logger.info(f"Mapped {section.name} at {block.range}")

    def map_section(
        self, helper: ElfLoadHelper, stream: IO, section: ElfSectionHeader
    ) -> MemoryBlock:
        memory = helper.program.memory
        start = helper.get_default_address(section.address)
        # Raises for sections reaching past the end of the address space
        start.add(section.size - 1)
        flags = get_flags(section)
        if section.is_nobits:
            return memory.create_uninitialized_block(
                section.name, start, section.size, flags=flags
            )

        stream.seek(0, os.SEEK_END)
        available = max(0, stream.tell() - section.offset)
        stream.seek(section.offset)
        data = stream.read(min(section.size, available))
        if len(data) < section.size:
            logger.warning(f"{section.name} extends past the end of the file")
            helper.log(
                f"{section.name} is truncated: {len(data):#x} of "
                f"{section.size:#x} bytes present in the file"
            )
        if not data:
            return memory.create_uninitialized_block(
                section.name, start, section.size, flags=flags
            )
        return memory.create_initialized_block(
            section.name,
            start,
            data,
            flags=flags,
            file_name=helper.program.name,
            file_offset=section.offset,
            description=f"{helper.program.name}[{section.offset:#x}]: {section.name}",
        )


def load_elf(
    filename: str,
    options: Optional[LoadOptions] = None,
    is_cancelled: CancelCheck = never_cancelled,
) -> Program:
    """Load a single ELF file with the default extensions.

    Args:
        filename: Path to the ELF file to load.
        options: Settings of the load.
        is_cancelled: Polled between units of work to abort the load early.

    Returns:
        The populated program.

    """
    return ElfLoader(options).load(filename, is_cancelled).program
