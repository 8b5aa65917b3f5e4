"""ELF extensions for the x86 family.

x86-32 position independent code keeps the address of the GOT in ``EBX``
while executing PLT stubs. The x86-32 extension records that convention by
painting the GOT base as the value of ``EBX`` over every PLT block, which
lets analysis resolve ``jmp [ebx + n]`` thunks without re-deriving it.
"""

from typing import List

from loguru import logger

from elfext.commons import PLT_SECTION_NAME
from elfext.exceptions import (
    AddressOutOfBoundsError,
    ContextChangeError,
    InternalConsistencyError,
    NotFoundError,
)
from elfext.loader.base import CancelCheck, PassResult
from elfext.loader.elf.extend.extension import ElfExtension, ExtensionTag
from elfext.loader.elf.header import ElfHeader
from elfext.loader.elf.helper import ElfLoadHelper
from elfext.memory.context import RegisterValue

GOT_BASE_REGISTER = "EBX"


def is_x86_32_header(header: ElfHeader) -> bool:
    return header.e_machine == "EM_386" and header.is_32bit


def is_x86_32_context(helper: ElfLoadHelper) -> bool:
    machine = helper.program.machine
    return (
        is_x86_32_header(helper.header)
        and machine.name == "x86"
        and machine.bit_width == 32
    )


def is_x86_64_header(header: ElfHeader) -> bool:
    return header.e_machine == "EM_X86_64" and header.is_64bit


def is_x86_64_context(helper: ElfLoadHelper) -> bool:
    machine = helper.program.machine
    return (
        is_x86_64_header(helper.header)
        and machine.name == "x86"
        and machine.bit_width == 64
    )


def process_x86_plt_sections(
    helper: ElfLoadHelper, is_cancelled: CancelCheck
) -> PassResult:
    """Paint the GOT base address as the value of ``EBX`` over all the PLT
    blocks (``.plt`` and ``.plt.*``) of the program.

    Binaries without a dynamic table or without a ``DT_PLTGOT`` entry are
    skipped silently. PLT sections with no memory block are logged and
    skipped.

    Raises:
        InternalConsistencyError: The GOT base could not be resolved or
            painted although its presence was verified.

    """
    header = helper.header
    dynamic_table = header.dynamic_table
    if dynamic_table is None or not dynamic_table.contains_dynamic_value("DT_PLTGOT"):
        return PassResult.SKIPPED

    try:
        pltgot = helper.resolve_loaded_address(
            dynamic_table.get_dynamic_value("DT_PLTGOT")
        )
    except (NotFoundError, AddressOutOfBoundsError) as exc:
        raise InternalConsistencyError(f"Cannot resolve DT_PLTGOT: {exc}") from exc

    program = helper.program
    ebx = program.get_register(GOT_BASE_REGISTER)
    if ebx is None:
        raise InternalConsistencyError(
            f"{program.machine.name} has no {GOT_BASE_REGISTER} register"
        )
    memory = program.memory

    for section in header.sections:
        if is_cancelled():
            logger.info("x86 PLT processing cancelled")
            return PassResult.CANCELLED
        if not section.is_executable or not section.in_group(PLT_SECTION_NAME):
            continue

        plt_block = memory.get_block(section.name)
        if plt_block is None:
            helper.log(
                f"Skipped processing of {section.name}: memory block not found"
            )
            continue

        try:
            memory.set_register_value(
                plt_block.start, plt_block.end, RegisterValue(ebx, pltgot.offset)
            )
        except (ContextChangeError, ValueError) as exc:
            raise InternalConsistencyError(
                f"Cannot set {GOT_BASE_REGISTER} over {plt_block.name}: {exc}"
            ) from exc
        logger.debug(f"{GOT_BASE_REGISTER}={pltgot} over {plt_block.name}")

    return PassResult.COMPLETED


X86_32 = ElfExtension(
    tag=ExtensionTag.X86_32,
    can_handle_header=is_x86_32_header,
    can_handle_context=is_x86_32_context,
    data_type_suffix="_x86",
    process_got_plt=process_x86_plt_sections,
)

X86_64 = ElfExtension(
    tag=ExtensionTag.X86_64,
    can_handle_header=is_x86_64_header,
    can_handle_context=is_x86_64_context,
    data_type_suffix="_x86_64",
)

EXTENSIONS: List[ElfExtension] = [X86_32, X86_64]
