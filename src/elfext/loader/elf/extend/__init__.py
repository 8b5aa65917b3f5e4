from typing import List, Optional, Sequence

from loguru import logger

from elfext.commons import GOT_SECTION_NAMES
from elfext.loader.base import CancelCheck, PassResult, never_cancelled
from elfext.loader.elf.extend.extension import (
    ElfExtension,
    ExtensionTag,
    GotPltProcessor,
)
from elfext.loader.elf.extend.x86 import EXTENSIONS as EXTENSIONS_X86
from elfext.loader.elf.header import ElfHeader
from elfext.loader.elf.helper import ElfLoadHelper

#: All known extensions, in the order they are tried
EXTENSIONS: List[ElfExtension] = EXTENSIONS_X86


def default_got_plt(helper: ElfLoadHelper, is_cancelled: CancelCheck) -> PassResult:
    """The generic GOT/PLT pass every extension builds upon.

    Relocating GOT entries is the generic loader's job; this implementation
    only reports which GOT sections the binary carries.
    """
    for name in GOT_SECTION_NAMES:
        if is_cancelled():
            return PassResult.CANCELLED
        for section in helper.header.get_sections(name):
            logger.debug(f"{name} at {section.address:#x} ({section.size:#x} bytes)")
    return PassResult.COMPLETED


def find_header_candidates(
    header: ElfHeader, extensions: Sequence[ElfExtension] = EXTENSIONS
) -> List[ElfExtension]:
    """Shortlist the extensions whose header check accepts ``header``."""
    return [extension for extension in extensions if extension.can_handle_header(header)]


def get_elf_extension(
    helper: ElfLoadHelper, extensions: Sequence[ElfExtension] = EXTENSIONS
) -> Optional[ElfExtension]:
    """Select the first extension (in registry order) that accepts both the
    header and the load in progress.
    """
    for extension in find_header_candidates(helper.header, extensions):
        if extension.can_handle_context(helper):
            return extension
    return None


def process_got_plt(
    helper: ElfLoadHelper,
    is_cancelled: CancelCheck = never_cancelled,
    extensions: Sequence[ElfExtension] = EXTENSIONS,
    default_processor: GotPltProcessor = default_got_plt,
) -> PassResult:
    """Run the generic GOT/PLT pass, followed by the selected extension's pass
    (if any).

    Returns:
        The result of the last pass that ran.

    """
    extension = get_elf_extension(helper, extensions)
    result = default_processor(helper, is_cancelled)
    if result is PassResult.CANCELLED:
        return result
    if extension is None or extension.process_got_plt is None:
        return result
    logger.info(f"Processing GOT/PLT with the {extension} extension")
    return extension.process_got_plt(helper, is_cancelled)


__all__ = [
    "EXTENSIONS",
    "ElfExtension",
    "ExtensionTag",
    "GotPltProcessor",
    "default_got_plt",
    "find_header_candidates",
    "get_elf_extension",
    "process_got_plt",
]
