from typing import List, Optional

from cached_property import cached_property

from elfext.address import Address
from elfext.loader.base import MessageLog
from elfext.loader.elf.header import ElfHeader
from elfext.program import Program


class ElfLoadHelper:
    """The context handed to ELF extensions during a load: the parsed header,
    the program being populated, address resolution and a diagnostic log.
    """

    header: ElfHeader
    program: Program
    message_log: MessageLog

    def __init__(
        self, header: ElfHeader, program: Program, log: Optional[MessageLog] = None
    ):
        self.header = header
        self.program = program
        self.message_log = log if log is not None else MessageLog()

    @cached_property
    def image_base_adjustment(self) -> int:
        """Displacement between where the binary was linked and the program's
        image base.
        """
        return self.program.image_base.offset - self.header.image_base

    def get_default_address(self, offset: int) -> Address:
        """Map an offset, as stored in the binary, to the loaded address in
        the program's default space.
        """
        space = self.program.default_space
        return space.get_truncated_address(offset + self.image_base_adjustment)

    def resolve_loaded_address(self, raw_value: int) -> Address:
        """Resolve a value stored in the binary (e.g. a dynamic table entry)
        to a loaded address: first undo any prelink shift, then apply the
        image base. The order matters for prelinked binaries.
        """
        return self.get_default_address(
            self.header.adjust_address_for_prelink(raw_value)
        )

    def log(self, message: str):
        self.message_log.append(message)

    @property
    def messages(self) -> List[str]:
        return list(self.message_log)
