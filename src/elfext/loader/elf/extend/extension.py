"""ELF extensions: machine specific additions to the generic ELF load.

An extension is a plain descriptor pairing two compatibility predicates with
an optional GOT/PLT processing pass:

    * ``can_handle_header`` is a coarse check on the header alone (machine id
      and ELF class). It shortlists extensions before a program exists.
    * ``can_handle_context`` re-validates against the load in progress, most
      notably the machine actually selected for the program. Some machine
      ids are shared by incompatible execution models, so the header alone
      is not enough.
"""

from enum import Enum
from typing import Callable, Optional

import attr

from elfext.loader.base import CancelCheck, PassResult
from elfext.loader.elf.header import ElfHeader
from elfext.loader.elf.helper import ElfLoadHelper

HeaderPredicate = Callable[[ElfHeader], bool]
ContextPredicate = Callable[[ElfLoadHelper], bool]
GotPltProcessor = Callable[[ElfLoadHelper, CancelCheck], PassResult]


class ExtensionTag(Enum):
    X86_32 = "x86-32"
    X86_64 = "x86-64"


@attr.s(auto_attribs=True, frozen=True)
class ElfExtension:
    tag: ExtensionTag
    can_handle_header: HeaderPredicate
    #: Only consulted for extensions whose header check passed
    can_handle_context: ContextPredicate
    #: Distinguishes the extension's data types from other architectures'
    data_type_suffix: str
    #: The machine specific GOT/PLT pass (``None`` if there is none)
    process_got_plt: Optional[GotPltProcessor] = None

    def can_handle(self, helper: ElfLoadHelper) -> bool:
        return self.can_handle_header(helper.header) and self.can_handle_context(
            helper
        )

    def __str__(self):
        return self.tag.value
