"""Pieces shared by all loaders: per-load options, the diagnostic message
log and the outcome of a processing pass.
"""

from enum import Enum
from typing import Callable, Iterator, List, Optional

import attr
from loguru import logger

from elfext.machine import Machine

#: Polled between units of work; returns ``True`` when the caller asked to
#: stop.
CancelCheck = Callable[[], bool]


def never_cancelled() -> bool:
    return False


class PassResult(Enum):
    #: The pass ran to completion
    COMPLETED = "completed"
    #: The pass' preconditions were not met, nothing was done
    SKIPPED = "skipped"
    #: The caller cancelled the pass; work done so far is kept
    CANCELLED = "cancelled"


@attr.s(auto_attribs=True)
class LoadOptions:
    """Settings of a single load."""

    #: The image base of the program. ``None`` keeps the base the binary was
    #: linked at.
    image_base: Optional[int] = None
    #: Load as this machine instead of the one declared by the header
    machine: Optional[Machine] = None
    #: Create memory blocks for allocated sections
    map_sections: bool = True
    #: Re-raise internal consistency errors from extension passes instead of
    #: logging them
    strict: bool = False


class MessageLog:
    """Collects the human-readable diagnostics of a load."""

    messages: List[str]

    def __init__(self):
        self.messages = []

    def append(self, message: str):
        logger.info(message)
        self.messages.append(message)

    def __iter__(self) -> Iterator[str]:
        yield from self.messages

    def __len__(self) -> int:
        return len(self.messages)

    def __str__(self):
        return "\n".join(self.messages)
