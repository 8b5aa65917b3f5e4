"""The program: an explicit lifecycle object holding all the state a load
mutates (address spaces, memory blocks and register annotations).
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import attr

from elfext.address import Address, AddressFactory, AddressSpace
from elfext.commons import DEFAULT_SPACE_NAME
from elfext.exceptions import LockError
from elfext.machine import Machine, Register
from elfext.memory.memory import Memory


@attr.s(auto_attribs=True, frozen=True)
class ExclusiveAccess:
    """A token proving that the holder owns the program's coarse lock."""

    program: "Program"
    thread_id: int


class Program:
    """Owns the memory model of one loaded binary.

    Structural changes (creating, removing or reshaping blocks, painting
    register values) are only accepted while the calling thread holds
    ``exclusive_access()``.
    """

    #: Name of the program (usually the name of the loaded file)
    name: str
    #: The processor the program was loaded for
    machine: Machine
    address_factory: AddressFactory
    memory: Memory

    def __init__(self, name: str, machine: Machine, image_base: int = 0):
        self.name = name
        self.machine = machine
        self.address_factory = AddressFactory(
            AddressSpace(
                name=DEFAULT_SPACE_NAME,
                size=machine.bit_width,
                space_id=1,
                big_endian=machine.big_endian,
            )
        )
        self.image_base = self.default_space.get_address(image_base)
        self._lock = threading.RLock()
        self._owner: Optional[int] = None
        self._depth = 0
        self.memory = Memory(self)

    @property
    def default_space(self) -> AddressSpace:
        return self.address_factory.default_space

    def get_address(self, offset: int) -> Address:
        return self.default_space.get_address(offset)

    def get_register(self, name: str) -> Optional[Register]:
        return self.machine.get_register(name)

    @contextmanager
    def exclusive_access(self, blocking: bool = True) -> Iterator[ExclusiveAccess]:
        """Acquire the program's coarse lock for the duration of the block.

        The lock is re-entrant for the owning thread.

        Raises:
            LockError: ``blocking`` is False and another thread holds the lock.

        """
        if not self._lock.acquire(blocking):
            raise LockError(f"{self.name} is locked by another thread")
        self._owner = threading.get_ident()
        self._depth += 1
        try:
            yield ExclusiveAccess(self, self._owner)
        finally:
            self._depth -= 1
            if not self._depth:
                self._owner = None
            self._lock.release()

    def has_exclusive_access(self) -> bool:
        return self._owner == threading.get_ident()

    def check_exclusive_access(self):
        if not self.has_exclusive_access():
            raise LockError(f"Exclusive access to {self.name} is required")

    def __repr__(self):
        return f"Program({self.name!r}, {self.machine.name}:{self.machine.bit_width})"
