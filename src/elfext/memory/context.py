"""Register value annotations painted over address ranges.

Loaders use these to record register contents that are implied by the
platform conventions (e.g. a register holding a table base for the whole of
a code region) so that later analysis does not need to re-derive them.
"""

from collections import defaultdict
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Tuple

import attr

from elfext.address import Address, AddressRange, AddressSpace
from elfext.exceptions import ContextChangeError
from elfext.machine import Register

if TYPE_CHECKING:
    from elfext.program import Program


@attr.s(auto_attribs=True, frozen=True)
class RegisterValue:
    register: Register
    value: int

    def __attrs_post_init__(self):
        if not 0 <= self.value <= self.register.max_value:
            raise ValueError(
                f"{self.value:#x} does not fit in {self.register.name}"
            )

    def __str__(self):
        return f"{self.register.name}={self.value:#x}"


@attr.s(auto_attribs=True)
class _ValueRange:
    start: int
    end: int
    value: int


class ProgramContext:
    """Stores, per register, a set of non-overlapping ranges each holding a
    constant value.
    """

    program: "Program"
    #: register name -> address space -> value ranges sorted by start offset
    _ranges: Dict[str, Dict[AddressSpace, List[_ValueRange]]]

    def __init__(self, program: "Program"):
        self.program = program
        self._ranges = defaultdict(dict)

    def _check_register(self, register: Register):
        if self.program.get_register(register.name) != register:
            raise ValueError(
                f"{register.name} is not a register of {self.program.machine.name}"
            )

    def set_register_value(self, start: Address, end: Address, value: RegisterValue):
        """Associate ``value`` with every address in ``[start, end]``.

        Painting a range that is already (partially) annotated with the same
        value is a no-op for the overlapping part; touching or overlapping
        ranges with the same value are merged.

        Raises:
            LockError: the caller does not hold exclusive access.
            ValueError: ``start``/``end`` do not form a valid range, or the
                register does not belong to the program's machine.
            ContextChangeError: part of the range already holds a different
                value for the register.

        """
        self.program.check_exclusive_access()
        self._check_register(value.register)
        painted = AddressRange(start, end)
        low, high = painted.min_address.offset, painted.max_address.offset

        spaces = self._ranges[value.register.name]
        kept = []
        for entry in spaces.get(painted.space, []):
            if entry.end < low - 1 or entry.start > high + 1:
                kept.append(entry)
            elif entry.value != value.value:
                if entry.start <= high and entry.end >= low:
                    raise ContextChangeError(
                        f"{value.register.name} already holds {entry.value:#x} "
                        f"at {painted.space.name}:{max(low, entry.start):x}"
                    )
                kept.append(entry)
            else:
                low = min(low, entry.start)
                high = max(high, entry.end)

        kept.append(_ValueRange(low, high, value.value))
        kept.sort(key=lambda entry: entry.start)
        spaces[painted.space] = kept

    def remove_register_value(self, start: Address, end: Address, register: Register):
        """Clear any value of ``register`` in ``[start, end]``."""
        self.program.check_exclusive_access()
        cleared = AddressRange(start, end)
        low, high = cleared.min_address.offset, cleared.max_address.offset

        spaces = self._ranges[register.name]
        kept = []
        for entry in spaces.get(cleared.space, []):
            if entry.end < low or entry.start > high:
                kept.append(entry)
                continue
            if entry.start < low:
                kept.append(_ValueRange(entry.start, low - 1, entry.value))
            if entry.end > high:
                kept.append(_ValueRange(high + 1, entry.end, entry.value))
        spaces[cleared.space] = kept

    def get_register_value(
        self, register: Register, address: Address
    ) -> Optional[RegisterValue]:
        for entry in self._ranges[register.name].get(address.space, []):
            if entry.start <= address.offset <= entry.end:
                return RegisterValue(register, entry.value)
        return None

    def get_value_ranges(self, register: Register) -> Iterator[Tuple[AddressRange, int]]:
        spaces = self._ranges[register.name]
        for space in sorted(spaces, key=lambda space: space.space_id):
            for entry in spaces[space]:
                yield (
                    AddressRange(space.get_address(entry.start),
                                 space.get_address(entry.end)),
                    entry.value,
                )

    def get_registers_with_values(self) -> List[Register]:
        registers = []
        for name, spaces in self._ranges.items():
            if any(spaces.values()):
                registers.append(self.program.get_register(name))
        return registers
