"""The coordinate system of a program: address spaces, addresses and
inclusive address ranges.
"""

import functools
from typing import Dict, Iterator, List, Optional, Union

import attr

from elfext.exceptions import AddressOutOfBoundsError


@attr.s(auto_attribs=True, eq=False)
class AddressSpace:
    """A named, linear space of ``2 ** size`` addressable bytes.

    Spaces compare by identity: two spaces are the same only if they are the
    same object registered in an ``AddressFactory``.
    """

    #: Name of the space (``ram``, or the name of an overlay block)
    name: str
    #: Width of an offset in bits
    size: int
    #: Unique, stable identifier (also used for ordering blocks across spaces)
    space_id: int
    big_endian: bool = False
    #: The space an overlay space shadows (``None`` for physical spaces)
    base_space: Optional["AddressSpace"] = None
    #: Whether the space represents memory that is loaded at runtime
    loaded: bool = True

    @property
    def max_offset(self) -> int:
        return (1 << self.size) - 1

    @property
    def is_overlay(self) -> bool:
        return self.base_space is not None

    def get_address(self, offset: int) -> "Address":
        if not 0 <= offset <= self.max_offset:
            raise AddressOutOfBoundsError(
                f"Offset {offset:#x} is not within space {self.name}"
            )
        return Address(self, offset)

    def get_truncated_address(self, offset: int) -> "Address":
        return Address(self, offset & self.max_offset)

    def __repr__(self):
        return f"AddressSpace({self.name!r}, size={self.size})"


@functools.total_ordering
@attr.s(auto_attribs=True, frozen=True, order=False)
class Address:
    space: AddressSpace
    offset: int

    def _check_comparable(self, other: "Address"):
        if self.space is not other.space:
            raise TypeError(
                f"Cannot compare addresses from {self.space.name} and "
                f"{other.space.name}"
            )

    def __lt__(self, other: "Address") -> bool:
        if not isinstance(other, Address):
            return NotImplemented
        self._check_comparable(other)
        return self.offset < other.offset

    def add(self, displacement: int) -> "Address":
        return self.space.get_address(self.offset + displacement)

    def subtract(self, displacement: int) -> "Address":
        return self.space.get_address(self.offset - displacement)

    def __add__(self, displacement: int) -> "Address":
        return self.add(displacement)

    def __sub__(self, other: Union[int, "Address"]):
        if isinstance(other, Address):
            self._check_comparable(other)
            return self.offset - other.offset
        return self.subtract(other)

    def __str__(self):
        digits = max(1, self.space.size // 4)
        return f"{self.space.name}:{self.offset:0{digits}x}"


@attr.s(auto_attribs=True, frozen=True)
class AddressRange:
    """An inclusive range of addresses within a single space."""

    min_address: Address
    max_address: Address

    def __attrs_post_init__(self):
        if self.min_address.space is not self.max_address.space:
            raise ValueError("Address range must be within a single space")
        if self.min_address.offset > self.max_address.offset:
            raise ValueError(
                f"Invalid range: {self.min_address} > {self.max_address}"
            )

    @property
    def space(self) -> AddressSpace:
        return self.min_address.space

    @property
    def length(self) -> int:
        return self.max_address.offset - self.min_address.offset + 1

    def contains(self, address: Address) -> bool:
        return (
            address.space is self.space
            and self.min_address.offset <= address.offset <= self.max_address.offset
        )

    def __contains__(self, address: Address) -> bool:
        return self.contains(address)

    def intersects(self, other: "AddressRange") -> bool:
        return (
            self.space is other.space
            and self.min_address.offset <= other.max_address.offset
            and other.min_address.offset <= self.max_address.offset
        )

    def intersect(self, other: "AddressRange") -> Optional["AddressRange"]:
        if not self.intersects(other):
            return None
        return AddressRange(max(self.min_address, other.min_address),
                            min(self.max_address, other.max_address))

    def __str__(self):
        return f"[{self.min_address}, {self.max_address}]"


class AddressFactory:
    """Keeps track of all the address spaces of a program."""

    #: The space into which ELF sections are loaded
    default_space: AddressSpace
    #: Map from space name to space
    spaces: Dict[str, AddressSpace]

    def __init__(self, default_space: AddressSpace):
        self.default_space = default_space
        self.spaces = {default_space.name: default_space}
        self._next_id = default_space.space_id + 1

    def __iter__(self) -> Iterator[AddressSpace]:
        yield from self.spaces.values()

    def get_space(self, name: str) -> Optional[AddressSpace]:
        return self.spaces.get(name)

    def get_spaces(self) -> List[AddressSpace]:
        return sorted(self.spaces.values(), key=lambda space: space.space_id)

    def add_overlay_space(self, name: str, base: AddressSpace) -> AddressSpace:
        if name in self.spaces:
            raise ValueError(f"Address space {name} already exists")
        space = AddressSpace(
            name=name,
            size=base.size,
            space_id=self._next_id,
            big_endian=base.big_endian,
            base_space=base,
            loaded=base.loaded,
        )
        self._next_id += 1
        self.spaces[name] = space
        return space

    def rename_space(self, space: AddressSpace, new_name: str):
        if new_name in self.spaces:
            raise ValueError(f"Address space {new_name} already exists")
        del self.spaces[space.name]
        space.name = new_name
        self.spaces[new_name] = space

    def remove_space(self, space: AddressSpace):
        if space is self.default_space:
            raise ValueError("Cannot remove the default address space")
        self.spaces.pop(space.name, None)
