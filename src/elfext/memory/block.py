"""Memory blocks: named, permissioned, contiguous ranges of a program's
address space.

A ``DEFAULT`` block owns its bytes. ``BIT_MAPPED`` and ``BYTE_MAPPED``
blocks own nothing: each of their addresses is translated into a bit or a
byte of whatever block currently lives at the mapped source address, looked
up through the owning ``Memory`` on every access.
"""

from enum import Enum, IntFlag
from typing import TYPE_CHECKING, List, Optional, Tuple, Union

import attr

from elfext.address import Address, AddressRange, AddressSpace
from elfext.commons import EXTERNAL_BLOCK_NAME
from elfext.exceptions import (
    AddressOutOfBoundsError,
    UninitializedMemoryError,
    UnmappedMemoryError,
)

if TYPE_CHECKING:
    from elfext.memory.memory import Memory

Buffer = Union[bytearray, memoryview]


class MemoryBlockFlags(IntFlag):
    """Block permissions and attributes.

    These are persisted as an 8-bit field: never renumber, only add.
    """

    NONE = 0
    EXECUTE = 0x1
    WRITE = 0x2
    READ = 0x4
    VOLATILE = 0x8
    ARTIFICIAL = 0x10


class MemoryBlockType(Enum):
    DEFAULT = "Default"
    BIT_MAPPED = "Bit Mapped"
    BYTE_MAPPED = "Byte Mapped"


@attr.s(auto_attribs=True, frozen=True)
class ByteMappingScheme:
    """Describes how a byte-mapped block selects bytes from its source.

    For every ``source_byte_count`` consecutive source bytes, the first
    ``mapped_byte_count`` of them appear (in order) in the mapped block. The
    default scheme maps every source byte (1:1).
    """

    mapped_byte_count: int = 1
    source_byte_count: int = 1

    def __attrs_post_init__(self):
        for count in (self.mapped_byte_count, self.source_byte_count):
            if not 1 <= count <= 127:
                raise ValueError(f"Invalid byte mapping count: {count}")
        if self.mapped_byte_count > self.source_byte_count:
            raise ValueError(
                "Mapped byte count may not exceed the source byte count"
            )

    @property
    def is_one_to_one(self) -> bool:
        return self.mapped_byte_count == self.source_byte_count

    def source_offset(self, mapped_offset: int) -> int:
        group, index = divmod(mapped_offset, self.mapped_byte_count)
        return group * self.source_byte_count + index

    def source_length(self, mapped_size: int) -> int:
        """Number of source bytes spanned by ``mapped_size`` mapped bytes."""
        return self.source_offset(mapped_size - 1) + 1

    def __str__(self):
        return f"{self.mapped_byte_count}:{self.source_byte_count}"


@attr.s(auto_attribs=True, frozen=True)
class SourceInfo:
    """Provenance of one contiguous part of a block."""

    min_address: Address
    max_address: Address
    #: Human readable origin ("synthetic", "libc.so[0x1040]", ...)
    description: str = ""
    #: The file the bytes were read from, if any
    file_name: Optional[str] = None
    #: Offset in ``file_name`` corresponding to ``min_address``
    file_offset: Optional[int] = None
    #: For mapped blocks, the source addresses the range maps onto
    mapped_range: Optional[AddressRange] = None

    @property
    def range(self) -> AddressRange:
        return AddressRange(self.min_address, self.max_address)

    @property
    def length(self) -> int:
        return self.max_address.offset - self.min_address.offset + 1

    def contains(self, address: Address) -> bool:
        return self.range.contains(address)

    def relocated(self, old_start: Address, new_start: Address) -> "SourceInfo":
        """The same source, for a block moved from ``old_start`` to
        ``new_start``.
        """
        delta = self.min_address.offset - old_start.offset
        new_min = new_start.space.get_address(new_start.offset + delta)
        return attr.evolve(
            self, min_address=new_min, max_address=new_min.add(self.length - 1)
        )

    def clipped(self, limits: AddressRange) -> Optional["SourceInfo"]:
        part = self.range.intersect(limits)
        if part is None:
            return None
        file_offset = self.file_offset
        if file_offset is not None:
            file_offset += part.min_address.offset - self.min_address.offset
        return attr.evolve(
            self,
            min_address=part.min_address,
            max_address=part.max_address,
            file_offset=file_offset,
        )

    def __str__(self):
        if self.description:
            return self.description
        if self.file_name is not None:
            return f"{self.file_name}[{self.file_offset or 0:#x}]"
        return "synthetic"


class MemoryBlock:
    """A contiguous range of addressable memory.

    Blocks are created and owned by a ``Memory``; do not instantiate them
    directly.
    """

    # pylint: disable=too-many-instance-attributes,too-many-public-methods
    #: The memory this block belongs to
    _memory: "Memory"
    _name: str
    _start: Address
    _size: int
    _flags: MemoryBlockFlags
    #: Kind of block
    type: MemoryBlockType
    comment: str
    #: Name of whatever produced the block (e.g. the loader)
    source_name: str
    #: Bytes of a ``DEFAULT`` block (``None`` while no byte is assigned)
    _data: Optional[bytearray]
    #: Per-byte "assigned" markers (``None`` means every byte of ``_data`` is
    #: assigned)
    _defined: Optional[bytearray]
    #: Where the source bytes of a mapped block start
    mapped_address: Optional[Address]
    #: Byte selection for ``BYTE_MAPPED`` blocks
    mapping_scheme: Optional[ByteMappingScheme]
    _source_infos: List[SourceInfo]

    def __init__(
        self,
        memory: "Memory",
        name: str,
        start: Address,
        size: int,
        block_type: MemoryBlockType = MemoryBlockType.DEFAULT,
        flags: MemoryBlockFlags = MemoryBlockFlags.READ,
        data: Optional[bytearray] = None,
        mapped_address: Optional[Address] = None,
        mapping_scheme: Optional[ByteMappingScheme] = None,
        source_infos: Optional[List[SourceInfo]] = None,
    ):
        self._memory = memory
        self._name = name
        self._start = start
        self._size = size
        self._flags = MemoryBlockFlags(flags)
        self.type = block_type
        self.comment = ""
        self.source_name = ""
        self._data = data
        self._defined = None
        self.mapped_address = mapped_address
        self.mapping_scheme = mapping_scheme
        self._source_infos = source_infos or [
            SourceInfo(start, self.end, description="synthetic")
        ]

    # Geometry

    @property
    def name(self) -> str:
        return self._name

    @property
    def start(self) -> Address:
        return self._start

    @property
    def end(self) -> Address:
        return self._start.add(self._size - 1)

    @property
    def size(self) -> int:
        return self._size

    @property
    def space(self) -> AddressSpace:
        return self._start.space

    @property
    def range(self) -> AddressRange:
        return AddressRange(self.start, self.end)

    def contains(self, address: Address) -> bool:
        return self.range.contains(address)

    def __contains__(self, address: Address) -> bool:
        return self.contains(address)

    def __lt__(self, other: "MemoryBlock") -> bool:
        return (self.space.space_id, self._start.offset) < (
            other.space.space_id,
            other.start.offset,
        )

    def __repr__(self):
        return f"MemoryBlock({self._name!r}, {self.range}, {self.type.value})"

    # Naming and attributes

    def set_name(self, name: str):
        """Rename the block.

        Raises:
            InvalidNameError: ``name`` is invalid or names an address space.
            DuplicateNameError: another block already uses ``name``.
            LockError: the block is an overlay and the caller does not hold
                exclusive access to the program.

        """
        self._check_overlay_access()
        self._memory.rename_block(self, name)

    def _check_overlay_access(self):
        if self.is_overlay:
            self._memory.program.check_exclusive_access()

    @property
    def flags(self) -> MemoryBlockFlags:
        return self._flags

    def _set_flag(self, flag: MemoryBlockFlags, enabled: bool):
        self._check_overlay_access()
        if enabled:
            self._flags |= flag
        else:
            self._flags &= ~flag

    @property
    def is_read(self) -> bool:
        return bool(self._flags & MemoryBlockFlags.READ)

    def set_read(self, enabled: bool):
        self._set_flag(MemoryBlockFlags.READ, enabled)

    @property
    def is_write(self) -> bool:
        return bool(self._flags & MemoryBlockFlags.WRITE)

    def set_write(self, enabled: bool):
        self._set_flag(MemoryBlockFlags.WRITE, enabled)

    @property
    def is_execute(self) -> bool:
        return bool(self._flags & MemoryBlockFlags.EXECUTE)

    def set_execute(self, enabled: bool):
        self._set_flag(MemoryBlockFlags.EXECUTE, enabled)

    def set_permissions(self, read: bool, write: bool, execute: bool):
        self.set_read(read)
        self.set_write(write)
        self.set_execute(execute)

    @property
    def is_volatile(self) -> bool:
        """Volatile blocks are usually I/O regions."""
        return bool(self._flags & MemoryBlockFlags.VOLATILE)

    def set_volatile(self, enabled: bool):
        self._set_flag(MemoryBlockFlags.VOLATILE, enabled)

    @property
    def is_artificial(self) -> bool:
        """Artificial blocks were fabricated to help analysis and do not
        exist in this form in a running process.
        """
        return bool(self._flags & MemoryBlockFlags.ARTIFICIAL)

    def set_artificial(self, enabled: bool):
        self._set_flag(MemoryBlockFlags.ARTIFICIAL, enabled)

    @property
    def is_mapped(self) -> bool:
        return self.type is not MemoryBlockType.DEFAULT

    @property
    def is_overlay(self) -> bool:
        return self.space.is_overlay

    @property
    def is_loaded(self) -> bool:
        return self.space.loaded

    @property
    def is_external_block(self) -> bool:
        return self._name == EXTERNAL_BLOCK_NAME

    @property
    def is_initialized(self) -> bool:
        """Whether every byte of a ``DEFAULT`` block has been assigned.

        Mapped blocks always report ``False``, whatever the state of their
        source.
        """
        if self.is_mapped or self._data is None:
            return False
        return self._defined is None or 0 not in self._defined

    def get_source_infos(self) -> Tuple[SourceInfo, ...]:
        return tuple(self._source_infos)

    def get_data(self) -> Optional[bytes]:
        """All the bytes of an initialized ``DEFAULT`` block."""
        if not self.is_initialized:
            return None
        return bytes(self._data)

    # Byte access

    def _offset(self, address: Address) -> int:
        if not self.contains(address):
            raise AddressOutOfBoundsError(f"{address} is not in block {self._name}")
        return address.offset - self._start.offset

    def _check_defined(self, offset: int, length: int):
        if length <= 0:
            return
        if self._data is None:
            raise UninitializedMemoryError(
                f"Block {self._name} is not initialized"
            )
        if self._defined is not None and 0 in self._defined[offset:offset + length]:
            first = self._defined.index(0, offset, offset + length)
            raise UninitializedMemoryError(
                f"Byte at {self._start.add(first)} is not initialized"
            )

    def _source_block(self, address: Address) -> "MemoryBlock":
        block = self._memory.get_block(address)
        if block is None or block is self:
            raise UnmappedMemoryError(
                f"No source block at {address} for mapped block {self._name}"
            )
        return block

    def _mapped_location(self, offset: int) -> Tuple[Address, int]:
        """The source address (and the bit, for bit-mapped blocks) behind the
        mapped byte at ``offset``.
        """
        if self.type is MemoryBlockType.BIT_MAPPED:
            byte_offset, bit = divmod(offset, 8)
            return self.mapped_address.add(byte_offset), bit
        scheme = self.mapping_scheme or ByteMappingScheme()
        return self.mapped_address.add(scheme.source_offset(offset)), -1

    def _get_mapped_byte(self, offset: int) -> int:
        source_address, bit = self._mapped_location(offset)
        value = self._source_block(source_address).get_byte(source_address)
        if bit < 0:
            return value
        return (value >> bit) & 1

    def _put_mapped_byte(self, offset: int, value: int):
        source_address, bit = self._mapped_location(offset)
        source = self._source_block(source_address)
        if bit >= 0:
            current = source.get_byte(source_address)
            if value:
                value = current | (1 << bit)
            else:
                value = current & ~(1 << bit)
        source.put_byte(source_address, value)

    def get_byte(self, address: Address) -> int:
        """Read a single byte.

        Raises:
            AddressOutOfBoundsError: ``address`` is not in this block.
            UninitializedMemoryError: the byte was never assigned.
            UnmappedMemoryError: a mapped block has no source block.

        """
        offset = self._offset(address)
        if self.is_mapped:
            return self._get_mapped_byte(offset)
        self._check_defined(offset, 1)
        return self._data[offset]

    def put_byte(self, address: Address, value: int):
        """Overwrite a single, already assigned byte.

        Raises:
            AddressOutOfBoundsError: ``address`` is not in this block.
            UninitializedMemoryError: the byte was never assigned.
            UnmappedMemoryError: a mapped block has no source block.

        """
        if not 0 <= value <= 0xFF:
            raise ValueError(f"Not a byte value: {value}")
        offset = self._offset(address)
        if self.is_mapped:
            self._put_mapped_byte(offset, value)
            return
        self._check_defined(offset, 1)
        self._data[offset] = value

    @staticmethod
    def _check_buffer(buffer_length: int, offset: int, length: Optional[int]) -> int:
        if length is None:
            length = buffer_length - offset
        if offset < 0 or length < 0 or offset + length > buffer_length:
            raise IndexError(
                f"Invalid offset/length {offset}/{length} for a buffer of "
                f"{buffer_length} bytes"
            )
        return length

    def get_bytes(
        self,
        address: Address,
        buffer: Buffer,
        offset: int = 0,
        length: Optional[int] = None,
    ) -> int:
        """Copy up to ``length`` bytes starting at ``address`` into
        ``buffer[offset:]``.

        Fewer bytes than requested are copied when the block ends first.

        Returns:
            The number of bytes copied.

        """
        length = self._check_buffer(len(buffer), offset, length)
        start = self._offset(address)
        count = min(length, self._size - start)
        if self.is_mapped:
            chunk = bytes(self._get_mapped_byte(start + i) for i in range(count))
        else:
            self._check_defined(start, count)
            chunk = bytes(self._data[start:start + count]) if count else b""
        buffer[offset:offset + count] = chunk
        return count

    def put_bytes(
        self,
        address: Address,
        data: Union[bytes, Buffer],
        offset: int = 0,
        length: Optional[int] = None,
    ) -> int:
        """Copy up to ``length`` bytes from ``data[offset:]`` into the block at
        ``address``.

        Returns:
            The number of bytes written (truncated at the end of the block).

        Raises:
            UninitializedMemoryError: one of the target bytes was never
                assigned. Nothing is written in that case.

        """
        length = self._check_buffer(len(data), offset, length)
        start = self._offset(address)
        count = min(length, self._size - start)
        chunk = bytes(data[offset:offset + count])
        if self.is_mapped:
            for index, value in enumerate(chunk):
                self._put_mapped_byte(start + index, value)
        elif count:
            self._check_defined(start, count)
            self._data[start:start + count] = chunk
        return count

    def read(self, address: Address, length: int) -> bytes:
        buffer = bytearray(length)
        count = self.get_bytes(address, buffer)
        return bytes(buffer[:count])
