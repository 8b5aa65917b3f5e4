"""The memory of a program: an ordered set of non-overlapping blocks per
address space.
"""

# pylint: disable=protected-access
from bisect import bisect_right
from itertools import count
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Tuple, Union

from loguru import logger

from elfext.address import Address, AddressRange
from elfext.commons import SPLIT_SUFFIX, is_valid_name
from elfext.exceptions import (
    DuplicateNameError,
    InvalidNameError,
    MemoryBlockError,
    MemoryConflictError,
    UnmappedMemoryError,
)
from elfext.memory.block import (
    ByteMappingScheme,
    MemoryBlock,
    MemoryBlockFlags,
    MemoryBlockType,
    SourceInfo,
)
from elfext.memory.context import ProgramContext, RegisterValue

if TYPE_CHECKING:
    from elfext.program import Program


class Memory:
    """All the memory blocks of a program.

    Blocks never overlap within an address space. Lookups by name or address
    return ``None`` when nothing matches; structural changes require the
    program's exclusive access.
    """

    #: The program that owns this memory
    program: "Program"
    #: Register annotations painted over the memory's address ranges
    context: ProgramContext
    #: All the blocks, sorted by (space id, start offset)
    _blocks: List[MemoryBlock]
    #: Sort keys of ``_blocks``, used for address lookups
    _keys: List[Tuple[int, int]]
    _names: Dict[str, MemoryBlock]

    def __init__(self, program: "Program"):
        self.program = program
        self.context = ProgramContext(program)
        self._blocks = []
        self._keys = []
        self._names = {}

    def __iter__(self) -> Iterator[MemoryBlock]:
        yield from list(self._blocks)

    def __len__(self) -> int:
        return len(self._blocks)

    @property
    def blocks(self) -> List[MemoryBlock]:
        return list(self._blocks)

    def _reindex(self):
        self._blocks.sort()
        self._keys = [
            (block.space.space_id, block.start.offset) for block in self._blocks
        ]

    # Lookups

    def get_block(self, key: Union[str, Address]) -> Optional[MemoryBlock]:
        """Find a block by name or by an address it contains."""
        if isinstance(key, str):
            return self._names.get(key)
        index = bisect_right(self._keys, (key.space.space_id, key.offset)) - 1
        if index >= 0 and self._blocks[index].contains(key):
            return self._blocks[index]
        return None

    def contains(self, address: Address) -> bool:
        return self.get_block(address) is not None

    def __contains__(self, address: Address) -> bool:
        return self.contains(address)

    # Validation

    def _check_name(self, name: str, block: Optional[MemoryBlock] = None):
        if not is_valid_name(name):
            raise InvalidNameError(f"Invalid block name: {name!r}")
        if self.program.address_factory.get_space(name) is not None:
            raise InvalidNameError(f"{name} conflicts with an address space name")
        existing = self._names.get(name)
        if existing is not None and existing is not block:
            raise DuplicateNameError(f"Block {name} already exists")

    def _check_range(
        self,
        start: Address,
        size: int,
        ignore: Optional[MemoryBlock] = None,
        check_overlaps: bool = True,
    ) -> AddressRange:
        if size <= 0:
            raise ValueError(f"Block size must be positive, got {size}")
        new_range = AddressRange(start, start.add(size - 1))
        if not check_overlaps:
            return new_range
        for block in self._blocks:
            if block is not ignore and block.range.intersects(new_range):
                raise MemoryConflictError(
                    f"{new_range} overlaps block {block.name} {block.range}"
                )
        return new_range

    def _prepare(self, name: str, start: Address, size: int, overlay: bool) -> Address:
        """Validate a new block and return its final start address."""
        self.program.check_exclusive_access()
        self._check_name(name)
        # Overlays live in a space of their own and may shadow other blocks
        self._check_range(start, size, check_overlaps=not overlay)
        if overlay:
            space = self.program.address_factory.add_overlay_space(name, start.space)
            start = space.get_address(start.offset)
        return start

    def _add(self, block: MemoryBlock) -> MemoryBlock:
        self._blocks.append(block)
        self._names[block.name] = block
        self._reindex()
        logger.debug(f"Created block {block.name} at {block.range}")
        return block

    # Creation

    def create_initialized_block(
        self,
        name: str,
        start: Address,
        content: Union[bytes, bytearray, int],
        fill: int = 0,
        overlay: bool = False,
        flags: MemoryBlockFlags = MemoryBlockFlags.READ,
        file_name: Optional[str] = None,
        file_offset: Optional[int] = None,
        description: str = "",
    ) -> MemoryBlock:
        """Create a ``DEFAULT`` block whose bytes are all defined.

        Args:
            name: Unique name of the block.
            start: First address of the block.
            content: Either the bytes of the block, or its size (in which
                case every byte is set to ``fill``).
            fill: Value of each byte when ``content`` is a size.
            overlay: Place the block in a new overlay space named ``name``.
            flags: Initial permissions and attributes.
            file_name: File the bytes come from (recorded as provenance).
            file_offset: Offset of the bytes in ``file_name``.
            description: Human readable provenance.

        Returns:
            The new block.

        """
        if isinstance(content, int):
            data = bytearray([fill]) * content
        else:
            data = bytearray(content)
        start = self._prepare(name, start, len(data), overlay)
        source = SourceInfo(
            start,
            start.add(len(data) - 1),
            description=description,
            file_name=file_name,
            file_offset=file_offset,
        )
        return self._add(
            MemoryBlock(
                self, name, start, len(data), flags=flags, data=data,
                source_infos=[source],
            )
        )

    def create_uninitialized_block(
        self,
        name: str,
        start: Address,
        size: int,
        overlay: bool = False,
        flags: MemoryBlockFlags = MemoryBlockFlags.READ,
    ) -> MemoryBlock:
        start = self._prepare(name, start, size, overlay)
        return self._add(MemoryBlock(self, name, start, size, flags=flags))

    def _create_mapped(
        self,
        name: str,
        start: Address,
        mapped_address: Address,
        size: int,
        block_type: MemoryBlockType,
        scheme: Optional[ByteMappingScheme],
        overlay: bool,
    ) -> MemoryBlock:
        if size <= 0:
            raise ValueError(f"Block size must be positive, got {size}")
        if block_type is MemoryBlockType.BIT_MAPPED:
            source_length = (size + 7) // 8
        else:
            source_length = (scheme or ByteMappingScheme()).source_length(size)
        mapped_range = AddressRange(
            mapped_address, mapped_address.add(source_length - 1)
        )
        start = self._prepare(name, start, size, overlay)
        source = SourceInfo(
            start,
            start.add(size - 1),
            description=f"{block_type.value} from {mapped_address}",
            mapped_range=mapped_range,
        )
        return self._add(
            MemoryBlock(
                self, name, start, size, block_type=block_type,
                mapped_address=mapped_address, mapping_scheme=scheme,
                source_infos=[source],
            )
        )

    def create_bit_mapped_block(
        self,
        name: str,
        start: Address,
        mapped_address: Address,
        size: int,
        overlay: bool = False,
    ) -> MemoryBlock:
        """Create a block where each byte reflects one bit of the memory at
        ``mapped_address`` (least significant bit first).
        """
        return self._create_mapped(
            name, start, mapped_address, size, MemoryBlockType.BIT_MAPPED,
            None, overlay,
        )

    def create_byte_mapped_block(
        self,
        name: str,
        start: Address,
        mapped_address: Address,
        size: int,
        scheme: Optional[ByteMappingScheme] = None,
        overlay: bool = False,
    ) -> MemoryBlock:
        return self._create_mapped(
            name, start, mapped_address, size, MemoryBlockType.BYTE_MAPPED,
            scheme, overlay,
        )

    # Block management

    def rename_block(self, block: MemoryBlock, name: str):
        if name == block.name:
            return
        self._check_name(name, block)
        if block.is_overlay:
            self.program.address_factory.rename_space(block.space, name)
        del self._names[block.name]
        block._name = name
        self._names[name] = block

    def remove_block(self, block: MemoryBlock):
        self.program.check_exclusive_access()
        if self._names.get(block.name) is not block:
            raise ValueError(f"{block.name} does not belong to this memory")
        self._blocks.remove(block)
        del self._names[block.name]
        if block.is_overlay:
            self.program.address_factory.remove_space(block.space)
        self._reindex()
        logger.debug(f"Removed block {block.name}")

    def _unique_name(self, base: str) -> str:
        spaces = self.program.address_factory
        candidate = base
        index = count(1)
        while candidate in self._names or spaces.get_space(candidate) is not None:
            candidate = f"{base}.{next(index)}"
        self._check_name(candidate)
        return candidate

    def split(self, block: MemoryBlock, address: Address) -> MemoryBlock:
        """Split ``block`` at ``address``; the new block starts at ``address``
        and is named after the original block with a ``.split`` suffix.
        """
        self.program.check_exclusive_access()
        if block.is_mapped or block.is_overlay:
            raise MemoryBlockError(
                "Split is only supported for non-overlay default blocks"
            )
        if not block.contains(address) or address == block.start:
            raise ValueError(f"Cannot split {block.name} at {address}")

        offset = address - block.start
        new_block = MemoryBlock(
            self,
            self._unique_name(block.name + SPLIT_SUFFIX),
            address,
            block.size - offset,
            flags=block.flags,
        )
        new_block.comment = block.comment
        new_block.source_name = block.source_name
        if block._data is not None:
            new_block._data = block._data[offset:]
            block._data = block._data[:offset]
        if block._defined is not None:
            new_block._defined = block._defined[offset:]
            block._defined = block._defined[:offset]

        head, tail = AddressRange(block.start, address.subtract(1)), new_block.range
        infos = block._source_infos
        block._source_infos = [i for i in (s.clipped(head) for s in infos) if i]
        new_block._source_infos = [i for i in (s.clipped(tail) for s in infos) if i]
        block._size = offset
        self._add(new_block)
        return new_block

    def join(self, block1: MemoryBlock, block2: MemoryBlock) -> MemoryBlock:
        """Merge two adjacent default blocks. The lower block survives and
        keeps its name; the other block ceases to exist.
        """
        self.program.check_exclusive_access()
        first, second = sorted((block1, block2))
        for block in (first, second):
            if block.is_mapped or block.is_overlay:
                raise MemoryBlockError(f"Cannot join block {block.name}")
        if first.space is not second.space or first.end.offset + 1 != second.start.offset:
            raise MemoryBlockError(f"{first.name} and {second.name} are not adjacent")

        if first._data is not None or second._data is not None:
            data = bytearray()
            defined = bytearray()
            for block in (first, second):
                if block._data is None:
                    data += bytes(block.size)
                    defined += bytes(block.size)
                else:
                    data += block._data
                    defined += block._defined or b"\x01" * block.size
            first._data = data
            first._defined = None if 0 not in defined else defined

        first._source_infos = first._source_infos + second._source_infos
        first._size += second.size
        self._blocks.remove(second)
        del self._names[second.name]
        self._reindex()
        logger.debug(f"Joined {second.name} into {first.name}")
        return first

    def move_block(self, block: MemoryBlock, new_start: Address):
        self.program.check_exclusive_access()
        if block.is_overlay:
            raise MemoryBlockError(f"Cannot move overlay block {block.name}")
        self._check_range(new_start, block.size, ignore=block)
        old_start = block.start
        block._start = new_start
        block._source_infos = [
            info.relocated(old_start, new_start) for info in block._source_infos
        ]
        self._reindex()

    def convert_to_initialized(self, block: MemoryBlock, fill: int = 0) -> MemoryBlock:
        """Define every unassigned byte of a default block as ``fill``."""
        self.program.check_exclusive_access()
        if block.is_mapped:
            raise MemoryBlockError(f"{block.name} is a mapped block")
        if block._data is None:
            block._data = bytearray([fill]) * block.size
        elif block._defined is not None:
            for index, assigned in enumerate(block._defined):
                if not assigned:
                    block._data[index] = fill
        block._defined = None
        return block

    # Byte access

    def _require_block(self, address: Address, length: int = 1) -> MemoryBlock:
        block = self.get_block(address)
        if block is None:
            raise UnmappedMemoryError(f"No memory at {address}")
        if length > block.end.offset - address.offset + 1:
            raise UnmappedMemoryError(
                f"{length} bytes at {address} span beyond block {block.name}"
            )
        return block

    def get_byte(self, address: Address) -> int:
        return self._require_block(address).get_byte(address)

    def put_byte(self, address: Address, value: int):
        self._require_block(address).put_byte(address, value)

    def read(self, address: Address, length: int) -> bytes:
        """Read ``length`` bytes that must all lie within one block."""
        if length <= 0:
            return b""
        return self._require_block(address, length).read(address, length)

    def write(self, address: Address, data: bytes):
        if data:
            self._require_block(address, len(data)).put_bytes(address, data)

    # Register annotations

    def set_register_value(self, start: Address, end: Address, value: RegisterValue):
        self.context.set_register_value(start, end, value)

    def get_register_value(self, register, address: Address) -> Optional[RegisterValue]:
        return self.context.get_register_value(register, address)
