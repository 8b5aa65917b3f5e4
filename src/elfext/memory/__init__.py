from elfext.memory.block import (
    ByteMappingScheme,
    MemoryBlock,
    MemoryBlockFlags,
    MemoryBlockType,
    SourceInfo,
)
from elfext.memory.context import ProgramContext, RegisterValue
from elfext.memory.memory import Memory

__all__ = [
    "ByteMappingScheme",
    "Memory",
    "MemoryBlock",
    "MemoryBlockFlags",
    "MemoryBlockType",
    "ProgramContext",
    "RegisterValue",
    "SourceInfo",
]
