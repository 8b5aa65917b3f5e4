class ElfExtException(Exception):
    """Base exception for elfext"""


class AddressOutOfBoundsError(ElfExtException, ValueError):
    """An address (or offset) falls outside of the space or block it was
    used with.
    """


class InvalidNameError(ElfExtException, ValueError):
    """A name does not satisfy the naming rules, or collides with the name of
    an address space.
    """


class DuplicateNameError(InvalidNameError):
    """A block with the requested name already exists."""


class MemoryAccessError(ElfExtException):
    """Base class for byte access failures."""


class UninitializedMemoryError(MemoryAccessError):
    """The address is inside the block, but its byte was never assigned."""


class UnmappedMemoryError(MemoryAccessError):
    """No block (or no mapped source block) backs the requested bytes."""


class MemoryConflictError(ElfExtException, ValueError):
    """Indicates that a block would overlap an existing block."""


class MemoryBlockError(ElfExtException):
    """The requested block operation is not supported for this block."""


class LockError(ElfExtException):
    """A structural change was attempted without exclusive access to the
    program. The caller may acquire access and retry.
    """


class ContextChangeError(ElfExtException):
    """A register annotation conflicts with an existing one."""


class NotFoundError(ElfExtException, LookupError):
    """A requested entry does not exist."""


class InternalConsistencyError(ElfExtException):
    """A precondition that was already verified turned out to be false. This
    indicates a bug elsewhere in the pipeline and is not recoverable.
    """


class LoaderError(ElfExtException):
    """Indicates a binary loading error."""
