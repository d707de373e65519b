"""FFI type alphabet and FFI-level function signatures"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .types import Callable, Object


class FFIType(Enum):
    """Representations legal at the native/foreign boundary"""
    INT8 = 'int8'
    UINT8 = 'uint8'
    INT16 = 'int16'
    UINT16 = 'uint16'
    INT32 = 'int32'
    UINT32 = 'uint32'
    INT64 = 'int64'
    UINT64 = 'uint64'
    FLOAT32 = 'float32'
    FLOAT64 = 'float64'
    BOOL = 'bool'                  # one byte, 0 or 1
    BUFFER = 'buffer'              # BufferRecord by value
    BYTE_VIEW = 'byte_view'        # borrowed ByteView by value
    HANDLE = 'handle'              # u64, meaningful only to the native core
    ERROR_RECORD = 'error_record'  # out-parameter, passed by pointer


class Ownership(Enum):
    """Who frees the memory behind an argument or return value"""
    BORROWED = 'borrowed'          # caller allocates, valid for the call only
    TRANSFERRED = 'transferred'    # caller relinquishes, callee frees
    CALLER_OWNED = 'caller_owned'  # callee allocates, caller frees


@dataclass(frozen=True)
class FFIArgument:
    name: str
    type: FFIType
    ownership: Ownership = Ownership.BORROWED


@dataclass(frozen=True)
class FFIFunction:
    """Flattened C-compatible signature of one exported symbol.

    ``arguments`` includes the synthetic error out-parameter (always last)
    when ``error_type`` is set. ``source`` and ``owner`` point back at the
    interface callable for backends that emit wrappers; support functions
    have neither.
    """
    name: str
    arguments: tuple[FFIArgument, ...] = ()
    return_type: Optional[FFIType] = None
    error_type: Optional[str] = None
    source: Optional[Callable] = field(default=None, compare=False)
    owner: Optional[Object] = field(default=None, compare=False)

    @property
    def has_error_out(self) -> bool:
        return self.error_type is not None

    @property
    def value_arguments(self) -> tuple[FFIArgument, ...]:
        """Arguments without the trailing error out-parameter"""
        if self.has_error_out:
            return self.arguments[:-1]
        return self.arguments

    def shape(self) -> tuple:
        """Name-independent signature, equal for equal interface signatures"""
        return (
            tuple((a.type, a.ownership) for a in self.arguments),
            self.return_type,
        )
