"""Buffer & Error Protocol shared verbatim by every backend.

Struct shapes
-------------
Every backend renders these three structs from the tables below, in this
field order, with natural C alignment, so a buffer produced through one
backend's declarations can be handed to code compiled from another's::

    BufferRecord  { int32 capacity; int32 len; uint8* data; int64 padding; }
    ByteView      { int32 len; const uint8* data; int64 padding; int32 padding2; }
    ErrorRecord   { int32 code; BufferRecord message; }

``padding`` fields pin the layout and carry no data.

Ownership
---------
Return values and out-parameters are allocated by the callee and freed by
the caller with ``ffi_<ns>_buffer_free``. In-parameters are allocated by the
caller and borrowed for the duration of the call, except parameters marked
as consumed, which the caller copies into a native buffer with
``ffi_<ns>_buffer_from_bytes`` and the native core frees. Every argument is
validated before that copy is made, so a rejected call owns no native
memory. ``ffi_<ns>_buffer_alloc`` serves native code that grows buffers it
returns. An ErrorRecord message follows the return-value rule.

Wire encoding
-------------
Big-endian. Lengths and counts are int32. Top-level text and bytes are raw
(the buffer length is the length); nested ones carry an int32 length prefix.
optional: u8 tag (0/1) then the value. sequence: count then elements.
map: count then key/value pairs. record: fields in order. enum/error: int32
variant index starting at 1, then the variant's fields. object: u64 handle.
bool: one byte. box<T>: the encoding of T.
"""

from dataclasses import dataclass
from typing import Union

from .ffi_types import FFIArgument, FFIFunction, FFIType, Ownership

# Error record codes
CALL_SUCCESS = 0
CALL_UNEXPECTED_ERROR = -1

# Wire encoding
STRUCT_PREFIX = '>'
OPTIONAL_ABSENT = 0
OPTIONAL_PRESENT = 1
VARIANT_INDEX_BASE = 1  # first enum index and first error code

BUFFER_RECORD = 'BufferRecord'
BYTE_VIEW = 'ByteView'
ERROR_RECORD = 'ErrorRecord'


@dataclass(frozen=True)
class StructField:
    """``kind`` is a scalar kind ('i32', 'i64', 'ptr') or a struct name"""
    name: str
    kind: str


@dataclass(frozen=True)
class StructLayout:
    name: str
    fields: tuple[StructField, ...]


STRUCTS: dict[str, StructLayout] = {
    BUFFER_RECORD: StructLayout(BUFFER_RECORD, (
        StructField('capacity', 'i32'),
        StructField('len', 'i32'),
        StructField('data', 'ptr'),
        StructField('padding', 'i64'),
    )),
    BYTE_VIEW: StructLayout(BYTE_VIEW, (
        StructField('len', 'i32'),
        StructField('data', 'ptr'),
        StructField('padding', 'i64'),
        StructField('padding2', 'i32'),
    )),
    ERROR_RECORD: StructLayout(ERROR_RECORD, (
        StructField('code', 'i32'),
        StructField('message', BUFFER_RECORD),
    )),
}

_SCALAR_SIZES = {'i8': 1, 'i16': 2, 'i32': 4, 'i64': 8}


def _size_align(kind: str, word_size: int) -> tuple[int, int]:
    if kind == 'ptr':
        return word_size, word_size
    if kind in _SCALAR_SIZES:
        return _SCALAR_SIZES[kind], _SCALAR_SIZES[kind]
    layout = STRUCTS[kind]
    return struct_size(layout, word_size), struct_alignment(layout, word_size)


def _align(offset: int, alignment: int) -> int:
    return (offset + alignment - 1) // alignment * alignment


def struct_alignment(layout: StructLayout, word_size: int) -> int:
    return max(_size_align(f.kind, word_size)[1] for f in layout.fields)


def field_offsets(layout: Union[StructLayout, str], word_size: int = 8) -> dict[str, int]:
    """Byte offset of every field under natural C alignment"""
    if isinstance(layout, str):
        layout = STRUCTS[layout]
    offsets = {}
    offset = 0
    for f in layout.fields:
        size, alignment = _size_align(f.kind, word_size)
        offset = _align(offset, alignment)
        offsets[f.name] = offset
        offset += size
    return offsets


def struct_size(layout: Union[StructLayout, str], word_size: int = 8) -> int:
    if isinstance(layout, str):
        layout = STRUCTS[layout]
    last = layout.fields[-1]
    end = field_offsets(layout, word_size)[last.name] + _size_align(last.kind, word_size)[0]
    return _align(end, struct_alignment(layout, word_size))


# ══════════════════════════════════════════════════════════════
# Support functions exported by every native core
# ══════════════════════════════════════════════════════════════

def buffer_alloc_name(namespace: str) -> str:
    return f'ffi_{namespace}_buffer_alloc'


def buffer_from_bytes_name(namespace: str) -> str:
    return f'ffi_{namespace}_buffer_from_bytes'


def buffer_free_name(namespace: str) -> str:
    return f'ffi_{namespace}_buffer_free'


def support_functions(namespace: str) -> list[FFIFunction]:
    """Buffer management symbols, emitted before any derived function"""
    return [
        FFIFunction(
            name=buffer_alloc_name(namespace),
            arguments=(FFIArgument('size', FFIType.INT32),),
            return_type=FFIType.BUFFER,
        ),
        FFIFunction(
            name=buffer_from_bytes_name(namespace),
            arguments=(FFIArgument('bytes', FFIType.BYTE_VIEW),),
            return_type=FFIType.BUFFER,
        ),
        FFIFunction(
            name=buffer_free_name(namespace),
            arguments=(FFIArgument('buf', FFIType.BUFFER, Ownership.TRANSFERRED),),
        ),
    ]
