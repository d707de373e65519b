"""Runtime support imported by generated Python bindings.

Mirrors the Buffer & Error Protocol (see ``ffigen.protocol``) with ctypes:
struct declarations, the wire encoding, ownership-aware buffer handling and
error-record inspection.
"""

import ctypes
import logging
import os
import struct
import sys
from typing import Any, Callable, Optional

from .protocol import (
    CALL_SUCCESS, CALL_UNEXPECTED_ERROR, OPTIONAL_ABSENT, OPTIONAL_PRESENT,
    STRUCT_PREFIX,
)

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════
# Boundary structs
# ══════════════════════════════════════════════════════════════

class BufferRecord(ctypes.Structure):
    _fields_ = [
        ("capacity", ctypes.c_int32),
        ("len", ctypes.c_int32),
        ("data", ctypes.POINTER(ctypes.c_uint8)),
        ("padding", ctypes.c_int64),
    ]

    def __repr__(self):
        return f"BufferRecord(capacity={self.capacity}, len={self.len}, data={bool(self.data)})"


class ByteView(ctypes.Structure):
    _fields_ = [
        ("len", ctypes.c_int32),
        ("data", ctypes.POINTER(ctypes.c_uint8)),
        ("padding", ctypes.c_int64),
        ("padding2", ctypes.c_int32),
    ]


class ErrorRecord(ctypes.Structure):
    _fields_ = [
        ("code", ctypes.c_int32),
        ("message", BufferRecord),
    ]

    def __repr__(self):
        return f"ErrorRecord(code={self.code}, message={self.message!r})"


# ══════════════════════════════════════════════════════════════
# Errors
# ══════════════════════════════════════════════════════════════

class NativeError(Exception):
    """Failure reported by the native core through an ErrorRecord.

    Generated error types subclass this and fill ``_VARIANTS`` with
    ``code -> variant class``.
    """
    _VARIANTS: dict = {}

    def __init__(self, code: int, message: str = ""):
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self):
        return self.message

    def __repr__(self):
        return f"{type(self).__name__}(code={self.code}, message={self.message!r})"

    @classmethod
    def from_code(cls, code: int, message: str) -> "NativeError":
        variant = cls._VARIANTS.get(code)
        if variant is not None:
            return variant(message)
        return cls(code, message)


class InternalError(NativeError):
    """Protocol violation or unexpected failure inside the native core"""

    def __init__(self, message: str = ""):
        super().__init__(CALL_UNEXPECTED_ERROR, message)


# ══════════════════════════════════════════════════════════════
# Wire encoding streams
# ══════════════════════════════════════════════════════════════

class ByteWriter:
    """Big-endian writer producing the contents of a buffer"""

    def __init__(self):
        self._chunks: list[bytes] = []

    def pack(self, fmt: str, value) -> None:
        self._chunks.append(struct.pack(STRUCT_PREFIX + fmt, value))

    def write_bytes(self, data: bytes) -> None:
        self._chunks.append(bytes(data))

    def write_i32(self, value: int) -> None:
        self.pack("i", value)

    def write_u8(self, value: int) -> None:
        self.pack("B", value)

    def write_u64(self, value: int) -> None:
        self.pack("Q", value)

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)


class ByteReader:
    """Big-endian reader over the contents of a lifted buffer"""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def unpack(self, fmt: str):
        size = struct.calcsize(STRUCT_PREFIX + fmt)
        chunk = self.read_bytes(size)
        return struct.unpack(STRUCT_PREFIX + fmt, chunk)[0]

    def read_bytes(self, size: int) -> bytes:
        if size < 0 or self._pos + size > len(self._data):
            raise InternalError(f"buffer underflow reading {size} bytes at offset {self._pos}")
        chunk = self._data[self._pos:self._pos + size]
        self._pos += size
        return chunk

    def read_i32(self) -> int:
        return self.unpack("i")

    def read_u8(self) -> int:
        return self.unpack("B")

    def read_u64(self) -> int:
        return self.unpack("Q")

    def finish(self) -> None:
        remaining = len(self._data) - self._pos
        if remaining:
            raise InternalError(f"junk remaining in buffer after lifting ({remaining} bytes)")


# ══════════════════════════════════════════════════════════════
# Converters
# ══════════════════════════════════════════════════════════════

class Converter:
    """Lowers values into the wire encoding and lifts them back"""

    def check(self, value) -> None:
        pass

    def read(self, stream: ByteReader):
        raise NotImplementedError

    def write(self, value, stream: ByteWriter) -> None:
        raise NotImplementedError

    def to_bytes(self, value) -> bytes:
        """Contents of a top-level buffer holding ``value``"""
        self.check(value)
        stream = ByteWriter()
        self.write(value, stream)
        return stream.getvalue()

    def from_bytes(self, data: bytes):
        stream = ByteReader(data)
        value = self.read(stream)
        stream.finish()
        return value


class IntConverter(Converter):
    def __init__(self, fmt: str, bits: int, signed: bool):
        self.fmt = fmt
        if signed:
            self.min, self.max = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
        else:
            self.min, self.max = 0, (1 << bits) - 1

    def check(self, value) -> None:
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(f"expected int, got {type(value).__name__}")
        if not self.min <= value <= self.max:
            raise ValueError(f"{value} out of range [{self.min}, {self.max}]")

    def read(self, stream):
        return stream.unpack(self.fmt)

    def write(self, value, stream):
        stream.pack(self.fmt, value)

    def lower(self, value):
        self.check(value)
        return value

    def lift(self, value):
        return value


class FloatConverter(Converter):
    def __init__(self, fmt: str):
        self.fmt = fmt

    def check(self, value) -> None:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise TypeError(f"expected float, got {type(value).__name__}")

    def read(self, stream):
        return stream.unpack(self.fmt)

    def write(self, value, stream):
        stream.pack(self.fmt, float(value))

    def lower(self, value):
        self.check(value)
        return float(value)

    def lift(self, value):
        return value


class BoolConverter(Converter):
    def check(self, value) -> None:
        if not isinstance(value, bool):
            raise TypeError(f"expected bool, got {type(value).__name__}")

    def read(self, stream):
        return self.lift(stream.read_u8())

    def write(self, value, stream):
        stream.write_u8(self.lower(value))

    def lower(self, value):
        self.check(value)
        return 1 if value else 0

    def lift(self, value):
        if value not in (0, 1):
            raise InternalError(f"invalid boolean byte {value}")
        return value == 1


class StringConverter(Converter):
    def check(self, value) -> None:
        if not isinstance(value, str):
            raise TypeError(f"expected str, got {type(value).__name__}")

    def read(self, stream):
        return self._decode(stream.read_bytes(stream.read_i32()))

    def write(self, value, stream):
        encoded = value.encode("utf-8")
        stream.write_i32(len(encoded))
        stream.write_bytes(encoded)

    def to_bytes(self, value) -> bytes:
        self.check(value)
        return value.encode("utf-8")

    def from_bytes(self, data: bytes):
        return self._decode(data)

    @staticmethod
    def _decode(data: bytes) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InternalError(f"invalid UTF-8 text: {e}") from e


class BytesConverter(Converter):
    def check(self, value) -> None:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"expected bytes, got {type(value).__name__}")

    def read(self, stream):
        return stream.read_bytes(stream.read_i32())

    def write(self, value, stream):
        stream.write_i32(len(value))
        stream.write_bytes(value)

    def to_bytes(self, value) -> bytes:
        self.check(value)
        return bytes(value)

    def from_bytes(self, data: bytes):
        return bytes(data)


class OptionalConverter(Converter):
    def __init__(self, inner: Converter):
        self.inner = inner

    def check(self, value) -> None:
        if value is not None:
            self.inner.check(value)

    def read(self, stream):
        tag = stream.read_u8()
        if tag == OPTIONAL_ABSENT:
            return None
        if tag == OPTIONAL_PRESENT:
            return self.inner.read(stream)
        raise InternalError(f"invalid optional tag {tag}")

    def write(self, value, stream):
        if value is None:
            stream.write_u8(OPTIONAL_ABSENT)
        else:
            stream.write_u8(OPTIONAL_PRESENT)
            self.inner.write(value, stream)


class SequenceConverter(Converter):
    def __init__(self, inner: Converter):
        self.inner = inner

    def check(self, value) -> None:
        if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
            raise TypeError(f"expected a sequence, got {type(value).__name__}")
        for item in value:
            self.inner.check(item)

    def read(self, stream):
        count = stream.read_i32()
        if count < 0:
            raise InternalError(f"negative sequence length {count}")
        return [self.inner.read(stream) for _ in range(count)]

    def write(self, value, stream):
        items = list(value)
        stream.write_i32(len(items))
        for item in items:
            self.inner.write(item, stream)


class MapConverter(Converter):
    def __init__(self, key: Converter, value: Converter):
        self.key = key
        self.value = value

    def check(self, value) -> None:
        if not isinstance(value, dict):
            raise TypeError(f"expected dict, got {type(value).__name__}")
        for k, v in value.items():
            self.key.check(k)
            self.value.check(v)

    def read(self, stream):
        count = stream.read_i32()
        if count < 0:
            raise InternalError(f"negative map length {count}")
        result = {}
        for _ in range(count):
            k = self.key.read(stream)
            result[k] = self.value.read(stream)
        return result

    def write(self, value, stream):
        stream.write_i32(len(value))
        for k, v in value.items():
            self.key.write(k, stream)
            self.value.write(v, stream)


class HandleConverter(Converter):
    """Objects travel as u64 handles; subclasses name the wrapper class"""

    def object_class(self) -> type:
        raise NotImplementedError

    def check(self, value) -> None:
        cls = self.object_class()
        if not isinstance(value, cls):
            raise TypeError(f"expected {cls.__name__} instance, got {type(value).__name__}")

    def lower(self, value) -> int:
        self.check(value)
        return value._require_handle()

    def lift(self, handle: int):
        return self.object_class()._make_instance(check_handle(handle))

    def read(self, stream):
        return self.lift(stream.read_u64())

    def write(self, value, stream):
        stream.write_u64(self.lower(value))


INT8 = IntConverter("b", 8, True)
UINT8 = IntConverter("B", 8, False)
INT16 = IntConverter("h", 16, True)
UINT16 = IntConverter("H", 16, False)
INT32 = IntConverter("i", 32, True)
UINT32 = IntConverter("I", 32, False)
INT64 = IntConverter("q", 64, True)
UINT64 = IntConverter("Q", 64, False)
FLOAT32 = FloatConverter("f")
FLOAT64 = FloatConverter("d")
BOOLEAN = BoolConverter()
STRING = StringConverter()
BYTES = BytesConverter()


# ══════════════════════════════════════════════════════════════
# Native objects
# ══════════════════════════════════════════════════════════════

def check_handle(handle: int) -> int:
    if not handle:
        raise InternalError("native core returned a null handle")
    return handle


class NativeObject:
    """Owner of one native handle, released exactly once"""
    _handle: Optional[int] = None

    def __init__(self, *args, **kwargs):
        raise TypeError(f"{type(self).__name__} has no primary constructor")

    @classmethod
    def _make_instance(cls, handle: int):
        inst = cls.__new__(cls)
        inst._handle = handle
        return inst

    def _release(self, handle: int) -> None:
        raise NotImplementedError

    def _require_handle(self) -> int:
        if self._handle is None:
            raise ValueError(f"{type(self).__name__} has already been closed")
        return self._handle

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            self._release(handle)

    def __del__(self):
        self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


# ══════════════════════════════════════════════════════════════
# Buffers and calls
# ══════════════════════════════════════════════════════════════

def check_buffer(buf: BufferRecord) -> None:
    """Enforce len <= capacity and data != NULL iff capacity > 0"""
    if buf.capacity < 0 or buf.len < 0 or buf.len > buf.capacity:
        raise InternalError(f"invalid buffer lengths: {buf!r}")
    if bool(buf.data) != (buf.capacity > 0):
        raise InternalError(f"buffer data does not match capacity: {buf!r}")


def read_buffer(buf: BufferRecord) -> bytes:
    check_buffer(buf)
    if buf.len == 0:
        return b""
    return ctypes.string_at(buf.data, buf.len)


def borrowed_buffer(data: bytes) -> BufferRecord:
    """Foreign-allocated buffer, valid while the returned record is alive"""
    buf = BufferRecord()
    if data:
        backing = (ctypes.c_uint8 * len(data)).from_buffer_copy(data)
        buf.capacity = buf.len = len(data)
        buf.data = ctypes.cast(backing, ctypes.POINTER(ctypes.c_uint8))
        buf._backing = backing
    return buf


def borrowed_view(data: bytes) -> ByteView:
    view = ByteView()
    if data:
        backing = (ctypes.c_uint8 * len(data)).from_buffer_copy(data)
        view.len = len(data)
        view.data = ctypes.cast(backing, ctypes.POINTER(ctypes.c_uint8))
        view._backing = backing
    return view


def lower_borrowed(converter: Converter, value) -> BufferRecord:
    return borrowed_buffer(converter.to_bytes(value))


class BufferProtocol:
    """Buffer ownership and error inspection bound to one native library"""

    def __init__(self, from_bytes: Callable[[ByteView], BufferRecord], free: Callable[[BufferRecord], Any]):
        self._from_bytes = from_bytes
        self._free = free

    def lower_owned(self, converter: Converter, value) -> BufferRecord:
        """Native copy of the encoded value, owned by the callee once passed"""
        data = converter.to_bytes(value)
        buf = self._from_bytes(borrowed_view(data))
        try:
            check_buffer(buf)
            if buf.len != len(data):
                raise InternalError(f"native copy holds {buf.len} bytes, expected {len(data)}")
        except BaseException:
            self._free(buf)
            raise
        return buf

    def lower_owned_all(self, *pairs) -> list[BufferRecord]:
        """``lower_owned`` for several (converter, value) pairs, all or none"""
        bufs = []
        try:
            for converter, value in pairs:
                bufs.append(self.lower_owned(converter, value))
        except BaseException:
            for buf in bufs:
                self._free(buf)
            raise
        return bufs

    def lift(self, converter: Converter, buf: BufferRecord):
        """Read a callee-allocated buffer, then free it"""
        try:
            data = read_buffer(buf)
        finally:
            self._free(buf)
        return converter.from_bytes(data)

    def call(self, fn: Callable, *args, error: Optional[type] = None):
        """Call ``fn``; fallible calls get a trailing ErrorRecord out-parameter"""
        if error is None:
            return fn(*args)
        status = ErrorRecord()
        result = fn(*args, ctypes.byref(status))
        self.check_status(status, error)
        return result

    def check_status(self, status: ErrorRecord, error: type) -> None:
        if status.code == CALL_SUCCESS:
            return
        message = ""
        if status.message.capacity:
            try:
                message = read_buffer(status.message).decode("utf-8", errors="replace")
            finally:
                self._free(status.message)
        logger.debug("native call failed with code %d: %s", status.code, message)
        if status.code == CALL_UNEXPECTED_ERROR:
            raise InternalError(message)
        raise error.from_code(status.code, message)


# ══════════════════════════════════════════════════════════════
# Library loading
# ══════════════════════════════════════════════════════════════

def library_filename(name: str) -> str:
    if sys.platform == "win32":
        return f"{name}.dll"
    if sys.platform == "darwin":
        return f"lib{name}.dylib"
    return f"lib{name}.so"


def load_library(name: str, search_dir: Optional[str] = None):
    """Load the native core.

    ``<NAME>_LIBRARY_PATH`` in the environment names the library file
    explicitly; otherwise the search directory and the working directory
    are tried before the system loader path.
    """
    override = os.environ.get(f"{name.upper()}_LIBRARY_PATH")
    if override:
        logger.debug("loading %s from %s", name, override)
        return ctypes.CDLL(override)

    lib_name = library_filename(name)
    for path in (search_dir, os.getcwd()):
        if not path:
            continue
        lib_path = os.path.join(path, lib_name)
        if os.path.exists(lib_path):
            logger.debug("loading %s from %s", name, lib_path)
            return ctypes.CDLL(lib_path)

    return ctypes.CDLL(lib_name)
