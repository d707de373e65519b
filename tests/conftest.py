"""Shared fixtures: a sample interface model and an in-process fake native library."""

import copy
import ctypes
import json

import pytest

from ffigen import runtime
from ffigen.loader import ModelLoader

SAMPLE_MODEL = {
    "namespace": "arith",
    "records": [
        {"name": "Point", "fields": [
            {"name": "x", "type": "f64"},
            {"name": "y", "type": "f64"},
        ]},
        {"name": "Segment", "fields": [
            {"name": "start", "type": "Point"},
            {"name": "end", "type": "Point"},
            {"name": "label", "type": "optional<string>"},
        ]},
    ],
    "enums": [
        {"name": "Color", "variants": ["RED", "GREEN", "BLUE"]},
        {"name": "Shape", "variants": [
            {"name": "Circle", "fields": [{"name": "radius", "type": "f64"}]},
            {"name": "Polygon", "fields": [{"name": "points", "type": "sequence<Point>"}]},
            "Empty",
        ]},
    ],
    "errors": [
        {"name": "MathError", "variants": [
            {"name": "DivisionByZero", "fields": [{"name": "numerator", "type": "i32"}]},
            "Overflow",
        ]},
    ],
    "objects": [
        {"name": "Counter",
         "constructors": [
             {"params": [{"name": "start", "type": "i32"}]},
             {"name": "with_name", "params": [{"name": "name", "type": "string"}], "throws": "MathError"},
         ],
         "methods": [
             {"name": "increment", "params": [{"name": "by", "type": "i32"}], "returns": "i32"},
             {"name": "label", "returns": "string"},
         ]},
    ],
    "functions": [
        {"name": "add", "params": [{"name": "a", "type": "i32"}, {"name": "b", "type": "i32"}], "returns": "i32"},
        {"name": "divide", "params": [{"name": "a", "type": "i32"}, {"name": "b", "type": "i32"}],
         "returns": "i32", "throws": "MathError"},
        {"name": "greet", "params": [{"name": "name", "type": "string"}], "returns": "string"},
        {"name": "is_positive", "params": [{"name": "value", "type": "i32"}], "returns": "bool"},
        {"name": "centroid", "params": [{"name": "points", "type": "sequence<Point>"}], "returns": "optional<Point>"},
        {"name": "describe", "params": [{"name": "shape", "type": "Shape"}], "returns": "Color"},
        {"name": "consume", "params": [{"name": "data", "type": "bytes", "consumed": True}]},
        {"name": "fail", "throws": "MathError"},
        {"name": "crash", "returns": "i32", "throws": "MathError"},
    ],
}


@pytest.fixture
def sample_data():
    return copy.deepcopy(SAMPLE_MODEL)


@pytest.fixture
def sample_model(sample_data):
    return ModelLoader(json.dumps(sample_data)).load()


def load_model(data: dict):
    return ModelLoader(json.dumps(data)).load()


class FakeLibrary:
    """Native core stand-in: plain Python callables over real ctypes buffers.

    Tracks every buffer it hands out so tests can assert each one is freed
    exactly once.
    """

    def __init__(self, namespace: str = "arith"):
        self.namespace = namespace
        self.live: dict[int, ctypes.Array] = {}
        self.freed: list[bytes] = []
        self.consumed: list[bytes] = []
        self.released: list[int] = []
        self.counters: dict[int, list] = {}
        self._next_handle = 1
        self.export(f"ffi_{namespace}_buffer_alloc", self.buffer_alloc)
        self.export(f"ffi_{namespace}_buffer_from_bytes", self.buffer_from_bytes)
        self.export(f"ffi_{namespace}_buffer_free", self.buffer_free)

    def export(self, name: str, impl):
        # ctypes wrappers set restype/argtypes on the symbol
        def symbol(*args):
            return impl(*args)
        symbol.__name__ = name
        setattr(self, name, symbol)

    # ── buffers ─────────────────────────────────────────────────

    def new_buffer(self, data: bytes) -> runtime.BufferRecord:
        buf = runtime.BufferRecord()
        if data:
            backing = (ctypes.c_uint8 * len(data)).from_buffer_copy(data)
            buf.capacity = buf.len = len(data)
            buf.data = ctypes.cast(backing, ctypes.POINTER(ctypes.c_uint8))
            self.live[ctypes.addressof(backing)] = backing
        return buf

    def buffer_alloc(self, size: int) -> runtime.BufferRecord:
        buf = self.new_buffer(bytes(size))
        buf.len = 0
        return buf

    def buffer_from_bytes(self, view: runtime.ByteView) -> runtime.BufferRecord:
        data = ctypes.string_at(view.data, view.len) if view.len else b""
        return self.new_buffer(data)

    def buffer_free(self, buf: runtime.BufferRecord) -> None:
        data = b""
        if buf.capacity:
            address = ctypes.addressof(buf.data.contents)
            assert address in self.live, "buffer freed twice or not allocated by the native core"
            data = bytes(self.live.pop(address))[:buf.len]
        self.freed.append(data)

    @staticmethod
    def read(buf: runtime.BufferRecord) -> bytes:
        return runtime.read_buffer(buf)

    # ── error records ───────────────────────────────────────────

    def fail(self, status_ref, code: int, message: str) -> None:
        status = status_ref._obj
        status.code = code
        status.message = self.new_buffer(message.encode("utf-8"))

    # ── objects ─────────────────────────────────────────────────

    def new_handle(self, state) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self.counters[handle] = state
        return handle

    def release(self, handle: int) -> None:
        assert handle in self.counters, f"handle {handle} released twice"
        del self.counters[handle]
        self.released.append(handle)


@pytest.fixture
def fake_lib():
    return FakeLibrary()
