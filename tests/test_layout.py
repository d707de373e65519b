"""Struct layouts must agree across the protocol table, every backend and ctypes."""

import ctypes
import re

import pytest

from ffigen import protocol, runtime
from ffigen.config import GeneratorConfig
from ffigen.generator import BindingGenerator

RUNTIME_STRUCTS = {
    protocol.BUFFER_RECORD: runtime.BufferRecord,
    protocol.BYTE_VIEW: runtime.ByteView,
    protocol.ERROR_RECORD: runtime.ErrorRecord,
}


@pytest.fixture
def outputs(sample_model):
    return BindingGenerator(sample_model, GeneratorConfig()).render()


def c_fields(header: str, name: str) -> list[str]:
    body = re.search(r"typedef struct %s \{(.*?)\} %s;" % (name, name), header, re.S).group(1)
    return [line.split()[-1].rstrip(";") for line in body.strip().splitlines()]


def kotlin_fields(source: str, name: str) -> list[str]:
    match = re.search(r'@Structure\.FieldOrder\(([^)]*)\)\nopen class %s\b' % name, source)
    return [f.strip().strip('"') for f in match.group(1).split(",")]


@pytest.mark.parametrize("name", list(protocol.STRUCTS))
def test_field_order_matches_everywhere(outputs, name):
    expected = [f.name for f in protocol.STRUCTS[name].fields]
    assert c_fields(outputs["arith.h"], name) == expected
    assert kotlin_fields(outputs["ffigen/arith/arith.kt"], name) == expected
    assert [f[0] for f in RUNTIME_STRUCTS[name]._fields_] == expected


@pytest.mark.parametrize("name", list(protocol.STRUCTS))
def test_ctypes_offsets_match_protocol(name):
    word_size = ctypes.sizeof(ctypes.c_void_p)
    struct_type = RUNTIME_STRUCTS[name]
    offsets = {f[0]: getattr(struct_type, f[0]).offset for f in struct_type._fields_}
    assert offsets == protocol.field_offsets(name, word_size)
    assert ctypes.sizeof(struct_type) == protocol.struct_size(name, word_size)


def test_offsets_on_64_bit_words():
    assert protocol.field_offsets(protocol.BUFFER_RECORD) == {"capacity": 0, "len": 4, "data": 8, "padding": 16}
    assert protocol.struct_size(protocol.BUFFER_RECORD) == 24
    assert protocol.field_offsets(protocol.BYTE_VIEW) == {"len": 0, "data": 8, "padding": 16, "padding2": 24}
    assert protocol.struct_size(protocol.BYTE_VIEW) == 32
    assert protocol.field_offsets(protocol.ERROR_RECORD) == {"code": 0, "message": 8}
    assert protocol.struct_size(protocol.ERROR_RECORD) == 32


def test_offsets_on_32_bit_words():
    assert protocol.field_offsets(protocol.BUFFER_RECORD, 4) == {"capacity": 0, "len": 4, "data": 8, "padding": 16}
    assert protocol.struct_size(protocol.BUFFER_RECORD, 4) == 24
    assert protocol.field_offsets(protocol.BYTE_VIEW, 4) == {"len": 0, "data": 4, "padding": 8, "padding2": 16}
    assert protocol.struct_size(protocol.BYTE_VIEW, 4) == 24
