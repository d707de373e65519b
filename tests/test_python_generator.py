"""End-to-end tests for the generated Python bindings against a fake native core."""

import struct
import sys
import types

import pytest

from conftest import FakeLibrary
from ffigen import runtime
from ffigen.config import GeneratorConfig
from ffigen.generator import BindingGenerator


def render_python(model) -> str:
    outputs = BindingGenerator(model, GeneratorConfig(backends=["python"])).render()
    return outputs[f"{model.namespace}.py"]


def install_arith(lib: FakeLibrary) -> FakeLibrary:
    """Native behaviour behind the sample model's symbols"""

    def divide(a, b, status):
        if b == 0:
            lib.fail(status, 1, "division by zero")
            return 0
        return a // b

    def greet(name_buf):
        name = lib.read(name_buf).decode("utf-8")
        return lib.new_buffer(f"Hello, {name}!".encode("utf-8"))

    def centroid(buf):
        data = lib.read(buf)
        (count,) = struct.unpack_from(">i", data, 0)
        if count == 0:
            return lib.new_buffer(b"\x00")
        points = [struct.unpack_from(">dd", data, 4 + 16 * i) for i in range(count)]
        x = sum(p[0] for p in points) / count
        y = sum(p[1] for p in points) / count
        return lib.new_buffer(b"\x01" + struct.pack(">dd", x, y))

    def describe(buf):
        (index,) = struct.unpack_from(">i", lib.read(buf), 0)
        return lib.new_buffer(struct.pack(">i", index))

    def consume(buf):
        lib.consumed.append(lib.read(buf))
        lib.buffer_free(buf)

    def counter_with_name(name_buf, status):
        name = lib.read(name_buf).decode("utf-8")
        if not name:
            lib.fail(status, 2, "empty name")
            return 0
        return lib.new_handle([0, name])

    def counter_increment(handle, by):
        lib.counters[handle][0] += by
        return lib.counters[handle][0]

    def counter_label(handle):
        return lib.new_buffer(lib.counters[handle][1].encode("utf-8"))

    def fail(status):
        lib.fail(status, 42, "boom")

    def crash(status):
        lib.fail(status, -1, "panic")
        return 0

    lib.export("arith_fn_add", lambda a, b: a + b)
    lib.export("arith_fn_divide", divide)
    lib.export("arith_fn_greet", greet)
    lib.export("arith_fn_is_positive", lambda value: 1 if value > 0 else 0)
    lib.export("arith_fn_centroid", centroid)
    lib.export("arith_fn_describe", describe)
    lib.export("arith_fn_consume", consume)
    lib.export("arith_fn_fail", fail)
    lib.export("arith_fn_crash", crash)
    lib.export("arith_Counter_new", lambda start: lib.new_handle([start, "counter"]))
    lib.export("arith_Counter_with_name", counter_with_name)
    lib.export("arith_Counter_increment", counter_increment)
    lib.export("arith_Counter_label", counter_label)
    lib.export("arith_Counter_free", lib.release)
    return lib


def load_bindings(model, lib: FakeLibrary, monkeypatch) -> types.ModuleType:
    """Execute the generated module with ``lib`` standing in for the native core"""
    monkeypatch.setattr(runtime, "load_library", lambda name, search_dir=None: lib)
    module = types.ModuleType(model.namespace)
    monkeypatch.setitem(sys.modules, model.namespace, module)
    exec(compile(render_python(model), f"{model.namespace}.py", "exec"), module.__dict__)
    return module


@pytest.fixture
def arith(sample_model, fake_lib, monkeypatch):
    install_arith(fake_lib)
    return load_bindings(sample_model, fake_lib, monkeypatch)


class TestModuleSource:
    def test_declares_every_symbol(self, sample_model):
        source = render_python(sample_model)
        assert "_lib.ffi_arith_buffer_alloc.restype = _rt.BufferRecord" in source
        assert "_lib.ffi_arith_buffer_alloc.argtypes = [ctypes.c_int32]" in source
        assert "_lib.arith_fn_divide.argtypes = [ctypes.c_int32, ctypes.c_int32, ctypes.POINTER(_rt.ErrorRecord)]" in source
        assert "_lib.arith_fn_fail.restype = None" in source
        assert "_lib.arith_Counter_increment.argtypes = [ctypes.c_uint64, ctypes.c_int32]" in source
        assert "_lib.arith_Counter_free.argtypes = [ctypes.c_uint64]" in source

    def test_consumed_buffers_use_native_copy(self, sample_model):
        source = render_python(sample_model)
        assert "_lib.ffi_arith_buffer_from_bytes.argtypes = [_rt.ByteView]" in source
        assert "_protocol = _rt.BufferProtocol(_lib.ffi_arith_buffer_from_bytes, _lib.ffi_arith_buffer_free)" in source

    def test_support_functions_come_first(self, sample_model):
        source = render_python(sample_model)
        assert source.index("ffi_arith_buffer_free.restype") < source.index("arith_fn_add.restype")

    def test_library_name_override(self, sample_model):
        config = GeneratorConfig(backends=["python"], library_name="arithcore")
        source = BindingGenerator(sample_model, config).render()["arith.py"]
        assert '_lib = _rt.load_library("arithcore")' in source

    def test_keywords_are_escaped(self, sample_data):
        from conftest import load_model
        sample_data["functions"].append(
            {"name": "lambda", "params": [{"name": "from", "type": "i32"}], "returns": "i32"}
        )
        source = render_python(load_model(sample_data))
        assert "def lambda_(from_: int) -> int:" in source
        assert "_rt.INT32.lower(from_)" in source


class TestCalls:
    def test_scalar_round_trip(self, arith):
        assert arith.add(2, 3) == 5

    def test_scalar_range_checked_before_call(self, arith):
        with pytest.raises(ValueError):
            arith.add(2 ** 31, 1)

    def test_bool_return(self, arith):
        assert arith.is_positive(3) is True
        assert arith.is_positive(-3) is False

    def test_string_round_trip_frees_return_buffer_once(self, arith, fake_lib):
        assert arith.greet("Ada") == "Hello, Ada!"
        assert fake_lib.freed == [b"Hello, Ada!"]
        assert fake_lib.live == {}

    def test_records_and_optionals(self, arith, fake_lib):
        points = [arith.Point(0.0, 0.0), arith.Point(2.0, 4.0)]
        assert arith.centroid(points) == arith.Point(1.0, 2.0)
        assert arith.centroid([]) is None
        assert fake_lib.live == {}

    def test_record_fields_are_type_checked(self, arith):
        with pytest.raises(TypeError):
            arith.centroid([arith.Point("0", 0.0)])

    def test_enum_with_fields_argument(self, arith):
        assert arith.describe(arith.Shape.Circle(1.5)) is arith.Color.RED
        assert arith.describe(arith.Shape.Polygon([arith.Point(1.0, 1.0)])) is arith.Color.GREEN
        assert arith.describe(arith.Shape.Empty()) is arith.Color.BLUE

    def test_consumed_argument_is_native_allocated(self, arith, fake_lib):
        assert arith.consume(b"payload") is None
        assert fake_lib.consumed == [b"payload"]
        assert fake_lib.live == {}


class TestErrors:
    def test_declared_variant(self, arith, fake_lib):
        with pytest.raises(arith.MathError.DivisionByZero) as exc_info:
            arith.divide(1, 0)
        assert exc_info.value.code == 1
        assert str(exc_info.value) == "division by zero"
        assert fake_lib.freed == [b"division by zero"]

    def test_success_leaves_nothing_to_free(self, arith, fake_lib):
        assert arith.divide(9, 3) == 3
        assert fake_lib.freed == []

    def test_unknown_code_becomes_base_error(self, arith, fake_lib):
        with pytest.raises(arith.MathError) as exc_info:
            arith.fail()
        err = exc_info.value
        assert type(err) is arith.MathError
        assert err.code == 42
        assert err.message == "boom"
        assert fake_lib.freed == [b"boom"]
        assert fake_lib.live == {}

    def test_unexpected_failure_is_internal_error(self, arith, fake_lib):
        with pytest.raises(runtime.InternalError) as exc_info:
            arith.crash()
        assert str(exc_info.value) == "panic"
        assert fake_lib.freed == [b"panic"]

    def test_error_classes_share_the_runtime_base(self, arith):
        assert issubclass(arith.MathError, runtime.NativeError)
        assert arith.MathError.Overflow.CODE == 2
        assert arith.MathError.DivisionByZero(numerator=7).numerator == 7


class TestObjects:
    def test_primary_constructor_and_methods(self, arith, fake_lib):
        with arith.Counter(5) as counter:
            assert counter.increment(2) == 7
            assert counter.label() == "counter"
        assert fake_lib.released == [1]

    def test_release_happens_once(self, arith, fake_lib):
        counter = arith.Counter(0)
        counter.close()
        counter.close()
        del counter
        assert fake_lib.released == [1]

    def test_closed_object_rejects_calls(self, arith):
        counter = arith.Counter(0)
        counter.close()
        with pytest.raises(ValueError):
            counter.increment(1)

    def test_alternate_constructor(self, arith, fake_lib):
        counter = arith.Counter.with_name("clicks")
        assert isinstance(counter, arith.Counter)
        assert counter.label() == "clicks"
        counter.close()

    def test_alternate_constructor_error(self, arith, fake_lib):
        with pytest.raises(arith.MathError.Overflow):
            arith.Counter.with_name("")
        assert fake_lib.counters == {}
        assert fake_lib.live == {}


class TestConverters:
    def test_record_wire_encoding(self, arith):
        segment = arith.Segment(arith.Point(1.0, 2.0), arith.Point(3.0, 4.0), "ab")
        data = arith._converter_TypeSegment.to_bytes(segment)
        assert data == struct.pack(">dddd", 1.0, 2.0, 3.0, 4.0) + b"\x01" + struct.pack(">i", 2) + b"ab"
        assert arith._converter_TypeSegment.from_bytes(data) == segment

    def test_flat_enum_indices_start_at_one(self, arith):
        assert arith._converter_TypeColor.to_bytes(arith.Color.RED) == struct.pack(">i", 1)
        with pytest.raises(runtime.InternalError):
            arith._converter_TypeColor.from_bytes(struct.pack(">i", 4))

    def test_error_as_value(self, arith):
        data = arith._converter_TypeMathError.to_bytes(arith.MathError.DivisionByZero(numerator=3))
        assert data == struct.pack(">ii", 1, 3)
        lifted = arith._converter_TypeMathError.from_bytes(data)
        assert isinstance(lifted, arith.MathError.DivisionByZero)
        assert lifted.numerator == 3

    def test_junk_bytes_are_rejected(self, arith):
        with pytest.raises(runtime.InternalError, match="junk"):
            arith._converter_TypeColor.from_bytes(struct.pack(">i", 1) + b"\x00")


class TestConsumedArguments:
    @pytest.fixture
    def bindings(self, sample_data, fake_lib, monkeypatch):
        from conftest import load_model
        sample_data["functions"].extend([
            {"name": "take", "params": [
                {"name": "data", "type": "bytes", "consumed": True},
                {"name": "n", "type": "i32"},
            ]},
            {"name": "pair", "params": [
                {"name": "first", "type": "bytes", "consumed": True},
                {"name": "second", "type": "string", "consumed": True},
                {"name": "n", "type": "i32"},
            ], "returns": "i32"},
        ])

        def take(buf, n):
            fake_lib.consumed.append(fake_lib.read(buf))
            fake_lib.buffer_free(buf)

        def pair(first, second, n):
            for buf in (first, second):
                fake_lib.consumed.append(fake_lib.read(buf))
                fake_lib.buffer_free(buf)
            return n

        install_arith(fake_lib)
        fake_lib.export("arith_fn_take", take)
        fake_lib.export("arith_fn_pair", pair)
        return load_bindings(load_model(sample_data), fake_lib, monkeypatch)

    def test_consumed_buffer_is_made_last(self, sample_data):
        from conftest import load_model
        sample_data["functions"].append({"name": "take", "params": [
            {"name": "data", "type": "bytes", "consumed": True},
            {"name": "n", "type": "i32"},
        ]})
        source = render_python(load_model(sample_data))
        body = (
            "def take(data: bytes, n: int) -> None:\n"
            "    _n = _rt.INT32.lower(n)\n"
            "    _data = _protocol.lower_owned(_rt.BYTES, data)\n"
            "    _protocol.call(_lib.arith_fn_take, _data, _n)\n"
        )
        assert body in source

    def test_rejected_argument_leaves_no_native_buffer(self, bindings, fake_lib):
        with pytest.raises(ValueError):
            bindings.take(b"payload", 2 ** 40)
        assert fake_lib.live == {}
        assert fake_lib.consumed == []

    def test_take(self, bindings, fake_lib):
        bindings.take(b"payload", 2)
        assert fake_lib.consumed == [b"payload"]
        assert fake_lib.live == {}

    @pytest.mark.parametrize("args,error", [
        ((b"a", 5, 1), TypeError),
        ((b"a", "b", 2 ** 40), ValueError),
        (("a", "b", 1), TypeError),
    ])
    def test_several_consumed_buffers_all_or_none(self, bindings, fake_lib, args, error):
        with pytest.raises(error):
            bindings.pair(*args)
        assert fake_lib.live == {}
        assert fake_lib.consumed == []

    def test_pair(self, bindings, fake_lib):
        assert bindings.pair(b"a", "bc", 3) == 3
        assert fake_lib.consumed == [b"a", b"bc"]
        assert fake_lib.live == {}
