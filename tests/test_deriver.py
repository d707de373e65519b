"""Tests for FFI signature derivation."""

import pytest

from conftest import load_model
from ffigen.deriver import SignatureDeriver
from ffigen.errors import DuplicateNameError, ModelError, UnresolvedTypeError
from ffigen.ffi_types import FFIArgument, FFIType, Ownership
from ffigen.type_mapper import TypeMapper


def derive_all(model):
    return SignatureDeriver(TypeMapper(model)).derive_all()


@pytest.fixture
def functions(sample_model):
    return {f.name: f for f in derive_all(sample_model)}


class TestSignatures:
    def test_scalar_function(self, functions):
        add = functions["arith_fn_add"]
        assert add.arguments == (
            FFIArgument("a", FFIType.INT32),
            FFIArgument("b", FFIType.INT32),
        )
        assert add.return_type == FFIType.INT32
        assert not add.has_error_out

    def test_error_out_parameter_is_last(self, functions):
        divide = functions["arith_fn_divide"]
        assert divide.arguments[-1] == FFIArgument("out_err", FFIType.ERROR_RECORD, Ownership.CALLER_OWNED)
        assert divide.error_type == "MathError"
        assert [a.name for a in divide.value_arguments] == ["a", "b"]

    def test_no_return_and_no_params(self, functions):
        fail = functions["arith_fn_fail"]
        assert fail.return_type is None
        assert [a.type for a in fail.arguments] == [FFIType.ERROR_RECORD]

    def test_buffer_ownership(self, functions):
        assert functions["arith_fn_greet"].arguments[0].ownership == Ownership.BORROWED
        assert functions["arith_fn_consume"].arguments[0] == FFIArgument("data", FFIType.BUFFER, Ownership.TRANSFERRED)

    def test_parameter_count(self, sample_model, functions):
        for fn in sample_model.functions:
            derived = functions[f"arith_fn_{fn.name}"]
            assert len(derived.arguments) == len(fn.params) + (1 if fn.throws else 0)

    def test_object_symbols(self, functions):
        new = functions["arith_Counter_new"]
        assert new.return_type == FFIType.HANDLE
        assert new.arguments == (FFIArgument("start", FFIType.INT32),)

        increment = functions["arith_Counter_increment"]
        assert increment.arguments[0] == FFIArgument("handle", FFIType.HANDLE, Ownership.BORROWED)

        free = functions["arith_Counter_free"]
        assert free.arguments == (FFIArgument("handle", FFIType.HANDLE, Ownership.TRANSFERRED),)
        assert free.return_type is None

    def test_equal_signatures_have_equal_shapes(self):
        model = load_model({"namespace": "n", "errors": [{"name": "E", "variants": ["A"]}], "functions": [
            {"name": "first", "params": [{"name": "s", "type": "string"}], "returns": "i64", "throws": "E"},
            {"name": "second", "params": [{"name": "t", "type": "string"}], "returns": "i64", "throws": "E"},
            {"name": "third", "params": [{"name": "s", "type": "string"}], "returns": "i64"},
        ]})
        fns = {f.name: f for f in derive_all(model)}
        assert fns["n_fn_first"].shape() == fns["n_fn_second"].shape()
        assert fns["n_fn_first"].shape() != fns["n_fn_third"].shape()


class TestOrder:
    def test_support_functions_first_then_declaration_order(self, sample_model):
        names = [f.name for f in derive_all(sample_model)]
        assert names[:3] == ["ffi_arith_buffer_alloc", "ffi_arith_buffer_from_bytes", "ffi_arith_buffer_free"]
        assert names[3:12] == [f"arith_fn_{fn.name}" for fn in sample_model.functions]
        assert names[12:] == [
            "arith_Counter_new",
            "arith_Counter_with_name",
            "arith_Counter_increment",
            "arith_Counter_label",
            "arith_Counter_free",
        ]

    def test_support_function_signatures(self, sample_model):
        alloc, from_bytes, free = derive_all(sample_model)[:3]
        assert alloc.arguments == (FFIArgument("size", FFIType.INT32),)
        assert alloc.return_type == FFIType.BUFFER
        assert from_bytes.arguments == (FFIArgument("bytes", FFIType.BYTE_VIEW),)
        assert free.arguments == (FFIArgument("buf", FFIType.BUFFER, Ownership.TRANSFERRED),)


class TestFailures:
    def test_unknown_error_type(self):
        model = load_model({"namespace": "n", "functions": [{"name": "f", "throws": "Nope"}]})
        with pytest.raises(UnresolvedTypeError, match="Nope"):
            derive_all(model)

    def test_throwing_a_record(self):
        model = load_model({"namespace": "n", "records": [{"name": "R"}],
                            "functions": [{"name": "f", "throws": "R"}]})
        with pytest.raises(ModelError, match="not an error type"):
            derive_all(model)

    def test_duplicate_symbol(self):
        model = load_model({"namespace": "n", "functions": [{"name": "f"}, {"name": "f"}]})
        with pytest.raises(DuplicateNameError, match="symbol"):
            derive_all(model)

    def test_duplicate_type(self):
        model = load_model({"namespace": "n", "records": [{"name": "X"}], "enums": [{"name": "X"}]})
        with pytest.raises(DuplicateNameError, match="'X'"):
            TypeMapper(model)
