"""Tests for the all-or-nothing emission engine."""

import logging

import pytest

from conftest import load_model
from ffigen.config import GeneratorConfig
from ffigen.errors import ConfigError, RecursiveTypeError, UnresolvedTypeError
from ffigen.generator import BindingGenerator


def test_renders_every_backend(sample_model):
    outputs = BindingGenerator(sample_model).render()
    assert sorted(outputs) == ["arith.h", "arith.py", "ffigen/arith/arith.kt"]


def test_backend_order_does_not_change_output(sample_model):
    forward = BindingGenerator(sample_model, GeneratorConfig(backends=["c", "python", "kotlin"])).render()
    backward = BindingGenerator(sample_model, GeneratorConfig(backends=["kotlin", "python", "c"])).render()
    assert forward == backward


def test_rendering_is_deterministic(sample_model, sample_data):
    first = BindingGenerator(sample_model).render()
    second = BindingGenerator(load_model(sample_data)).render()
    assert first == second


def test_declaration_order_follows_the_model():
    model = load_model({"namespace": "n", "functions": [
        {"name": "zeta", "returns": "i32"},
        {"name": "alpha", "returns": "i32"},
        {"name": "mid", "returns": "i32"},
    ]})
    outputs = BindingGenerator(model).render()
    for text in outputs.values():
        positions = [text.index(f"n_fn_{name}") for name in ("zeta", "alpha", "mid")]
        assert positions == sorted(positions)


def test_namespace_override(sample_model):
    outputs = BindingGenerator(sample_model, GeneratorConfig(namespace="calc", backends=["c"])).render()
    assert "CALC_API int32_t calc_fn_add(int32_t a, int32_t b);" in outputs["calc.h"]


def test_unknown_backend(sample_model):
    with pytest.raises(ConfigError, match="swift"):
        BindingGenerator(sample_model, GeneratorConfig(backends=["c", "swift"])).render()


def test_unresolved_type_writes_nothing(sample_data, tmp_path):
    sample_data["functions"].append({"name": "broken", "params": [{"name": "x", "type": "Missing"}]})
    generator = BindingGenerator(load_model(sample_data))
    with pytest.raises(UnresolvedTypeError, match="broken"):
        generator.write(tmp_path / "out")
    assert not (tmp_path / "out").exists()


def test_unused_broken_definition_still_aborts(sample_data, tmp_path):
    sample_data["records"].append({"name": "Loop", "fields": [{"name": "self_ref", "type": "Loop"}]})
    with pytest.raises(RecursiveTypeError):
        BindingGenerator(load_model(sample_data)).write(tmp_path)
    assert list(tmp_path.iterdir()) == []


def test_write_and_skip_unchanged(sample_model, tmp_path, caplog):
    generator = BindingGenerator(sample_model, GeneratorConfig(out_dir=tmp_path))
    with caplog.at_level(logging.INFO, logger="ffigen"):
        written = generator.write()
    assert sorted(p.relative_to(tmp_path).as_posix() for p in written) == [
        "arith.h", "arith.py", "ffigen/arith/arith.kt",
    ]
    assert "Generated: " in caplog.text

    assert generator.write() == []

    header = tmp_path / "arith.h"
    header.write_text("stale")
    assert generator.write() == [header]
