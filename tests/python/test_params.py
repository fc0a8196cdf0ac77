"""ParameterSpec / ParameterVector / ParameterSpace contract tests."""

import math

import pytest

from pluginscan import ModelConfigError, ParameterSpace, ParameterSpec, ParameterVector


@pytest.fixture
def space():
    return ParameterSpace(
        [ParameterSpec("mu", 0.0, 10.0, default=1.0), ParameterSpec("b", -5.0, 5.0)],
        ["x", "y"],
    )


def test_spec_validation():
    with pytest.raises(ModelConfigError):
        ParameterSpec("mu", 1.0, 1.0)
    with pytest.raises(ModelConfigError):
        ParameterSpec("mu", 0.0, 1.0, default=2.0)
    with pytest.raises(ModelConfigError):
        ParameterSpec("")


def test_spec_initial_and_clip():
    assert ParameterSpec("a", 2.0, 3.0).initial == 2.0
    assert ParameterSpec("a").initial == 0.0
    assert ParameterSpec("a", 0.0, 1.0).clip(5.0) == 1.0
    assert ParameterSpec("a", 0.0, 1.0).contains(1.0)
    assert not ParameterSpec("a", 0.0, 1.0).contains(1.5)


def test_vector_mapping_and_flags():
    v = ParameterVector({"a": 1, "b": 2.5}, constant=["b"])
    assert dict(v) == {"a": 1.0, "b": 2.5}
    assert list(v) == ["a", "b"]
    assert not v.is_constant("a")
    assert v.is_constant("b")
    with pytest.raises(KeyError):
        v.is_constant("c")
    with pytest.raises(ValueError):
        ParameterVector({"a": 1.0}, constant=["z"])


def test_vector_replace_is_a_copy():
    v = ParameterVector({"a": 1.0, "b": 2.0}, constant={"a": True})
    w = v.replace({"b": 3.0}, constant={"a": False})
    assert v["b"] == 2.0 and v.is_constant("a")
    assert w["b"] == 3.0 and not w.is_constant("a")
    assert v != w
    assert v == ParameterVector({"a": 1.0, "b": 2.0}, constant=["a"])
    with pytest.raises(KeyError):
        v.replace({"zz": 1.0})


def test_space_defaults_and_clipping(space):
    assert space.get("mu") == 1.0
    assert space.get("b") == 0.0
    space.set("mu", 42.0)
    assert space.get("mu") == 10.0
    space.load({"mu": -3.0, "b": 1.5})
    assert space.get("mu") == 0.0
    assert space.get("b") == 1.5


def test_space_unknown_names(space):
    with pytest.raises(ModelConfigError):
        space.get("nope")
    with pytest.raises(ModelConfigError):
        space.set("nope", 1.0)
    with pytest.raises(ModelConfigError):
        space.load_observables({"z": 1.0})


def test_space_constant_flags(space):
    space.fix("mu")
    assert space.floating() == ("b",)
    space.free("mu")
    space.set("b", 0.3, constant=True)
    assert space.is_constant("b")
    assert space.current().constant_names == frozenset({"b"})


def test_space_load_applies_vector_flags_only_on_request(space):
    v = ParameterVector({"mu": 2.0, "b": 0.5}, constant=["mu"])
    space.load(v)
    assert not space.is_constant("mu")
    space.load(v, constants=True)
    assert space.is_constant("mu")


def test_preserved_restores_everything(space):
    space.load_observables({"x": 1.0, "y": 2.0})
    before = space.snapshot()
    with space.preserved():
        space.set("mu", 7.0, constant=True)
        space.load_observables({"x": -1.0})
    assert space.snapshot() == before


def test_preserved_restores_on_error(space):
    with pytest.raises(RuntimeError):
        with space.preserved():
            space.set("b", 4.0)
            raise RuntimeError("boom")
    assert space.get("b") == 0.0


def test_space_rejects_duplicates_and_clashes():
    with pytest.raises(ModelConfigError):
        ParameterSpace([ParameterSpec("a"), ParameterSpec("a")], [])
    with pytest.raises(ModelConfigError):
        ParameterSpace([ParameterSpec("a")], ["a"])
    assert math.isinf(ParameterSpec("a").hi)
