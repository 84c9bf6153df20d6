"""
Tests for the common utils
"""

# Third Party
import pytest

# Local
from nslabel.utils import (
    get_finalizers,
    get_metadata,
    is_being_deleted,
    merge_configs,
    nested_get,
)


def test_merge_configs_deep():
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    assert merge_configs(base, {"a": {"b": 10}, "e": 4}) == {
        "a": {"b": 10, "c": 2},
        "d": 3,
        "e": 4,
    }


def test_nested_get():
    dct = {"a": {"b": {"c": 1}}, "x": 1}
    assert nested_get(dct, "a.b.c") == 1
    assert nested_get(dct, "a.missing.c", "dflt") == "dflt"
    with pytest.raises(TypeError):
        nested_get(dct, "x.y")


def test_manifest_helpers_are_null_safe():
    assert get_metadata(None) == {}
    assert get_metadata({"metadata": None}) == {}
    assert not is_being_deleted(None)
    assert get_finalizers({"metadata": {}}) == []


def test_is_being_deleted():
    assert is_being_deleted({"metadata": {"deletionTimestamp": "2024-01-01T00:00:00Z"}})
    assert not is_being_deleted({"metadata": {"name": "foo"}})
