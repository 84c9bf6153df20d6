"""
Common utilities shared across components in the library
"""

# Standard
from typing import Any, Optional

# Local
from . import constants

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    If both the base and overrides have a key and both values are dicts,
    recursively merge, otherwise set the base value to the override value.
    """
    for key, value in overrides.items():
        if (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = value
        else:
            base[key] = merge_configs(base[key], value)

    return base


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to read from
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                "Intermediate key "
                f"{constants.NESTED_DICT_DELIM.join(parts[:i + 1])} is not a dict"
            )
    return dct.get(parts[-1], dflt)


## Manifests ###################################################################


def get_metadata(manifest: Optional[dict]) -> dict:
    """Null-safe access to a manifest's metadata"""
    return (manifest or {}).get("metadata") or {}


def is_being_deleted(manifest: Optional[dict]) -> bool:
    """An object is pending deletion once the API server sets its
    deletionTimestamp
    """
    return bool(get_metadata(manifest).get("deletionTimestamp"))


def get_finalizers(manifest: Optional[dict]) -> list:
    return list(get_metadata(manifest).get("finalizers") or [])
