"""
Library config for the operator. Values are loaded once at import time from
config.yaml (with env var overrides) and may be further overridden from the
command line.
"""

# Local
from .config import library_config


# Delegate attribute access on this module to the library config
def __getattr__(name):
    if name in library_config or hasattr({}, name):
        return getattr(library_config, name)
    raise AttributeError(f"No such config attribute {name}")


__all__ = list(library_config.keys())
