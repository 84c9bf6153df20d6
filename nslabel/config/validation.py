"""
Typed validation of the values in a loaded config. The rules live in a
parallel yaml file where every leaf holding a "type" key describes one
parameter.
"""

# Standard
from typing import Any, Dict, List, Optional, Union
import abc
import builtins

# First Party
import aconfig
import alog

# Local
from .. import constants
from ..utils import nested_get

log = alog.use_channel("CONFG")


################################################################################
## Public ######################################################################
################################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get the list of dotted keys whose values fail validation

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding the validation rules

    Returns:
        invalid_params:  List[str]
            Every nested key that failed validation
    """
    invalid_params = []
    for val_key, validator in _parse_validation_config(validation_config).items():
        if not validator.validate(nested_get(config, val_key)):
            log.warning("Found invalid config key [%s]", val_key)
            invalid_params.append(val_key)
    return invalid_params


################################################################################
## Implementation ##############################################################
################################################################################

# pylint: disable=too-few-public-methods


class _ValidatedParameter(abc.ABC):
    """A parameter with a set of valid types and a type-specific value check"""

    TYPES: List[type] = []
    TYPE_KEY: Optional[str] = None

    def __init__(self, optional: bool = False):
        self.optional = optional

    def validate(self, value: Any) -> bool:
        """Check the type, then the value"""
        if self.optional and value is None:
            return True
        if not any(isinstance(value, valid_type) for valid_type in self.TYPES):
            log.warning("Invalid type <%s>", type(value))
            return False
        valid_value = self._validate_value(value)
        if not valid_value:
            log.warning("Invalid value [%s]", value)
        return valid_value

    @abc.abstractmethod
    def _validate_value(self, value: Any) -> bool:
        """Type-specific value validation"""


class _NumberParameter(_ValidatedParameter):
    """int or float with optional inclusive bounds"""

    TYPES = [int, float]
    TYPE_KEY = "number"

    def __init__(
        self,
        *,
        min: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        max: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min = min
        self._max = max

    def _validate_value(self, value: Union[int, float]) -> bool:
        # bool is an int subclass, but True is never a valid number
        if isinstance(value, bool):
            return False
        return (self._min is None or value >= self._min) and (
            self._max is None or value <= self._max
        )


class _IntParameter(_NumberParameter):
    TYPES = [int]
    TYPE_KEY = "int"


class _StrParameter(_ValidatedParameter):
    """str with optional length bounds"""

    TYPES = [str]
    TYPE_KEY = "str"

    def __init__(
        self,
        *,
        min_len: Optional[int] = None,
        max_len: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min_len = min_len
        self._max_len = max_len

    def _validate_value(self, value: str) -> bool:
        return (self._min_len is None or len(value) >= self._min_len) and (
            self._max_len is None or len(value) <= self._max_len
        )


class _BoolParameter(_ValidatedParameter):
    TYPES = [bool]
    TYPE_KEY = "bool"

    def _validate_value(self, value: bool) -> bool:
        return True


class _EnumParameter(_ValidatedParameter):
    """One of a fixed set of values"""

    TYPES = [str, int, type(None)]
    TYPE_KEY = "enum"

    def __init__(self, *, values: List[Union[str, int, None]], **kwargs):
        super().__init__(**kwargs)
        assert (
            isinstance(values, list) and values
        ), "Must specify at least one enum value!"
        self.values = values

    def _validate_value(self, value: Union[str, int, None]) -> bool:
        return value in self.values


class _ListParameter(_ValidatedParameter):
    """list with optional length bounds and item type"""

    TYPES = [list]
    TYPE_KEY = "list"

    def __init__(
        self,
        *,
        min_len: Optional[int] = None,
        max_len: Optional[int] = None,
        item_type: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min_len = min_len
        self._max_len = max_len
        self._item_type = None
        if item_type is not None:
            assert hasattr(builtins, item_type), f"Unsupported item_type: {item_type}"
            self._item_type = getattr(builtins, item_type)

    def _validate_value(self, value: list) -> bool:
        return (
            (self._min_len is None or len(value) >= self._min_len)
            and (self._max_len is None or len(value) <= self._max_len)
            and (
                self._item_type is None
                or all(isinstance(item, self._item_type) for item in value)
            )
        )


# pylint: enable=too-few-public-methods

## Factory #####################################################################


def _create_factory_map(param_class, factory_map=None):
    """Recursively map every concrete parameter class by its TYPE_KEY"""
    factory_map = factory_map or {}
    if not param_class.__abstractmethods__:
        factory_map[param_class.TYPE_KEY] = param_class
    for subclass in param_class.__subclasses__():
        factory_map = _create_factory_map(subclass, factory_map)
    return factory_map


_factory_map = _create_factory_map(_ValidatedParameter)


def _construct_parameter(param_args: Dict[str, Any]) -> Optional[_ValidatedParameter]:
    """Construct a parameter from its rule. Unknown types give None."""
    param_args = dict(param_args)
    param_type = param_args.pop("type")
    if not (isinstance(param_type, str) and param_type in _factory_map):
        return None
    return _factory_map[param_type](**param_args)


def _parse_validation_config(
    validation_config: dict,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, _ValidatedParameter]:
    """Flatten the rules into a dict of dotted keys to parameters"""
    output_dict = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        assert isinstance(key, str), "Only string keys allowed!"
        if not isinstance(val, dict):
            continue
        key_parts = prefix_parts + [key]
        nested_key = constants.NESTED_DICT_DELIM.join(key_parts)

        param = None
        if "type" in val:
            log.debug3("Attempting to construct parameter at [%s]: %s", nested_key, val)
            param = _construct_parameter(val)

        if param:
            output_dict[nested_key] = param
        else:
            log.debug3("Recursing into %s", nested_key)
            output_dict.update(_parse_validation_config(val, prefix_parts=key_parts))

    return output_dict
