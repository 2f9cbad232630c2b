"""
Persynx Codecs
==============

A codec is the pair of functions that converts a domain value into something
the store can hold (numbers, strings, booleans, lists, string-keyed dicts)
and back. Bindings take a codec explicitly; there is no runtime type
inspection to pick one.

The primitive codecs coerce the loose shapes that older data tends to have
(numeric strings, integral floats, "true"/"false"), and raise `DecodeError`
for anything else.
"""

import dataclasses
import json
from typing import Any, Callable, Dict, Generic, Mapping, Type, TypeVar

from .errors import DecodeError

T = TypeVar("T")


def _identity(value: Any) -> Any:
    return value


@dataclasses.dataclass(frozen=True)
class Codec(Generic[T]):
    """
    Encode/decode pair for one key (or one collection item).

    Attributes:
        encode: Domain value -> storable primitive.
        decode: Storable primitive -> domain value. May raise.
        name: Label used in log messages.
    """

    encode: Callable[[T], Any]
    decode: Callable[[Any], T]
    name: str = "custom"

    @classmethod
    def identity(cls) -> "Codec[Any]":
        """Store values as they are."""
        return cls(encode=_identity, decode=_identity, name="identity")

    @classmethod
    def of(
        cls, decode: Callable[[Any], T], encode: Callable[[T], Any], name: str = "custom"
    ) -> "Codec[T]":
        return cls(encode=encode, decode=decode, name=name)


# ============================================================================
# PRIMITIVE CODECS
# ============================================================================


def _decode_string(data: Any) -> str:
    if data is None:
        raise DecodeError("Cannot convert None to str", raw=data)
    return data if isinstance(data, str) else str(data)


def _decode_integer(data: Any) -> int:
    if isinstance(data, bool):
        raise DecodeError("Cannot convert bool to int", raw=data)
    if isinstance(data, int):
        return data
    if isinstance(data, float):
        if data.is_integer():
            return int(data)
        raise DecodeError(f"Cannot convert non-integral float {data!r} to int", raw=data)
    if isinstance(data, str):
        try:
            return int(data.strip())
        except ValueError as e:
            raise DecodeError(f"Cannot convert {data!r} to int", raw=data) from e
    raise DecodeError(f"Cannot convert {type(data).__name__} to int", raw=data)


def _decode_float(data: Any) -> float:
    if isinstance(data, bool):
        raise DecodeError("Cannot convert bool to float", raw=data)
    if isinstance(data, (int, float)):
        return float(data)
    if isinstance(data, str):
        try:
            return float(data.strip())
        except ValueError as e:
            raise DecodeError(f"Cannot convert {data!r} to float", raw=data) from e
    raise DecodeError(f"Cannot convert {type(data).__name__} to float", raw=data)


def _decode_boolean(data: Any) -> bool:
    if isinstance(data, bool):
        return data
    if isinstance(data, str):
        lowered = data.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        raise DecodeError(f"Cannot convert {data!r} to bool", raw=data)
    if isinstance(data, (int, float)):
        return data != 0
    raise DecodeError(f"Cannot convert {type(data).__name__} to bool", raw=data)


STRING: Codec[str] = Codec(encode=_identity, decode=_decode_string, name="str")
INTEGER: Codec[int] = Codec(encode=_identity, decode=_decode_integer, name="int")
FLOAT: Codec[float] = Codec(encode=_identity, decode=_decode_float, name="float")
BOOLEAN: Codec[bool] = Codec(encode=_identity, decode=_decode_boolean, name="bool")


# ============================================================================
# STRUCTURED CODECS
# ============================================================================


def _as_mapping(data: Any) -> Mapping[str, Any]:
    """Accept a mapping, or a JSON object serialized as a string."""
    if isinstance(data, Mapping):
        return data
    if isinstance(data, str):
        try:
            parsed = json.loads(data)
        except ValueError as e:
            raise DecodeError(f"Invalid JSON object string: {e}", raw=data) from e
        if isinstance(parsed, Mapping):
            return parsed
        raise DecodeError("Stored JSON string is not an object", raw=data)
    raise DecodeError(f"Expected a mapping, got {type(data).__name__}", raw=data)


def mapping_codec(
    to_dict: Callable[[T], Dict[str, Any]],
    from_dict: Callable[[Mapping[str, Any]], T],
    name: str = "mapping",
) -> Codec[T]:
    """
    Codec for objects that serialize to a JSON object.

    Decoding accepts a mapping or a JSON object string; any exception raised
    by ``from_dict`` is reported as a `DecodeError`.
    """

    def decode(data: Any) -> T:
        mapping = _as_mapping(data)
        try:
            return from_dict(mapping)
        except DecodeError:
            raise
        except Exception as e:
            raise DecodeError(f"{name}: {e}", raw=data) from e

    return Codec(encode=to_dict, decode=decode, name=name)


def dataclass_codec(cls: Type[T]) -> Codec[T]:
    """Codec for a dataclass whose fields are themselves storable."""
    if not dataclasses.is_dataclass(cls):
        raise TypeError(f"{cls!r} is not a dataclass")

    field_names = {f.name for f in dataclasses.fields(cls)}

    def from_dict(mapping: Mapping[str, Any]) -> T:
        return cls(**{k: v for k, v in mapping.items() if k in field_names})

    return mapping_codec(dataclasses.asdict, from_dict, name=cls.__name__)


__all__ = [
    "Codec",
    "STRING",
    "INTEGER",
    "FLOAT",
    "BOOLEAN",
    "mapping_codec",
    "dataclass_codec",
]
