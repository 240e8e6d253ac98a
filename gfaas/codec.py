"""
Payload serialization

Converts typed arguments to the byte payloads written into the sandbox and
decodes the module output back into the declared return type.

Raw types (bytes, bytearray, str) travel as-is, str as UTF-8. Everything else
is JSON, which is what the generated entry points read with serde_json.
"""

import json
import types
import typing
from typing import Any, Tuple

from .errors import DeserializationError

RAW_TYPES = (bytes, bytearray, str)


def encode(value: Any) -> bytes:
    """Convert a value to a byte payload

    Args:
        value: bytes, str or any JSON-serializable value (tuples become arrays)

    Returns:
        bytes: Payload to write into the sandbox

    Raises:
        TypeError: If the value cannot be serialized
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    try:
        return json.dumps(value, separators=(",", ":"), allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise TypeError(f"Cannot serialize value of type {type(value).__name__}: {e}")


def decode(data: bytes, return_type: Any = bytes) -> Any:
    """Convert a byte payload to a value of the declared type

    Args:
        data: Payload read back from the sandbox
        return_type: Declared type, e.g. bytes, str, int, List[int], Dict[str, float]

    Returns:
        Decoded value

    Raises:
        DeserializationError: If the payload does not match the declared type
    """
    if return_type is bytes:
        return bytes(data)
    if return_type is bytearray:
        return bytearray(data)
    if return_type is str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DeserializationError(f"Output is not valid UTF-8: {e}")

    try:
        value = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise DeserializationError(f"Output is not valid JSON: {e}")

    return _coerce(value, return_type)


def _coerce(value: Any, tp: Any) -> Any:
    """Check a decoded JSON value against a declared type"""
    if tp is Any or tp is object:
        return value
    if tp is None or tp is type(None):
        if value is not None:
            raise _mismatch(value, tp)
        return None

    origin = typing.get_origin(tp)
    args = typing.get_args(tp)

    if origin is typing.Union or origin is types.UnionType:
        for option in args:
            try:
                return _coerce(value, option)
            except DeserializationError:
                continue
        raise _mismatch(value, tp)

    if origin in (list, typing.List) or tp is list:
        if not isinstance(value, list):
            raise _mismatch(value, tp)
        item_type = args[0] if args else Any
        return [_coerce(item, item_type) for item in value]

    if origin in (tuple, typing.Tuple) or tp is tuple:
        if not isinstance(value, list):
            raise _mismatch(value, tp)
        return _coerce_tuple(value, args, tp)

    if origin in (dict, typing.Dict) or tp is dict:
        if not isinstance(value, dict):
            raise _mismatch(value, tp)
        key_type, item_type = args if args else (Any, Any)
        if key_type not in (str, Any):
            raise DeserializationError(f"Unsupported mapping key type: {key_type!r}")
        return {k: _coerce(v, item_type) for k, v in value.items()}

    if tp is bool:
        if not isinstance(value, bool):
            raise _mismatch(value, tp)
        return value
    if tp is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _mismatch(value, tp)
        return value
    if tp is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _mismatch(value, tp)
        return float(value)
    if tp is str:
        if not isinstance(value, str):
            raise _mismatch(value, tp)
        return value

    raise DeserializationError(f"Unsupported return type: {tp!r}")


def _coerce_tuple(value: list, args: Tuple[Any, ...], tp: Any) -> tuple:
    if not args:
        return tuple(value)
    if len(args) == 2 and args[1] is Ellipsis:
        return tuple(_coerce(item, args[0]) for item in value)
    if len(args) != len(value):
        raise _mismatch(value, tp)
    return tuple(_coerce(item, item_type) for item, item_type in zip(value, args))


def _mismatch(value: Any, tp: Any) -> DeserializationError:
    name = getattr(tp, "__name__", None) or repr(tp)
    return DeserializationError(f"Expected {name}, got {type(value).__name__}: {value!r}"[:200])


def encode_inputs(values) -> Tuple[bytes, ...]:
    """Encode an ordered sequence of arguments"""
    return tuple(encode(value) for value in values)
