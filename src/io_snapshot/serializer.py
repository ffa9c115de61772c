"""
Value serializer for capture events.

This module converts arbitrary run-time values to JSON text and back. Values
that JSON cannot express natively (tuples, sets, bytes, dates, non-finite
floats, numpy arrays, class instances, ...) are written as tagged objects of
the form ``{"__type__": <tag>, ...}`` so they survive the round trip.

Decoding has two modes:

* plain (the default) produces only primitives, lists, tuples, sets and
  dicts. Class instances become dicts with a ``__class__`` entry. This is the
  domain the structural differ works in.
* ``reconstruct=True`` re-imports classes and callables by qualified name where
  possible, so replayed arguments look like the originals to the function
  under test.

Cyclic values are flattened: a container met again while it is still being
encoded is replaced by a ``circular`` placeholder.
"""
from __future__ import annotations

import base64
import dataclasses
import datetime as dt
import decimal
import enum
import importlib
import json
import logging
import math
import uuid
from pathlib import Path, PurePath
from typing import Any, Optional

# Optional numpy import - only used when captured values contain numpy arrays
try:
    import numpy as np
    HAS_NUMPY = True
except ImportError:
    np = None  # type: ignore
    HAS_NUMPY = False

logger = logging.getLogger(__name__)

TYPE_KEY = "__type__"
CLASS_KEY = "__class__"
CIRCULAR_PLACEHOLDER = "<circular reference>"


def _is_numpy_array(obj: Any) -> bool:
    """Check if object is a numpy array without requiring numpy import."""
    if HAS_NUMPY and np is not None:
        return isinstance(obj, np.ndarray)
    obj_type = type(obj)
    return obj_type.__module__ == "numpy" and obj_type.__name__ == "ndarray"


def _is_numpy_scalar(obj: Any) -> bool:
    """Check if object is a numpy scalar without requiring numpy import."""
    if HAS_NUMPY and np is not None:
        return isinstance(obj, np.generic)
    return type(obj).__module__ == "numpy" and hasattr(obj, "item")


def qualified_name(obj: Any) -> str:
    """Return ``module:qualname`` for a class or function."""
    module = getattr(obj, "__module__", None) or "builtins"
    qualname = getattr(obj, "__qualname__", None) or getattr(obj, "__name__", repr(obj))
    return f"{module}:{qualname}"


def resolve_qualified_name(name: str) -> Optional[Any]:
    """Import the object named by ``module:qualname``; None when unavailable."""
    module_name, _, qualname = name.partition(":")
    if not module_name or not qualname or "<locals>" in qualname:
        return None
    try:
        target = importlib.import_module(module_name)
        for part in qualname.split("."):
            target = getattr(target, part)
    except Exception as e:
        logger.debug(f"Cannot resolve {name}: {e}")
        return None
    return target


class _Encoder:
    """Encodes one value; tracks the containers on the current path."""

    def __init__(self):
        self._active: set[int] = set()

    def encode(self, value: Any) -> Any:
        if value is None or isinstance(value, (bool, str)):
            return value

        # Enums before int/str so IntEnum and StrEnum keep their identity
        if isinstance(value, enum.Enum):
            return {
                TYPE_KEY: "enum",
                "class": qualified_name(type(value)),
                "name": value.name,
                "value": self.encode(value.value),
            }

        if isinstance(value, int):
            return int(value)

        if isinstance(value, float):
            if math.isfinite(value):
                return float(value)
            return {TYPE_KEY: "float", "value": repr(value)}

        if isinstance(value, (list, tuple, set, frozenset, dict)) or _is_numpy_array(value):
            if id(value) in self._active:
                return {TYPE_KEY: "circular"}
            self._active.add(id(value))
            try:
                return self._encode_container(value)
            finally:
                self._active.discard(id(value))

        if _is_numpy_scalar(value):
            return self.encode(value.item())

        if isinstance(value, (bytes, bytearray)):
            return {TYPE_KEY: "bytes", "base64": base64.b64encode(bytes(value)).decode("ascii")}

        # datetime is a subclass of date, check it first
        if isinstance(value, dt.datetime):
            return {TYPE_KEY: "datetime", "value": value.isoformat()}
        if isinstance(value, dt.date):
            return {TYPE_KEY: "date", "value": value.isoformat()}
        if isinstance(value, dt.time):
            return {TYPE_KEY: "time", "value": value.isoformat()}
        if isinstance(value, dt.timedelta):
            return {TYPE_KEY: "timedelta", "seconds": value.total_seconds()}

        if isinstance(value, decimal.Decimal):
            return {TYPE_KEY: "decimal", "value": str(value)}
        if isinstance(value, complex):
            return {TYPE_KEY: "complex", "real": self.encode(value.real), "imag": self.encode(value.imag)}
        if isinstance(value, uuid.UUID):
            return {TYPE_KEY: "uuid", "value": str(value)}
        if isinstance(value, PurePath):
            return {TYPE_KEY: "path", "value": str(value)}

        if isinstance(value, type):
            return {TYPE_KEY: "callable", "name": qualified_name(value)}

        # Generators and iterators cannot be captured without consuming them
        if hasattr(value, "__iter__") and hasattr(value, "__next__"):
            return {TYPE_KEY: "generator", "class": qualified_name(type(value))}

        if callable(value) and hasattr(value, "__qualname__"):
            return {TYPE_KEY: "callable", "name": qualified_name(value)}

        return self._encode_instance(value)

    def _encode_container(self, value: Any) -> Any:
        if isinstance(value, list):
            return [self.encode(item) for item in value]

        if isinstance(value, tuple):
            return {TYPE_KEY: "tuple", "items": [self.encode(item) for item in value]}

        if isinstance(value, (set, frozenset)):
            items = [self.encode(item) for item in value]
            # Sets have no order; sort the encoded items so output is stable
            items.sort(key=lambda item: json.dumps(item, sort_keys=True))
            tag = "frozenset" if isinstance(value, frozenset) else "set"
            return {TYPE_KEY: tag, "items": items}

        if isinstance(value, dict):
            if TYPE_KEY not in value and all(isinstance(key, str) for key in value):
                return {key: self.encode(item) for key, item in value.items()}
            return {
                TYPE_KEY: "dict",
                "items": [[self.encode(key), self.encode(item)] for key, item in value.items()],
            }

        # numpy array
        return {
            TYPE_KEY: "ndarray",
            "dtype": str(value.dtype),
            "shape": list(value.shape),
            "data": self.encode(value.tolist()),
        }

    def _encode_instance(self, value: Any) -> Any:
        """Encode a class instance as its class name plus attribute state."""
        if id(value) in self._active:
            return {TYPE_KEY: "circular"}

        state = None
        if dataclasses.is_dataclass(value):
            state = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        elif hasattr(value, "__dict__"):
            state = dict(vars(value))
        elif hasattr(type(value), "__slots__"):
            state = {
                slot: getattr(value, slot)
                for slot in _iter_slots(type(value))
                if hasattr(value, slot)
            }

        if state is None:
            return {TYPE_KEY: "repr", "class": qualified_name(type(value)), "repr": repr(value)}

        self._active.add(id(value))
        try:
            encoded_state = {str(key): self.encode(item) for key, item in state.items()}
        finally:
            self._active.discard(id(value))

        return {TYPE_KEY: "object", "class": qualified_name(type(value)), "state": encoded_state}


def _iter_slots(cls: type):
    for klass in cls.__mro__:
        slots = klass.__dict__.get("__slots__", ())
        if isinstance(slots, str):
            slots = (slots,)
        for slot in slots:
            if slot not in ("__dict__", "__weakref__"):
                yield slot


class _Decoder:
    """Decodes JSON-compatible data produced by `_Encoder`."""

    def __init__(self, reconstruct: bool = False):
        self.reconstruct = reconstruct

    def decode(self, data: Any) -> Any:
        if isinstance(data, list):
            return [self.decode(item) for item in data]
        if not isinstance(data, dict):
            return data
        if TYPE_KEY not in data:
            return {key: self.decode(item) for key, item in data.items()}

        tag = data[TYPE_KEY]
        handler = getattr(self, f"_decode_{tag}", None)
        if handler is None:
            logger.warning(f"Unknown serialized type tag: {tag!r}")
            return {key: self.decode(item) for key, item in data.items()}
        return handler(data)

    def _decode_tuple(self, data):
        return tuple(self.decode(item) for item in data["items"])

    def _decode_set(self, data):
        return {self._hashable(self.decode(item)) for item in data["items"]}

    def _decode_frozenset(self, data):
        return frozenset(self._decode_set(data))

    def _decode_dict(self, data):
        return {self._hashable(self.decode(key)): self.decode(item) for key, item in data["items"]}

    def _decode_float(self, data):
        return float(data["value"])

    def _decode_bytes(self, data):
        return base64.b64decode(data["base64"])

    def _decode_datetime(self, data):
        return dt.datetime.fromisoformat(data["value"])

    def _decode_date(self, data):
        return dt.date.fromisoformat(data["value"])

    def _decode_time(self, data):
        return dt.time.fromisoformat(data["value"])

    def _decode_timedelta(self, data):
        return dt.timedelta(seconds=data["seconds"])

    def _decode_decimal(self, data):
        return decimal.Decimal(data["value"])

    def _decode_complex(self, data):
        return complex(self.decode(data["real"]), self.decode(data["imag"]))

    def _decode_uuid(self, data):
        return uuid.UUID(data["value"])

    def _decode_path(self, data):
        return Path(data["value"])

    def _decode_circular(self, data):
        return CIRCULAR_PLACEHOLDER

    def _decode_ndarray(self, data):
        values = self.decode(data["data"])
        if self.reconstruct and HAS_NUMPY:
            return np.array(values, dtype=data["dtype"]).reshape(data["shape"])
        return values

    def _decode_generator(self, data):
        return {CLASS_KEY: data["class"], "generator": True}

    def _decode_repr(self, data):
        return {CLASS_KEY: data["class"], "repr": data["repr"]}

    def _decode_callable(self, data):
        if self.reconstruct:
            target = resolve_qualified_name(data["name"])
            if target is not None:
                return target
        return {CLASS_KEY: "builtins:function", "name": data["name"]}

    def _decode_enum(self, data):
        value = self.decode(data["value"])
        if self.reconstruct:
            cls = resolve_qualified_name(data["class"])
            if isinstance(cls, type) and issubclass(cls, enum.Enum):
                try:
                    return cls[data["name"]]
                except KeyError:
                    pass
        return {CLASS_KEY: data["class"], "name": data["name"], "value": value}

    def _decode_object(self, data):
        state = {key: self.decode(item) for key, item in data["state"].items()}
        if self.reconstruct:
            cls = resolve_qualified_name(data["class"])
            if isinstance(cls, type):
                try:
                    instance = cls.__new__(cls)
                    for key, item in state.items():
                        object.__setattr__(instance, key, item)
                    return instance
                except Exception as e:
                    logger.debug(f"Cannot rebuild {data['class']}: {e}")
        return {CLASS_KEY: data["class"], **state}

    @staticmethod
    def _hashable(value: Any) -> Any:
        try:
            hash(value)
        except TypeError:
            return json.dumps(encode(value), sort_keys=True)
        return value


def encode(value: Any) -> Any:
    """Convert a value into JSON-compatible data."""
    return _Encoder().encode(value)


def decode(data: Any, reconstruct: bool = False) -> Any:
    """Convert data produced by `encode` back into Python values."""
    return _Decoder(reconstruct=reconstruct).decode(data)


def dumps(value: Any) -> str:
    """Serialize a value to a single line of JSON text."""
    return json.dumps(encode(value), ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def loads(text: str, reconstruct: bool = False) -> Any:
    """Deserialize JSON text produced by `dumps`."""
    return decode(json.loads(text), reconstruct=reconstruct)


def normalize(value: Any) -> Any:
    """Return the plain-mode image of a value, as it would read back from a log."""
    return decode(json.loads(dumps(value)))
