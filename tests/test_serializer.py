"""Tests for the tagged JSON value serializer."""

import datetime as dt
import decimal
import enum
import json
import math
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from http import HTTPStatus
from pathlib import Path

import pytest

from io_snapshot import serializer
from io_snapshot.serializer import CIRCULAR_PLACEHOLDER, TYPE_KEY


@dataclass
class Point:
    x: int
    y: int


class Color(enum.Enum):
    RED = 1


class Slotted:
    __slots__ = ("a", "b")

    def __init__(self, a, b):
        self.a = a
        self.b = b


class TestEncoding:
    """Tests for encoding values to JSON-compatible data."""

    def test_primitives_pass_through(self):
        """Test that JSON-native values are unchanged."""
        for value in (None, True, 0, -7, 1.5, "text"):
            assert serializer.encode(value) == value

    def test_list_and_str_dict_stay_plain(self):
        """Test that lists and string-keyed dicts need no tags."""
        value = {"a": [1, 2, {"b": None}]}
        assert serializer.encode(value) == value

    def test_tuple_is_tagged(self):
        """Test that tuples are distinguished from lists."""
        assert serializer.encode((1, 2)) == {TYPE_KEY: "tuple", "items": [1, 2]}

    def test_set_encoding_is_order_independent(self):
        """Test that equal sets always encode identically."""
        assert serializer.dumps({3, 1, 2}) == serializer.dumps({2, 3, 1})

    def test_dict_with_non_string_keys(self):
        """Test that non-string keys survive as tagged items."""
        encoded = serializer.encode({1: "a", (2, 3): "b"})
        assert encoded[TYPE_KEY] == "dict"
        assert serializer.decode(encoded) == {1: "a", (2, 3): "b"}

    def test_dict_holding_type_key_is_escaped(self):
        """Test that a user dict containing the tag key is not misread."""
        value = {TYPE_KEY: "tuple", "items": [1]}
        assert serializer.loads(serializer.dumps(value)) == value

    def test_non_finite_floats_produce_valid_json(self):
        """Test that NaN and infinities do not break JSON output."""
        text = serializer.dumps([float("nan"), float("inf"), float("-inf")])
        json.loads(text)
        decoded = serializer.loads(text)
        assert math.isnan(decoded[0])
        assert decoded[1:] == [float("inf"), float("-inf")]

    def test_generator_is_not_consumed(self):
        """Test that generators are recorded by class, not iterated."""
        consumed = []

        def gen():
            consumed.append(True)
            yield 1

        encoded = serializer.encode(gen())
        assert encoded[TYPE_KEY] == "generator"
        assert consumed == []

    def test_class_object_is_callable_not_generator(self):
        """Test that an iterator class itself encodes as a callable."""

        class Counter:
            def __iter__(self):
                return self

            def __next__(self):
                raise StopIteration

        assert serializer.encode(Counter)[TYPE_KEY] == "callable"


class TestRoundTrip:
    """Tests for values surviving encode and decode."""

    @pytest.mark.parametrize(
        "value",
        [
            (1, (2, 3)),
            {1, 2, 3},
            frozenset({"a"}),
            b"\x00\xffbytes",
            dt.datetime(2024, 1, 2, 3, 4, 5),
            dt.date(2024, 1, 2),
            dt.time(12, 30),
            dt.timedelta(seconds=90),
            decimal.Decimal("1.10"),
            complex(1, -2),
            uuid.UUID("12345678-1234-5678-1234-567812345678"),
            Path("some/file.txt"),
        ],
    )
    def test_tagged_values(self, value):
        """Test that tagged types come back equal."""
        assert serializer.loads(serializer.dumps(value)) == value

    def test_dataclass_plain_decode(self):
        """Test that instances decode to dicts with their class name."""
        decoded = serializer.loads(serializer.dumps(Point(1, 2)))
        assert decoded == {"__class__": f"{Point.__module__}:Point", "x": 1, "y": 2}

    def test_slotted_instance(self):
        """Test that __slots__ instances capture their attribute state."""
        decoded = serializer.loads(serializer.dumps(Slotted(1, [2])))
        assert decoded["a"] == 1
        assert decoded["b"] == [2]

    def test_enum_plain_and_reconstructed(self):
        """Test enum decoding in both modes."""
        text = serializer.dumps(HTTPStatus.NOT_FOUND)
        assert serializer.loads(text)["name"] == "NOT_FOUND"
        assert serializer.loads(text, reconstruct=True) is HTTPStatus.NOT_FOUND

    def test_enum_is_not_collapsed_to_int(self):
        """Test that an IntEnum keeps its identity when encoded."""
        encoded = serializer.encode(HTTPStatus.OK)
        assert encoded[TYPE_KEY] == "enum"
        assert encoded["value"] == 200

    def test_callable_reconstructed_by_name(self):
        """Test that importable callables are re-imported."""
        text = serializer.dumps(json.dumps)
        assert serializer.loads(text, reconstruct=True) is json.dumps
        assert serializer.loads(text)["name"] == "json:dumps"

    def test_ordered_dict_decodes_to_dict(self):
        """Test that mapping subclasses read back as plain dicts."""
        assert serializer.loads(serializer.dumps(OrderedDict(a=1))) == {"a": 1}

    def test_repr_fallback(self):
        """Test that objects without state fall back to their repr."""
        decoded = serializer.loads(serializer.dumps(object()))
        assert decoded["__class__"] == "builtins:object"
        assert decoded["repr"].startswith("<object object")


class TestCircularValues:
    """Tests for cyclic structures."""

    def test_self_referencing_list(self):
        """Test that a list containing itself serializes."""
        value = [1]
        value.append(value)
        assert serializer.loads(serializer.dumps(value)) == [1, CIRCULAR_PLACEHOLDER]

    def test_self_referencing_instance(self):
        """Test that an object pointing at itself serializes."""
        node = Point(1, 2)
        node.x = node
        decoded = serializer.loads(serializer.dumps(node))
        assert decoded["x"] == CIRCULAR_PLACEHOLDER

    def test_shared_value_is_not_circular(self):
        """Test that the same list referenced twice is encoded twice."""
        shared = [1]
        assert serializer.loads(serializer.dumps([shared, shared])) == [[1], [1]]


class TestNormalize:
    """Tests for normalize, the plain-mode image used for comparison."""

    def test_normalize_matches_log_image(self):
        """Test that normalize equals what a log round trip produces."""
        value = {"p": Point(1, 2), "t": (1, 2), "c": Color.RED}
        assert serializer.normalize(value) == serializer.loads(serializer.dumps(value))

    def test_normalize_keeps_primitives(self):
        """Test that primitives normalize to themselves."""
        assert serializer.normalize([1, "a", None, 2.5]) == [1, "a", None, 2.5]


class TestNumpy:
    """Tests for numpy values when numpy is installed."""

    def test_array_plain_and_reconstructed(self):
        """Test that arrays decode to lists or arrays depending on mode."""
        np = pytest.importorskip("numpy")
        arr = np.arange(6, dtype="int32").reshape(2, 3)
        text = serializer.dumps(arr)

        assert serializer.loads(text) == [[0, 1, 2], [3, 4, 5]]
        rebuilt = serializer.loads(text, reconstruct=True)
        assert rebuilt.dtype == np.int32
        assert rebuilt.shape == (2, 3)
        np.testing.assert_array_equal(rebuilt, arr)

    def test_numpy_scalar(self):
        """Test that numpy scalars encode as Python numbers."""
        np = pytest.importorskip("numpy")
        assert serializer.encode(np.float64(1.5)) == 1.5
        assert serializer.encode(np.int64(3)) == 3
