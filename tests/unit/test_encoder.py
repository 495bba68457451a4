"""
Unit tests for the value encoder.
"""

import datetime
import decimal
import enum

import pytest

from dbaas.mvcs.history.encoder import ValueEncoder
from dbaas.mvcs.history.errors import SerializationError


class Status(enum.Enum):
    OPEN = "open"


class TestValueEncoder:
    """Tests for ValueEncoder."""

    @pytest.fixture
    def encoder(self):
        return ValueEncoder()

    def test_none_is_absent(self, encoder):
        """None encodes to None, not 'null'."""
        assert encoder.encode(None) is None

    def test_scalars(self, encoder):
        """Scalars encode as compact JSON."""
        assert encoder.encode(1) == "1"
        assert encoder.encode(1.5) == "1.5"
        assert encoder.encode(True) == "true"
        assert encoder.encode("hi") == '"hi"'

    def test_non_ascii_unescaped_by_default(self, encoder):
        """Non-ASCII text is written as-is."""
        assert encoder.encode("café") == '"café"'
        assert ValueEncoder(ensure_ascii=True).encode("café") == '"caf\\u00e9"'

    def test_mappings_are_key_sorted(self, encoder):
        """Equal mappings encode identically regardless of insertion order."""
        assert encoder.encode({"b": 1, "a": 2}) == encoder.encode({"a": 2, "b": 1})
        assert encoder.encode({"b": 1, "a": 2}) == '{"a":2,"b":1}'

    def test_rich_types(self, encoder):
        """Dates, decimals, enums and bytes have stable encodings."""
        assert encoder.encode(datetime.date(2024, 1, 2)) == '"2024-01-02"'
        assert encoder.encode(decimal.Decimal("1.10")) == '"1.10"'
        assert encoder.encode(Status.OPEN) == '"open"'
        assert encoder.encode(b"\x00\x01") == '"AAE="'
        assert encoder.encode({3, 1, 2}) == "[1,2,3]"

    def test_nan_raises(self, encoder):
        """Non-finite floats cannot be encoded."""
        with pytest.raises(SerializationError) as exc_info:
            encoder.encode(float("nan"), "score")

        assert exc_info.value.property_name == "score"
        assert exc_info.value.code == "SERIALIZATION_ERROR"

    def test_unknown_type_raises(self, encoder):
        """Arbitrary objects cannot be encoded."""
        with pytest.raises(SerializationError, match="'blob'") as exc_info:
            encoder.encode(object(), "blob")

        assert exc_info.value.value_type == "object"

    def test_identities(self, encoder):
        """Identity lists keep their order; empty is '[]'."""
        assert encoder.encode_identities(["2", "1"]) == '["2","1"]'
        assert encoder.encode_identities([]) == "[]"

    def test_deeply_nested_value_raises(self, encoder):
        """Nesting beyond the interpreter's recursion limit cannot be encoded."""
        value = []
        for _ in range(100_000):
            value = [value]

        with pytest.raises(SerializationError) as exc_info:
            encoder.encode(value, "tree")

        assert exc_info.value.property_name == "tree"
