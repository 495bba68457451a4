"""
Value encoder for tracked properties.

Values are stored in versions as JSON text and compared textually, so the
encoding must be deterministic: the same value always yields the same text.

Invariants:
    - None encodes to None (absent), never to the string "null"
    - Collections of identities always encode to a JSON list, "[]" when empty
    - Non-finite floats and unknown types raise SerializationError
"""

from __future__ import annotations

import base64
import dataclasses
import datetime
import decimal
import enum
import json
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .errors import SerializationError


@dataclass(frozen=True)
class ValueEncoder:
    """Explicit serialization configuration passed into the diff engine.

    Attributes:
        sort_keys: Sort mapping keys so equal mappings encode identically
        ensure_ascii: Escape non-ASCII characters
    """

    sort_keys: bool = True
    ensure_ascii: bool = False

    def encode(self, value: Any, property_name: Optional[str] = None) -> Optional[str]:
        """Encode a scalar property value.

        Raises:
            SerializationError: If the value has no JSON representation
        """
        if value is None:
            return None
        try:
            return json.dumps(
                value,
                default=_to_json,
                sort_keys=self.sort_keys,
                ensure_ascii=self.ensure_ascii,
                allow_nan=False,
                separators=(",", ":"),
            )
        except (TypeError, ValueError, RecursionError) as e:
            raise SerializationError(
                f"Cannot serialize property '{property_name}': {e}",
                property_name=property_name,
                value_type=type(value).__name__,
            ) from e

    def encode_identities(self, identities: Iterable[str]) -> str:
        """Encode an ordered list of related identities."""
        return json.dumps(list(identities), ensure_ascii=self.ensure_ascii, separators=(",", ":"))


def _to_json(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (uuid.UUID, decimal.Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
