"""
Identity derivation for versioned entities.

An identity is the string key naming one logical entity across its
lifetime. It is built from the entity's primary-key values in declared
order.

Two encodings are supported:
    joined:          str(v1) + delimiter + str(v2) ...
    length_prefixed: f"{len}:{text}" per component, joined by the delimiter

With the joined encoding, a component whose text contains the delimiter can
make two different key tuples collide, e.g. ("a_b", "c") and ("a", "b_c").
The length-prefixed encoding is unambiguous but produces different keys, so
an existing history must not switch encodings.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from ..schema.types import EntityTypeDef
from .errors import IdentityError


class IdentityEncoding(Enum):
    """How primary-key components are combined into one string."""

    JOINED = "joined"
    LENGTH_PREFIXED = "length_prefixed"


def read_value(instance: Any, name: str) -> Any:
    """Read a property from a mapping or an attribute-style object.

    Returns None when the property is absent.
    """
    if isinstance(instance, Mapping):
        return instance.get(name)
    return getattr(instance, name, None)


class IdentityDeriver:
    """Builds stable identity keys from primary-key values.

    Example:
        >>> deriver = IdentityDeriver()
        >>> deriver.derive_id(OrderLine, {"order_id": 7, "line_no": 2})
        '7_2'
    """

    def __init__(
        self,
        delimiter: str = "_",
        encoding: IdentityEncoding = IdentityEncoding.JOINED,
    ) -> None:
        if not delimiter:
            raise ValueError("Identity delimiter cannot be empty")
        self.delimiter = delimiter
        self.encoding = encoding

    def derive_id(self, entity_type: EntityTypeDef, instance: Any) -> str:
        """Derive the identity of an entity instance.

        Raises:
            IdentityError: If any primary-key component is absent or None
        """
        parts = []
        for key in entity_type.primary_key:
            value = read_value(instance, key)
            if value is None:
                raise IdentityError(
                    f"Primary key component '{key}' of '{entity_type.name}' is missing",
                    entity_type=entity_type.name,
                    property_name=key,
                )
            parts.append(_key_text(value))

        if self.encoding == IdentityEncoding.LENGTH_PREFIXED:
            parts = [f"{len(p)}:{p}" for p in parts]
        return self.delimiter.join(parts)


def _key_text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)
