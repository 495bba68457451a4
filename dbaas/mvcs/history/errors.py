"""
Error types for the MVCS versioning core.

- VersioningError: Base exception
- IdentityError: A primary-key component is missing
- IntegrityError: Version chains are inconsistent with the pending commit
- SerializationError: A tracked value cannot be encoded

Invariants:
    - All errors inherit from VersioningError
    - Every error aborts the whole commit; none is retried by this layer
    - Errors carry enough context (code, details) for the caller's retry policy
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class VersioningError(Exception):
    """Base exception for all versioning errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "VERSIONING_ERROR"
        self.details = details or {}


class IdentityError(VersioningError):
    """An identity cannot be derived for an entity.

    Raised when:
    - A primary-key component is absent or None
    - A related entity's type is not registered
    """

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        property_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="IDENTITY_ERROR",
            details={"entity_type": entity_type, "property": property_name},
        )
        self.entity_type = entity_type
        self.property_name = property_name


class IntegrityError(VersioningError):
    """Version history is inconsistent.

    Raised when:
    - More than one active head exists for an identity
    - An update or delete finds no head (or a tombstone) to chain onto
    - A create finds a live head for the same identity
    - A chain link points to a missing version or loops
    - The storage layer rejects a second active head
    """

    def __init__(
        self,
        message: str,
        object_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="INTEGRITY_ERROR",
            details={"object_id": object_id, "entity_type": entity_type, "reason": reason},
        )
        self.object_id = object_id
        self.entity_type = entity_type
        self.reason = reason


class SerializationError(VersioningError):
    """A tracked value cannot be converted to its textual form."""

    def __init__(
        self,
        message: str,
        property_name: Optional[str] = None,
        value_type: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="SERIALIZATION_ERROR",
            details={"property": property_name, "value_type": value_type},
        )
        self.property_name = property_name
        self.value_type = value_type
