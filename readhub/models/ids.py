"""Typed identifiers shared by users, books and subscriptions."""
from __future__ import annotations

import uuid

from readhub.core.exceptions import ValidationError


def new_identifier() -> str:
    return str(uuid.uuid4())


def parse_identifier(value: object, field: str = "id") -> str:
    """Normalize a UUID identifier or raise ``ValidationError``.

    Accepts hyphenated or bare-hex forms and always returns the canonical
    lowercase hyphenated string stored in the database.
    """
    if isinstance(value, uuid.UUID):
        return str(value)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError as exc:
        raise ValidationError(f"{field} is not a valid identifier", field=field) from exc
