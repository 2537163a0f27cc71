"""Task identifier generation."""

from __future__ import annotations

import uuid

from .exceptions import IdentifierError


def generate_uuid() -> str:
    """Return a random (version 4) UUID as a string.

    Raises:
        IdentifierError: If the operating system cannot supply random bytes.
    """
    try:
        return str(uuid.uuid4())
    except (NotImplementedError, OSError) as exc:
        raise IdentifierError(f"Unable to generate task identifier: {exc}") from exc


__all__ = ["generate_uuid"]
