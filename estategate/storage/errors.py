from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """A write was refused by a storage constraint."""

    status_code = 409

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class DuplicateRecord(ConstraintViolation):
    """Unique key already taken (user email, token value, community id)."""


class MissingReference(ConstraintViolation):
    """Write points at a user or community that does not exist."""

    status_code = 404


__all__ = ["ConstraintViolation", "DuplicateRecord", "MissingReference"]
