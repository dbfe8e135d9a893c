"""Exceptions raised by core components."""

from __future__ import annotations


class AuditWriteError(Exception):
    """An audit entry could not be stored. Nothing was written."""

    def __init__(self, message: str, action: str | None = None) -> None:
        super().__init__(message)
        self.action = action
