"""Store error taxonomy."""
from __future__ import annotations


class StoreError(Exception):
    """Base class for failures talking to the summary/usage store."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StoreTransportError(StoreError):
    """The store was unreachable or rejected the payload. The batch was not applied."""


class StoreSchemaError(StoreError):
    """The target table does not exist on the store. No later batch in the cycle can succeed."""
