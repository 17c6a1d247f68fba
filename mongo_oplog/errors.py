"""
Exceptions raised while tailing and decoding the oplog.
"""

from typing import Optional


class OplogError(Exception):
    """Base exception for oplog errors."""
    pass


class MissingFieldError(OplogError):
    """A required field is absent from a record or holds the wrong type."""

    NOT_PRESENT = "not present"

    def __init__(self, field: str, reason: str = NOT_PRESENT):
        self.field = field
        self.reason = reason
        super().__init__(f"Field '{field}' {reason}")

    @classmethod
    def unexpected_type(cls, field: str, value: object) -> "MissingFieldError":
        return cls(field, f"has unexpected type {type(value).__name__}")


class UnknownOperationError(OplogError):
    """The record's op code is not one the decoder handles."""

    def __init__(self, op: str):
        self.op = op
        super().__init__(f"Unknown operation: {op!r}")


class DatabaseError(OplogError):
    """MongoDB reported a failure opening or reading the oplog cursor.

    The originating ``PyMongoError`` is available as ``__cause__``.
    """

    def __init__(self, message: str, namespace: Optional[str] = None):
        self.namespace = namespace
        super().__init__(message)
