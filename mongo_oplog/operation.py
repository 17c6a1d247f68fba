"""
Decoding of raw oplog entries into typed operations.

An oplog entry is a loosely typed BSON document whose shape depends on its
``op`` code. ``Operation.from_document`` validates the fields it needs and
returns an immutable ``Operation`` that shares (never copies) the payload
sub-document of the entry it came from.

Only no-ops (``"n"``) and inserts (``"i"``) are decoded. Updates, deletes,
commands and database operations have a ``Kind`` but are rejected with
``UnknownOperationError`` when they appear in the oplog.

Example:
    >>> operation = Operation.from_document(entry)
    >>> operation.kind.type is OperationType.INSERT
    True
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from bson.timestamp import Timestamp

from .errors import MissingFieldError, UnknownOperationError
from .utils.bson_convert import bson_safe

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class OperationType(str, Enum):
    """Oplog operation codes."""
    INSERT = "i"
    UPDATE = "u"
    DELETE = "d"
    COMMAND = "c"
    DATABASE = "db"
    NOOP = "n"


@dataclass(frozen=True)
class Kind:
    """
    Category of an oplog operation.

    ``namespace`` is only set for inserts, where it is the ``ns`` string of
    the entry the operation was decoded from.
    """
    type: OperationType
    namespace: Optional[str] = None

    @classmethod
    def insert(cls, namespace: str) -> "Kind":
        return cls(OperationType.INSERT, namespace)

    @classmethod
    def update(cls) -> "Kind":
        return cls(OperationType.UPDATE)

    @classmethod
    def delete(cls) -> "Kind":
        return cls(OperationType.DELETE)

    @classmethod
    def command(cls) -> "Kind":
        return cls(OperationType.COMMAND)

    @classmethod
    def database(cls) -> "Kind":
        return cls(OperationType.DATABASE)

    @classmethod
    def noop(cls) -> "Kind":
        return cls(OperationType.NOOP)


@dataclass(frozen=True)
class OplogTime:
    """
    Wall-clock time of an oplog entry.

    ``nanoseconds`` is derived from the ordinal counter in the low word of
    the BSON timestamp, scaled by 1,000,000 and truncated to 32 bits. The
    counter orders entries within a second; it is not a sub-second value,
    so ``nanoseconds`` can exceed one second. Kept as-is for compatibility
    with existing consumers.
    """
    seconds: int
    nanoseconds: int

    @classmethod
    def from_raw(cls, raw: int) -> "OplogTime":
        """Decode a packed 64-bit timestamp (seconds high, ordinal low)."""
        raw &= 0xFFFFFFFFFFFFFFFF
        if raw > INT64_MAX:
            raw -= 1 << 64
        seconds = raw >> 32
        nanoseconds = ((raw & 0xFFFFFFFF) * 1_000_000) & 0xFFFFFFFF
        return cls(seconds=seconds, nanoseconds=nanoseconds)

    @classmethod
    def from_timestamp(cls, timestamp: Timestamp) -> "OplogTime":
        return cls.from_raw((timestamp.time << 32) | timestamp.inc)

    def to_datetime(self) -> datetime:
        """Aware UTC datetime, truncated to microsecond precision."""
        return _EPOCH + timedelta(
            seconds=self.seconds,
            microseconds=self.nanoseconds // 1000
        )


@dataclass(frozen=True)
class Operation:
    """A single decoded oplog entry."""
    id: int
    timestamp: OplogTime
    document: Mapping[str, Any]
    kind: Kind

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Operation":
        """
        Decode a raw oplog entry.

        Args:
            document: Oplog entry as returned by the cursor

        Returns:
            Decoded operation

        Raises:
            MissingFieldError: If a required field is absent or mistyped
            UnknownOperationError: If ``op`` is not ``"n"`` or ``"i"``
        """
        op = _get_str(document, "op")

        if op == OperationType.NOOP.value:
            kind = Kind.noop()
        elif op == OperationType.INSERT.value:
            kind = Kind.insert(_get_str(document, "ns"))
        else:
            raise UnknownOperationError(op)

        return cls._with_kind(document, kind)

    @classmethod
    def _with_kind(cls, document: Mapping[str, Any], kind: Kind) -> "Operation":
        return cls(
            id=_get_int64(document, "h"),
            timestamp=OplogTime.from_timestamp(_get_timestamp(document, "ts")),
            document=_get_document(document, "o"),
            kind=kind,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable representation."""
        return {
            "id": self.id,
            "timestamp": bson_safe(self.timestamp.to_datetime()),
            "op": self.kind.type.value,
            "namespace": self.kind.namespace,
            "document": bson_safe(self.document),
        }


def decode(document: Mapping[str, Any]) -> Operation:
    """Decode a raw oplog entry. See ``Operation.from_document``."""
    return Operation.from_document(document)


def _get(document: Mapping[str, Any], field: str) -> Any:
    try:
        return document[field]
    except KeyError:
        raise MissingFieldError(field) from None


def _get_str(document: Mapping[str, Any], field: str) -> str:
    value = _get(document, field)
    if not isinstance(value, str):
        raise MissingFieldError.unexpected_type(field, value)
    return value


def _get_int64(document: Mapping[str, Any], field: str) -> int:
    value = _get(document, field)
    # bool is an int subclass but a distinct BSON type
    if isinstance(value, bool) or not isinstance(value, int):
        raise MissingFieldError.unexpected_type(field, value)
    if not INT64_MIN <= value <= INT64_MAX:
        raise MissingFieldError(field, "is out of int64 range")
    return int(value)


def _get_timestamp(document: Mapping[str, Any], field: str) -> Timestamp:
    value = _get(document, field)
    if not isinstance(value, Timestamp):
        raise MissingFieldError.unexpected_type(field, value)
    return value


def _get_document(document: Mapping[str, Any], field: str) -> Mapping[str, Any]:
    value = _get(document, field)
    if not isinstance(value, Mapping):
        raise MissingFieldError.unexpected_type(field, value)
    return value
