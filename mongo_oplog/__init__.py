"""
Typed streaming view over the MongoDB replication oplog.

This package provides functionality to:
- Tail ``local.oplog.rs`` with a tailable-await cursor
- Decode raw oplog entries into typed operations
"""
from .errors import OplogError, MissingFieldError, UnknownOperationError, DatabaseError
from .operation import Operation, Kind, OperationType, OplogTime, decode
from .tailer import Oplog, TailConfig

__all__ = [
    "Oplog",
    "TailConfig",
    "Operation",
    "Kind",
    "OperationType",
    "OplogTime",
    "decode",
    "OplogError",
    "MissingFieldError",
    "UnknownOperationError",
    "DatabaseError",
]
