"""
BSON to JSON-serializable converter utility.

Converts oplog payload values to JSON-serializable Python types.
"""

from bson import ObjectId, Decimal128
from bson.timestamp import Timestamp
from datetime import datetime
import base64
from typing import Any


def bson_safe(value: Any) -> Any:
    """
    Recursively convert an oplog payload value to JSON-serializable types.
    
    ObjectId and Decimal128 become strings, datetimes ISO strings, oplog
    Timestamps {"t": seconds, "i": ordinal}, binary data base64. Nested
    documents and arrays are copied recursively; tuples become lists.
    
    Example:
        >>> bson_safe({"_id": ObjectId("583050b26813716e505a5bf2")})
        {'_id': '583050b26813716e505a5bf2'}
    """
    if value is None:
        return None
    
    if isinstance(value, ObjectId):
        return str(value)
    
    if isinstance(value, datetime):
        return value.isoformat()
    
    if isinstance(value, Decimal128):
        return str(value)
    
    if isinstance(value, Timestamp):
        return {"t": value.time, "i": value.inc}
    
    if isinstance(value, bytes):
        return base64.b64encode(value).decode('ascii')
    
    if isinstance(value, dict) or hasattr(value, 'items'):
        return {k: bson_safe(v) for k, v in value.items()}
    
    if isinstance(value, (list, tuple)):
        return [bson_safe(v) for v in value]
    
    return value
