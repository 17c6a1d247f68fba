"""
MongoDB client and cursor helpers.
"""

from .connection import get_client, open_oplog_cursor

__all__ = ["get_client", "open_oplog_cursor"]
