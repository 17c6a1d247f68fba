"""
Utility functions shared by the decoder and tailer.
"""

from .bson_convert import bson_safe
from .logging import JSONFormatter, get_logger

__all__ = ["bson_safe", "JSONFormatter", "get_logger"]
