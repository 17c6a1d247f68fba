from typing import TYPE_CHECKING, Optional
import logging

import pymongo
from pymongo.cursor import Cursor, CursorType
from pymongo.errors import ConnectionFailure, PyMongoError
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..errors import DatabaseError

if TYPE_CHECKING:
    from ..settings import MongoSettings, OplogSettings

logger = logging.getLogger(__name__)


def get_client(settings: "MongoSettings") -> pymongo.MongoClient:
    """Create a MongoClient from settings. Caller is responsible for closing it.

    Looking up `pymongo.MongoClient` at call time allows tests to monkeypatch it.
    """
    return pymongo.MongoClient(
        settings.connection_uri,
        connectTimeoutMS=settings.connect_timeout * 1000,
        serverSelectionTimeoutMS=settings.server_selection_timeout * 1000,
    )


def open_oplog_cursor(
    client: pymongo.MongoClient,
    settings: "OplogSettings",
    max_await_time_ms: Optional[int] = None
) -> Cursor:
    """Open a tailable-await, no-timeout cursor over the oplog.

    The oplog collection is looked up first so that connection problems and
    a missing oplog (standalone server) surface here rather than on the
    first read. Connection failures are retried; other errors are not.

    Raises:
        DatabaseError: If the oplog cannot be found or the cursor cannot be opened
    """
    namespace = settings.namespace
    retrying = Retrying(
        stop=stop_after_attempt(settings.open_attempts),
        wait=wait_exponential(multiplier=1, max=settings.max_retry_delay),
        retry=retry_if_exception_type(ConnectionFailure),
        reraise=True
    )

    try:
        for attempt in retrying:
            with attempt:
                db = client[settings.database]
                names = db.list_collection_names(filter={"name": settings.collection})
                if settings.collection not in names:
                    raise DatabaseError(
                        f"Oplog collection {namespace} not found; is the server a replica set member?",
                        namespace=namespace
                    )

                cursor = db[settings.collection].find(
                    cursor_type=CursorType.TAILABLE_AWAIT,
                    no_cursor_timeout=True
                )
                if max_await_time_ms is not None:
                    cursor = cursor.max_await_time_ms(max_await_time_ms)
    except PyMongoError as e:
        logger.error(
            f"Failed to open oplog cursor on {namespace}: {e}",
            extra={"collection": namespace, "error_type": type(e).__name__}
        )
        raise DatabaseError(f"Failed to open oplog cursor: {e}", namespace=namespace) from e

    logger.info(
        f"Opened tailable cursor on {namespace}",
        extra={"collection": namespace, "max_await_time_ms": max_await_time_ms}
    )
    return cursor
