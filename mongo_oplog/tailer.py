"""
Tail the MongoDB oplog.

``Oplog`` wraps a tailable-await cursor over ``local.oplog.rs`` and yields
raw oplog entries as they are written. Empty reads while the server waits
for new entries are absorbed. A fetch error that closes the cursor (pymongo
does this for connection failures and most server errors) raises
``DatabaseError`` at once. Errors that leave the cursor alive, such as
``ExecutionTimeout``, are retried with exponential backoff and surface as
``DatabaseError`` once ``max_retries`` consecutive attempts have failed.

The oplog has no natural end. If the cursor dies without an error (it was
closed, or the server killed it) iteration simply stops and
``Oplog.exhausted`` is set.
"""

from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional, Protocol, TYPE_CHECKING
import logging
import time

import pymongo
from pymongo.errors import PyMongoError
from prometheus_client import Counter

from .errors import DatabaseError, MissingFieldError, UnknownOperationError
from .mongodb.connection import open_oplog_cursor
from .operation import Operation

if TYPE_CHECKING:
    from .settings import OplogSettings

logger = logging.getLogger(__name__)

# Prometheus metrics
oplog_documents_total = Counter(
    'mongo_oplog_documents_total',
    'Total oplog entries read',
    ['collection']
)

oplog_empty_reads_total = Counter(
    'mongo_oplog_empty_reads_total',
    'Reads that returned no entry while awaiting data',
    ['collection']
)

oplog_fetch_errors_total = Counter(
    'mongo_oplog_fetch_errors_total',
    'Errors raised while fetching oplog entries',
    ['collection', 'error_type']
)

oplog_decode_errors_total = Counter(
    'mongo_oplog_decode_errors_total',
    'Oplog entries that could not be decoded',
    ['collection', 'error_type']
)


class DocumentSource(Protocol):
    """What ``Oplog`` needs from a cursor. ``pymongo.cursor.Cursor`` fits."""

    @property
    def alive(self) -> bool: ...

    def next(self) -> Mapping[str, Any]: ...


@dataclass
class TailConfig:
    """Configuration for the oplog tailer."""
    max_retries: Optional[int] = 5  # Consecutive fetch errors tolerated; None = retry forever
    retry_backoff_base: float = 2  # Exponential backoff: base^attempt seconds
    max_retry_delay: float = 60  # Max 60 seconds between retries
    max_await_time_ms: Optional[int] = 1000  # Server-side wait for new entries

    def __post_init__(self):
        """Validate configuration values."""
        if self.max_retries is not None and self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.retry_backoff_base <= 0:
            raise ValueError("retry_backoff_base must be positive")
        if self.max_retry_delay <= 0:
            raise ValueError("max_retry_delay must be positive")
        if self.max_await_time_ms is not None and self.max_await_time_ms <= 0:
            raise ValueError("max_await_time_ms must be positive")


class Oplog:
    """
    Iterator over raw oplog entries.

    Thread Safety: NOT thread-safe. The instance owns its cursor; use one
    per thread.

    Example:
        >>> with Oplog.open(client) as oplog:
        ...     for operation in oplog.operations(ignore_errors=True):
        ...         handle(operation)
    """

    def __init__(
        self,
        cursor: DocumentSource,
        config: Optional[TailConfig] = None,
        namespace: str = "local.oplog.rs"
    ):
        """
        Args:
            cursor: Open tailable-await cursor over the oplog
            config: Retry configuration
            namespace: Oplog namespace, used for logs and metric labels
        """
        self.cursor = cursor
        self.config = config or TailConfig()
        self.namespace = namespace
        self.exhausted = False
        self._attempt = 0

    @classmethod
    def open(
        cls,
        client: pymongo.MongoClient,
        settings: Optional["OplogSettings"] = None
    ) -> "Oplog":
        """
        Open a tailable cursor over the oplog of the given client.

        Raises:
            DatabaseError: If the cursor cannot be opened
        """
        if settings is None:
            from .settings import get_settings
            settings = get_settings().oplog

        config = settings.tail_config()
        cursor = open_oplog_cursor(client, settings, config.max_await_time_ms)
        return cls(cursor, config=config, namespace=settings.namespace)

    def __iter__(self) -> Iterator[Mapping[str, Any]]:
        return self

    def __next__(self) -> Mapping[str, Any]:
        """
        Block until the next oplog entry is available.

        Raises:
            StopIteration: If the cursor is no longer alive
            DatabaseError: If a fetch error killed the cursor, or fetching
                failed more than ``max_retries`` times in a row
        """
        while not self.exhausted:
            try:
                document = self.cursor.next()
            except StopIteration:
                if self.cursor.alive:
                    oplog_empty_reads_total.labels(collection=self.namespace).inc()
                    continue
                self._mark_exhausted()
                break
            except PyMongoError as e:
                if not self.cursor.alive:
                    self._raise_cursor_killed(e)
                self._handle_error(e)
                continue

            self._attempt = 0
            oplog_documents_total.labels(collection=self.namespace).inc()
            return document

        raise StopIteration

    next = __next__

    def operations(self, ignore_errors: bool = False) -> Iterator[Operation]:
        """
        Yield decoded operations.

        Args:
            ignore_errors: Log and skip entries that cannot be decoded
                instead of raising

        Raises:
            MissingFieldError: On a malformed entry, unless ignore_errors
            UnknownOperationError: On an undecodable op code, unless ignore_errors
        """
        for document in self:
            try:
                yield Operation.from_document(document)
            except (MissingFieldError, UnknownOperationError) as e:
                oplog_decode_errors_total.labels(
                    collection=self.namespace,
                    error_type=type(e).__name__
                ).inc()
                if not ignore_errors:
                    raise
                logger.debug(
                    f"Skipping undecodable oplog entry: {e}",
                    extra={"collection": self.namespace, "error_type": type(e).__name__}
                )

    def close(self) -> None:
        """Close the underlying cursor."""
        close = getattr(self.cursor, "close", None)
        if close is not None:
            close()
        self.exhausted = True

    def __enter__(self) -> "Oplog":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _mark_exhausted(self) -> None:
        self.exhausted = True
        logger.warning(
            f"Oplog cursor on {self.namespace} is no longer alive, stopping",
            extra={"collection": self.namespace}
        )

    def _raise_cursor_killed(self, error: PyMongoError) -> None:
        """Fail on a fetch error that closed the cursor.

        pymongo closes the cursor on connection failures and most server
        errors, so there is nothing left to retry against.
        """
        self.exhausted = True
        oplog_fetch_errors_total.labels(
            collection=self.namespace,
            error_type=type(error).__name__
        ).inc()
        logger.error(
            f"Oplog cursor on {self.namespace} was closed by a fetch error: {error}",
            extra={"collection": self.namespace, "error_type": type(error).__name__}
        )
        raise DatabaseError(
            f"Oplog cursor closed by fetch error: {error}",
            namespace=self.namespace
        ) from error

    def _handle_error(self, error: PyMongoError) -> None:
        """
        Back off after a fetch error that left the cursor alive.

        Raises:
            DatabaseError: If max retries exceeded
        """
        self._attempt += 1
        oplog_fetch_errors_total.labels(
            collection=self.namespace,
            error_type=type(error).__name__
        ).inc()

        max_retries = self.config.max_retries
        if max_retries is not None and self._attempt > max_retries:
            logger.error(
                f"Max retries exceeded reading {self.namespace}",
                extra={
                    "collection": self.namespace,
                    "attempt": self._attempt,
                    "error": str(error)
                }
            )
            attempts = self._attempt
            self._attempt = 0
            raise DatabaseError(
                f"Max retries exceeded after {attempts} attempts: {error}",
                namespace=self.namespace
            ) from error

        delay = min(
            self.config.retry_backoff_base ** self._attempt,
            self.config.max_retry_delay
        )

        logger.warning(
            f"Error reading oplog, retrying in {delay}s (attempt {self._attempt}/{max_retries})",
            extra={
                "collection": self.namespace,
                "attempt": self._attempt,
                "max_retries": max_retries,
                "delay_seconds": delay,
                "error": str(error),
                "error_type": type(error).__name__
            }
        )

        time.sleep(delay)
