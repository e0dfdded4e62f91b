"""
Repository pattern for data access.

UsageLedger keeps one aggregate record per (provider, calendar day) and
applies usage deltas as atomic create-or-increment upserts.
"""

import logging
import math
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterator, Optional

from ..core.access import AccessPolicy, Action, AllowAll
from ..core.errors import AccessDenied, InvalidInput, InvalidRange, StorageUnavailable
from ..core.pricing import quantize_cost
from .db import DEFAULT_BUSY_TIMEOUT, DEFAULT_DB_PATH, get_connection, write_transaction
from .models import UsageRecord, cost_to_micros

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 90

# Largest value a SQLite INTEGER column can hold
MAX_INTEGER = 2 ** 63 - 1

_COLUMNS = (
    "id, provider, date, request_count, token_count, "
    "estimated_cost_micros, last_updated"
)

_UPSERT = """
    INSERT INTO api_usage_tracking
    (id, provider, date, request_count, token_count,
     estimated_cost_micros, last_updated)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(provider, date) DO UPDATE SET
        request_count = request_count + excluded.request_count,
        token_count = token_count + excluded.token_count,
        estimated_cost_micros = estimated_cost_micros + excluded.estimated_cost_micros,
        last_updated = excluded.last_updated
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate sqlite3 failures into ledger errors."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise InvalidInput(f"{operation} rejected by schema: {e}") from e
    except sqlite3.ProgrammingError:
        raise
    except sqlite3.DatabaseError as e:
        logger.warning("%s failed: %s", operation, e)
        raise StorageUnavailable(f"{operation} failed: {e}") from e


def initialize_schema(
    db_path: str = DEFAULT_DB_PATH,
    timeout: float = DEFAULT_BUSY_TIMEOUT
) -> None:
    """Create the api_usage_tracking table, its indexes and triggers.

    Safe to run repeatedly. Cost is stored as an integer number of
    millionths so that sums stay exact.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait for a competing writer

    Raises:
        StorageUnavailable: If the database cannot be opened or written
    """
    with _storage_errors("initialize schema"), write_transaction(db_path, timeout) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS api_usage_tracking (
                id TEXT PRIMARY KEY,
                provider TEXT NOT NULL CHECK (length(trim(provider)) > 0),
                date TEXT NOT NULL,
                request_count INTEGER NOT NULL DEFAULT 0 CHECK (request_count >= 0),
                token_count INTEGER NOT NULL DEFAULT 0 CHECK (token_count >= 0),
                estimated_cost_micros INTEGER NOT NULL DEFAULT 0
                    CHECK (estimated_cost_micros >= 0),
                last_updated TEXT NOT NULL,
                UNIQUE (provider, date)
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_api_usage_provider_date
            ON api_usage_tracking (provider, date)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_api_usage_date
            ON api_usage_tracking (date DESC)
        """)
        conn.execute("""
            CREATE TRIGGER IF NOT EXISTS api_usage_tracking_immutable_key
            BEFORE UPDATE OF id, provider, date ON api_usage_tracking
            FOR EACH ROW
            WHEN NEW.id IS NOT OLD.id
                OR NEW.provider IS NOT OLD.provider
                OR NEW.date IS NOT OLD.date
            BEGIN
                SELECT RAISE(ABORT, 'id, provider and date are immutable');
            END
        """)
        conn.execute("""
            CREATE TRIGGER IF NOT EXISTS api_usage_tracking_monotonic
            BEFORE UPDATE OF request_count, token_count, estimated_cost_micros
            ON api_usage_tracking
            FOR EACH ROW
            WHEN NEW.request_count < OLD.request_count
                OR NEW.token_count < OLD.token_count
                OR NEW.estimated_cost_micros < OLD.estimated_cost_micros
            BEGIN
                SELECT RAISE(ABORT, 'usage counters cannot decrease');
            END
        """)
        # last_updated is owned by record_usage(); older schemas stamped it here
        conn.execute("DROP TRIGGER IF EXISTS update_api_usage_tracking_timestamp")
    logger.info("Usage ledger schema ready at %s", db_path)


def _validate_provider(provider) -> str:
    if not isinstance(provider, str) or not provider.strip():
        raise InvalidInput("provider is required and cannot be empty")
    return provider


def _validate_date(value, name: str) -> date:
    if isinstance(value, datetime) or not isinstance(value, date):
        raise InvalidInput(f"{name} must be a calendar date, got {value!r}")
    return value


def _validate_count(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise InvalidInput(f"{name} must be >= 0, got {value}")
    if value > MAX_INTEGER:
        raise InvalidInput(f"{name} is too large: {value}")
    return value


def _coerce_cost(value) -> Decimal:
    if isinstance(value, bool):
        raise InvalidInput(f"cost_delta must be a number, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidInput(f"cost_delta must be finite, got {value!r}")
    try:
        cost = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidInput(f"cost_delta must be a number, got {value!r}") from e
    if not cost.is_finite():
        raise InvalidInput(f"cost_delta must be finite, got {value!r}")
    if cost < 0:
        raise InvalidInput(f"cost_delta must be >= 0, got {value}")
    cost = quantize_cost(cost)
    if cost_to_micros(cost) > MAX_INTEGER:
        raise InvalidInput(f"cost_delta is too large: {value}")
    return cost


class UsageQuery:
    """Lazy, restartable result of UsageLedger.query_usage().

    Nothing is read until iteration starts. Each iteration runs the query
    again on a fresh connection, newest date first, then by provider.
    """

    def __init__(self, ledger: "UsageLedger", provider: Optional[str],
                 from_date: date, to_date: date):
        self.ledger = ledger
        self.provider = provider
        self.from_date = from_date
        self.to_date = to_date

    def __iter__(self) -> Iterator[UsageRecord]:
        query = f"SELECT {_COLUMNS} FROM api_usage_tracking WHERE date >= ? AND date <= ?"
        params = [self.from_date.isoformat(), self.to_date.isoformat()]
        if self.provider is not None:
            query += " AND provider = ?"
            params.append(self.provider)
        query += " ORDER BY date DESC, provider ASC"

        with _storage_errors("query usage"):
            conn = get_connection(self.ledger.db_path, self.ledger.busy_timeout)
            try:
                for row in conn.execute(query, params):
                    yield UsageRecord.from_row(row)
            finally:
                conn.close()

    def __repr__(self) -> str:
        return (
            f"UsageQuery(provider={self.provider!r}, "
            f"from_date={self.from_date}, to_date={self.to_date})"
        )


class UsageLedger:
    """Per-provider, per-day API usage aggregates backed by SQLite.

    Every operation opens its own connection, so one instance can be shared
    by any number of threads. Concurrent record_usage() calls for the same
    key serialize on the database write lock and never lose an increment.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        policy: Optional[AccessPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        create_schema: bool = True
    ):
        """Initialize the ledger.

        Args:
            db_path: Path to SQLite database file
            busy_timeout: Seconds to wait for the write lock before failing
            retention_days: Default horizon for prune_older_than()
            policy: Access policy consulted before every operation
            clock: Returns the current UTC time; used for last_updated and
                for "today"
            create_schema: Create the table and indexes if missing

        Raises:
            StorageUnavailable: If the schema cannot be created
        """
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self.retention_days = _validate_retention(retention_days)
        self.policy = policy or AllowAll()
        self._clock = clock or _utcnow
        if create_schema:
            initialize_schema(db_path, busy_timeout)

    @classmethod
    def from_config(cls, config, **kwargs) -> "UsageLedger":
        """Build a ledger from a LedgerConfig."""
        return cls(
            db_path=config.db_path,
            busy_timeout=config.busy_timeout,
            retention_days=config.retention_days,
            **kwargs
        )

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().date()

    def _authorize(self, action: Action, provider: Optional[str]) -> None:
        if not self.policy.allows(action, provider):
            raise AccessDenied(
                f"{action.value} denied for provider {provider!r}",
                action=action,
                provider=provider
            )

    def record_usage(
        self,
        provider: str,
        date: Optional[date] = None,
        request_delta: int = 0,
        token_delta: int = 0,
        cost_delta=Decimal("0")
    ) -> UsageRecord:
        """Add a usage delta to the (provider, date) aggregate.

        Creates the record on the first event for a key. The insert and the
        increment happen in one statement inside one transaction, so the
        call applies fully or not at all.

        Args:
            provider: API provider name, e.g. "openai"
            date: Usage day; defaults to today (UTC)
            request_delta: Requests to add
            token_delta: Tokens to add
            cost_delta: Estimated USD cost to add, kept to 6 decimal places

        Returns:
            The record as stored after this call

        Raises:
            InvalidInput: If provider is empty or any delta is invalid
            AccessDenied: If the access policy refuses the write
            StorageUnavailable: If the database cannot be reached
        """
        provider = _validate_provider(provider)
        usage_date = self.today() if date is None else _validate_date(date, "date")
        request_delta = _validate_count(request_delta, "request_delta")
        token_delta = _validate_count(token_delta, "token_delta")
        cost = _coerce_cost(cost_delta)
        self._authorize(Action.UPSERT, provider)

        with _storage_errors("record usage"), \
                write_transaction(self.db_path, self.busy_timeout) as conn:
            # Read the clock only once the write lock is held, so commit order
            # and last_updated order agree
            params = (
                str(uuid.uuid4()),
                provider,
                usage_date.isoformat(),
                request_delta,
                token_delta,
                cost_to_micros(cost),
                self.now().isoformat(),
            )
            conn.execute(_UPSERT, params)
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM api_usage_tracking WHERE provider = ? AND date = ?",
                (provider, usage_date.isoformat())
            ).fetchone()

        record = UsageRecord.from_row(row)
        logger.debug(
            "Recorded usage for %s on %s: +%d requests, +%d tokens, +%s cost",
            provider, usage_date, request_delta, token_delta, cost
        )
        return record

    def get_record(self, provider: str, date: date) -> Optional[UsageRecord]:
        """Look up the aggregate for one (provider, date), or None."""
        provider = _validate_provider(provider)
        usage_date = _validate_date(date, "date")
        self._authorize(Action.READ, provider)

        with _storage_errors("get record"):
            conn = get_connection(self.db_path, self.busy_timeout)
            try:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM api_usage_tracking WHERE provider = ? AND date = ?",
                    (provider, usage_date.isoformat())
                ).fetchone()
            finally:
                conn.close()
        return UsageRecord.from_row(row) if row else None

    def query_usage(
        self,
        provider: Optional[str],
        from_date: date,
        to_date: date
    ) -> UsageQuery:
        """Query aggregates in an inclusive date range.

        Args:
            provider: Optional provider filter; None matches every provider
            from_date: First day of the range
            to_date: Last day of the range

        Returns:
            A lazy, restartable iterable of records ordered by date
            descending, then provider ascending

        Raises:
            InvalidRange: If from_date is after to_date
            InvalidInput: If provider is given but empty
            AccessDenied: If the access policy refuses the read
        """
        if provider is not None:
            provider = _validate_provider(provider)
        from_date = _validate_date(from_date, "from_date")
        to_date = _validate_date(to_date, "to_date")
        if from_date > to_date:
            raise InvalidRange(from_date, to_date)
        self._authorize(Action.READ, provider)
        return UsageQuery(self, provider, from_date, to_date)

    def prune_older_than(self, retention_days: Optional[int] = None) -> int:
        """Delete records dated before today minus retention_days.

        Deletion is irreversible; archive first if history matters. Running
        it again with no new old data removes nothing.

        Args:
            retention_days: Horizon in days; defaults to the ledger's setting

        Returns:
            Number of records removed

        Raises:
            InvalidInput: If retention_days is not a positive integer
            AccessDenied: If the access policy refuses the delete
            StorageUnavailable: If the database cannot be reached
        """
        if retention_days is None:
            retention_days = self.retention_days
        retention_days = _validate_retention(retention_days)
        self._authorize(Action.DELETE, None)

        cutoff = self.today() - timedelta(days=retention_days)
        with _storage_errors("prune usage"), \
                write_transaction(self.db_path, self.busy_timeout) as conn:
            cursor = conn.execute(
                "DELETE FROM api_usage_tracking WHERE date < ?",
                (cutoff.isoformat(),)
            )
            removed = cursor.rowcount

        logger.info("Pruned %d usage records dated before %s", removed, cutoff)
        return removed


def _validate_retention(retention_days) -> int:
    if isinstance(retention_days, bool) or not isinstance(retention_days, int):
        raise InvalidInput(f"retention_days must be an integer, got {retention_days!r}")
    if retention_days <= 0:
        raise InvalidInput(f"retention_days must be > 0, got {retention_days}")
    return retention_days
