"""SQLite plumbing for the durable key-value store

Gemini Mail Review keeps all persistent state (cache table, checkpoints,
settings, salt) in ONE SQLite file holding a single `kv` table. Values are
JSON documents; the store itself offers no cross-key transactions.

Provides:
- Single source of truth for the database path (env-aware)
- Connection creation with WAL + integrity check
- Transaction context manager
- Retry decorator for SQLITE_BUSY contention
"""

from __future__ import annotations

import random
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar

from mailreview import config
from mailreview.observability.logging import get_logger

F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_DB_PATH = Path.home() / ".mailreview" / "mailreview.db"

logger = get_logger(__name__)

KV_SCHEMA = """
    CREATE TABLE IF NOT EXISTS kv (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""


def retry_on_db_lock(
    max_retries: int = config.DB_RETRY_MAX,
    base_delay: float = config.DB_RETRY_BASE_DELAY,
    max_delay: float = config.DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Decorator to retry database operations on SQLITE_BUSY errors

    Two processes (API server and CLI) may touch the same file. This
    decorator implements exponential backoff with jitter to resolve
    transient lock contention.

    Args:
        max_retries: Maximum number of retry attempts (default: 5)
        base_delay: Initial delay in seconds (default: 0.1)
        max_delay: Maximum delay between retries (default: 2.0)

    Side Effects:
        - Sleeps between retries (exponential backoff with jitter)
        - Logs warning messages for each retry attempt
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_error = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except sqlite3.OperationalError as e:
                    last_error = e

                    # Only retry on lock errors
                    if "locked" not in str(e).lower() and "busy" not in str(e).lower():
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            "Database lock retry exhausted after %d attempts: %s",
                            max_retries,
                            e,
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    jitter = random.uniform(0, delay * config.DB_RETRY_JITTER)
                    sleep_time = delay + jitter

                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                        attempt + 1,
                        max_retries,
                        sleep_time,
                        e,
                    )

                    time.sleep(sleep_time)

            raise last_error  # type: ignore[misc]

        return wrapper  # type: ignore[return-value]

    return decorator


def get_db_path() -> Path:
    """
    Get database path (environment-aware)

    Checks MAILREVIEW_DB_PATH first, falls back to ~/.mailreview/mailreview.db.
    """
    if config.DB_PATH:
        return Path(config.DB_PATH)
    return DEFAULT_DB_PATH


def create_connection(db_path: Path) -> sqlite3.Connection:
    """
    Create optimized SQLite connection

    Side Effects:
        - Opens (and creates if missing) the database file
        - Executes PRAGMA statements (journal_mode, synchronous)

    Raises:
        RuntimeError: If database corruption is detected
    """
    conn = sqlite3.connect(
        str(db_path),
        timeout=config.DB_CONNECT_TIMEOUT,
        check_same_thread=False,
    )

    try:
        result = conn.execute("PRAGMA quick_check(1)").fetchone()
        if result[0] != "ok":
            conn.close()
            logger.critical("Database corruption detected: %s", result[0])
            raise RuntimeError(f"Database corruption detected: {result[0]}")
    except sqlite3.DatabaseError as e:
        conn.close()
        logger.critical("Database corruption or error during integrity check: %s", e)
        raise RuntimeError(f"Database corruption detected: {e}") from e

    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def db_transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database transactions

    Automatically commits on success, rolls back on error.

    Side Effects:
        - Commits transaction on success (writes changes to disk)
        - Rolls back transaction on exception
    """
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_database(db_path: Path) -> sqlite3.Connection:
    """
    Initialize database with the kv schema (idempotent)

    Side Effects:
        - Creates parent directory if needed
        - Creates kv table if it doesn't exist

    Returns:
        Open connection to the initialized database
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = create_connection(db_path)
    with db_transaction(conn):
        conn.execute(KV_SCHEMA)
    logger.info("Key-value database initialized at %s", db_path)
    return conn
