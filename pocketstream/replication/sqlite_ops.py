"""
SQLite maintenance operations used alongside replication.

- connect(): connection tuned for an externally replicated database
- force_checkpoint(): flush WAL contents into the main database file
- check_integrity(): PRAGMA integrity_check

The replication agent drives checkpoints itself, so automatic checkpoints are
turned off on our connections (wal_autocheckpoint = 0).
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_REPLICATION_PRAGMAS = (
    "PRAGMA synchronous = NORMAL",
    "PRAGMA wal_autocheckpoint = 0",
)


@dataclass(frozen=True)
class CheckpointResult:
    """Row returned by PRAGMA wal_checkpoint.

    Attributes:
        busy: 1 if the checkpoint could not complete because of a lock
        log_frames: Frames in the WAL
        checkpointed_frames: Frames moved into the database
    """

    busy: int
    log_frames: int
    checkpointed_frames: int


def connect(db_path: str | Path, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """Open a connection with replication-friendly pragmas.

    Pragma failures are logged and do not prevent the connection from being
    returned.
    """
    conn = sqlite3.connect(str(db_path), timeout=busy_timeout_ms / 1000)
    for pragma in (f"PRAGMA busy_timeout = {int(busy_timeout_ms)}", *_REPLICATION_PRAGMAS):
        try:
            conn.execute(pragma)
        except sqlite3.Error as e:
            logger.warning(f"Failed to apply '{pragma}': {e}")
    return conn


def force_checkpoint(db_path: str | Path, busy_timeout_ms: int = 5000) -> CheckpointResult | None:
    """Force a WAL checkpoint.

    Returns:
        CheckpointResult, or None when the database file does not exist yet.

    Raises:
        sqlite3.Error: If the checkpoint statement fails.
    """
    if not Path(db_path).exists():
        return None

    conn = connect(db_path, busy_timeout_ms)
    try:
        row = conn.execute("PRAGMA wal_checkpoint").fetchone()
    finally:
        conn.close()

    return CheckpointResult(busy=row[0], log_frames=row[1], checkpointed_frames=row[2])


def check_integrity(db_path: str | Path) -> None:
    """Verify database integrity.

    Raises:
        ValueError: If the check does not report ok.
        sqlite3.Error: If the check cannot run.
    """
    conn = sqlite3.connect(str(db_path))
    try:
        result = conn.execute("PRAGMA integrity_check").fetchone()[0]
    finally:
        conn.close()

    if result != "ok":
        raise ValueError(f"Database integrity check failed: {result}")
    logger.info("Database integrity check passed")
