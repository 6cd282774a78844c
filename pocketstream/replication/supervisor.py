"""
SQLite replication supervisor.

The ReplicationSupervisor keeps the application database durable:

1. ConfigSynthesized - write the agent's config file if absent
2. Restoring         - if the database file is missing, restore it from the
                       replica target (failure is a warning; start fresh)
3. IntegrityChecked  - optional PRAGMA integrity_check (failure is a warning)
4. Replicating       - start `replicate` as a background process (fatal on failure)
5. Steady state      - periodic checkpoint task and periodic health task

ReplicationHealth is the only state shared with the request path. It is
written by the health task and by on-demand checks from the write gate, and
read by any request handler.

Invariants:
    - Restore (when needed) completes or fails before replication starts
    - An existing agent config file is never overwritten
    - Health is "ok" only if the status output contains "ok" and no "error"
    - Degraded failures (restore, integrity, checkpoint) are never raised
      from prepare() or the periodic tasks

How to change safely:
    - The health check is a substring scan of the agent's text output; keep it
      bounded by health_timeout_seconds
    - Background tasks have no cancellation; tests that call start() should
      use long intervals so the worker threads stay parked
"""

from __future__ import annotations

import logging
import shlex
import sqlite3
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import NoReturn

from ..config import LitestreamConfig
from ..errors import CommandError, ReplicationError
from ..process import BackgroundProcess, ProcessController
from . import sqlite_ops
from .litestream_config import ConfigSynthesizer
from .scheduler import ScheduledTask

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthSnapshot:
    """Point-in-time view of replication health.

    Attributes:
        healthy: Whether the last check passed
        last_checked_at: When the last check ran (None if never)
        reason: Explanation of the last result
    """

    healthy: bool
    last_checked_at: datetime | None
    reason: str

    def to_dict(self) -> dict:
        return {
            "healthy": self.healthy,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "reason": self.reason,
        }


class ReplicationHealth:
    """Process-wide replication health flag, safe for concurrent access."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot = HealthSnapshot(
            healthy=False, last_checked_at=None, reason="not checked yet"
        )

    def mark(self, healthy: bool, reason: str, now: datetime | None = None) -> HealthSnapshot:
        snapshot = HealthSnapshot(
            healthy=healthy,
            last_checked_at=now or datetime.now(timezone.utc),
            reason=reason,
        )
        with self._lock:
            self._snapshot = snapshot
        return snapshot

    def snapshot(self) -> HealthSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def healthy(self) -> bool:
        return self.snapshot().healthy


def status_is_healthy(output: str) -> bool:
    """Interpret `db list` output: no "error" anywhere and an explicit "ok"."""
    return "error" not in output and "ok" in output


class ReplicationSupervisor:
    """Restore, replicate and monitor one SQLite database.

    Attributes:
        config: Replication configuration
        controller: Process controller for agent commands
        health: Shared replication health state
        synthesizer: Agent config writer
        replicator: Background replicate process once started
        checkpoint_task: Periodic checkpoint task once started
        health_task: Periodic health task once started

    Example:
        >>> supervisor = ReplicationSupervisor(config.litestream, ProcessController())
        >>> supervisor.prepare()
        >>> supervisor.start()
        >>> supervisor.check_health()
        True
    """

    def __init__(
        self,
        config: LitestreamConfig,
        controller: ProcessController,
        health: ReplicationHealth | None = None,
        synthesizer: ConfigSynthesizer | None = None,
    ) -> None:
        self.config = config
        self.controller = controller
        self.health = health or ReplicationHealth()
        self.synthesizer = synthesizer or ConfigSynthesizer(config)
        self.db_path = Path(config.db_path)
        self.config_path = Path(config.config_path)

        self.replicator: BackgroundProcess | None = None
        self.checkpoint_task: ScheduledTask | None = None
        self.health_task: ScheduledTask | None = None

    def prepare(self) -> None:
        """Write config, restore a missing database and check integrity.

        Raises:
            ReplicationError: If the agent config cannot be written.
        """
        self.ensure_config()
        self.restore_if_missing()
        if self.config.integrity_check:
            self.check_integrity()

    def ensure_config(self) -> bool:
        """Write the agent config if absent; True if it was written."""
        try:
            return self.synthesizer.ensure_written()
        except OSError as e:
            raise ReplicationError(f"Failed to write replication config: {e}") from e

    def restore_if_missing(self) -> bool:
        """Restore the database from the replica target if the file is missing.

        Returns:
            True if a restore ran and succeeded.
        """
        if self.db_path.exists():
            return False

        logger.info("Database file not found, attempting restore", extra={"path": str(self.db_path)})
        command = [
            self.config.binary,
            "restore",
            "-if-replica-exists",
            "-config",
            str(self.config_path),
            "-o",
            str(self.db_path),
        ]
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            result = self.controller.run(command)
            result.raise_for_status()
        except (CommandError, OSError) as e:
            logger.warning(f"Database restore failed, starting fresh: {e}")
            return False

        logger.info("Database restored successfully", extra={"path": str(self.db_path)})
        return True

    def check_integrity(self) -> bool:
        """Run an integrity check; failures are logged and reported as False."""
        if not self.db_path.exists():
            logger.info("No database yet, skipping integrity check")
            return True

        try:
            sqlite_ops.check_integrity(self.db_path)
        except (ValueError, sqlite3.Error) as e:
            logger.warning(f"Database integrity check failed: {e}")
            return False
        return True

    def start(self) -> None:
        """Start continuous replication and the steady-state tasks.

        Raises:
            ReplicationError: If the replicate process cannot be started.
        """
        if self.replicator is not None:
            logger.warning("Replication already running")
            return

        command = [self.config.binary, "replicate", "-config", str(self.config_path)]
        try:
            self.replicator = self.controller.start_background(command)
        except CommandError as e:
            raise ReplicationError(f"Failed to start replication: {e}") from e

        self.checkpoint_task = ScheduledTask(
            "checkpoint", self.config.checkpoint_interval_seconds, self.checkpoint
        )
        self.health_task = ScheduledTask(
            "replication-health", self.config.health_check_interval_seconds, self.check_health
        )
        self.checkpoint_task.start()
        self.health_task.start()
        logger.info("Replication started", extra={"db_path": str(self.db_path)})

    def checkpoint(self) -> sqlite_ops.CheckpointResult | None:
        """Force a database checkpoint.

        Raises:
            sqlite3.Error: If the checkpoint fails.
        """
        result = sqlite_ops.force_checkpoint(self.db_path, self.config.sqlite_busy_timeout_ms)
        if result is not None:
            logger.debug(
                "Checkpoint completed",
                extra={"busy": result.busy, "checkpointed_frames": result.checkpointed_frames},
            )
        return result

    def check_health(self) -> bool:
        """Query the agent and update ReplicationHealth.

        Returns:
            The new health value.
        """
        healthy, reason = self._probe()
        self.health.mark(healthy, reason)
        if healthy:
            logger.debug("Replication health check passed")
        else:
            logger.warning(f"Replication health check failed: {reason}")
        return healthy

    def _probe(self) -> tuple[bool, str]:
        if self.replicator is not None and not self.replicator.is_running():
            return False, "replication process exited"

        if not self.config_path.exists():
            return False, f"replication config {self.config_path} not found"

        command = [self.config.binary, "db", "list", "-config", str(self.config_path)]
        try:
            result = self.controller.run(command, timeout=self.config.health_timeout_seconds)
        except CommandError as e:
            return False, str(e)

        if not result.ok:
            return False, f"status command exited with {result.returncode}"
        if not status_is_healthy(result.stdout):
            return False, "replication status reports an error"

        kind = self.config.replica.kind.value
        return True, f"{kind} replication ok"

    def handoff(self, app_command: Sequence[str]) -> NoReturn:
        """Replace this process with `replicate -exec <app_command>`.

        The agent then supervises the application process itself.
        """
        command = [
            self.config.binary,
            "replicate",
            "-config",
            str(self.config_path),
            "-exec",
            shlex.join(app_command),
        ]
        self.controller.handoff(self.config.binary, command)

    def restore_and_handoff(self, app_command: Sequence[str]) -> NoReturn:
        """Restore a missing database, then replace this process with app_command.

        Unlike handoff(), the application runs without the agent supervising it.
        """
        self.ensure_config()
        self.restore_if_missing()
        self.controller.handoff(app_command[0], app_command)
