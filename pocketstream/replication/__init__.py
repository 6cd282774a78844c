"""
Replication module for pocketstream.

This module keeps the application's SQLite database durable:
- ConfigSynthesizer: writes the replication agent's config once
- ReplicationSupervisor: restore-before-replicate, background replication,
  periodic checkpoints and health checks
- ReplicationHealth: the health flag consulted by the write gate

Invariants:
    - A missing database is restored before replication starts
    - Replication failing to start is fatal; everything else is degraded
"""

from .litestream_config import ConfigSynthesizer, LitestreamDocument
from .scheduler import ScheduledTask
from .supervisor import HealthSnapshot, ReplicationHealth, ReplicationSupervisor

__all__ = [
    "ConfigSynthesizer",
    "HealthSnapshot",
    "LitestreamDocument",
    "ReplicationHealth",
    "ReplicationSupervisor",
    "ScheduledTask",
]
