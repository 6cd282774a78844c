"""
pocketstream - container entrypoints for a single-node web application
with continuously replicated SQLite storage.

Components:
- bootstrap: one-time storage cluster provisioning, then handoff to the daemon
- replication: agent config synthesis, restore, checkpoints and health
- api: HTTP host with the replication write gate
"""

from ._version import __version__

__all__ = ["__version__"]
