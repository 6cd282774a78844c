"""
HTTP surface for pocketstream.

This module provides:
- create_app(): FastAPI host with the replication lifecycle
- WriteGate: middleware rejecting writes while replication is unhealthy
- AppProxy: forwarding of application traffic to the web application

Invariants:
    - Reads are never gated
    - The checkpoint endpoint is administrative and bypasses the gate
"""

from .app import create_app, provision_superuser
from .proxy import AppProxy
from .write_gate import WriteGate

__all__ = [
    "AppProxy",
    "WriteGate",
    "create_app",
    "provision_superuser",
]
