"""
Process control for collaborator daemons.

This module provides:
- ProcessController: foreground commands, background servers, handoff
- StatusPoller: fixed-interval readiness polling
"""

from .controller import BackgroundProcess, CommandResult, ProcessController
from .poller import StatusPoller

__all__ = [
    "BackgroundProcess",
    "CommandResult",
    "ProcessController",
    "StatusPoller",
]
