"""
Storage cluster bootstrap.

This module provisions a single-node object-storage cluster exactly once:
node identity, layout, access key, buckets and bucket permissions. A marker
file records completion so container restarts skip straight to the handoff.
"""

from .garage_cli import GarageCli
from .sequencer import (
    BootstrapReport,
    BootstrapSequencer,
    BootstrapStep,
    listing_contains,
    parse_node_id,
)

__all__ = [
    "BootstrapReport",
    "BootstrapSequencer",
    "BootstrapStep",
    "GarageCli",
    "listing_contains",
    "parse_node_id",
]
