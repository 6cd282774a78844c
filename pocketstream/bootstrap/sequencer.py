"""
Idempotent storage cluster bootstrap.

The BootstrapSequencer brings a freshly started cluster node from "just
started" to "fully provisioned" exactly once across container restarts:

    ServerStarting -> WaitingReady -> IdentityResolved -> LayoutAssigned
    -> LayoutApplied -> KeyEnsured -> BucketsEnsured -> PermissionsGranted
    -> Finalized -> ServerStopped -> Handoff

Every step is a synchronous call to the daemon's CLI. The whole sequence is
gated by the marker file: when it exists, run() makes no collaborator calls.

Invariants:
    - The marker file is created only after every step succeeded or soft-failed
    - The background server is killed and waited on before any fatal error
      propagates, and before the handoff
    - Layout apply failure is degraded, never fatal
    - Key import is skipped when the key id already appears in the listing;
      a reported import failure is re-checked against a fresh listing
    - Buckets are created only when absent; permissions are re-granted on
      every run

How to change safely:
    - New steps go before FINALIZED so the marker still means "all done"
    - Existence checks are line-wise substring scans (see listing_contains);
      tightening them changes behavior for names that are prefixes of others
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import NoReturn

from ..config import GarageConfig
from ..errors import BootstrapError, CommandError
from ..process import BackgroundProcess, ProcessController, StatusPoller
from .garage_cli import GarageCli

logger = logging.getLogger(__name__)


class BootstrapStep(str, Enum):
    """Bootstrap state machine states."""

    PENDING = "pending"
    SERVER_STARTING = "server_starting"
    WAITING_READY = "waiting_ready"
    IDENTITY_RESOLVED = "identity_resolved"
    LAYOUT_ASSIGNED = "layout_assigned"
    LAYOUT_APPLIED = "layout_applied"
    KEY_ENSURED = "key_ensured"
    BUCKETS_ENSURED = "buckets_ensured"
    PERMISSIONS_GRANTED = "permissions_granted"
    FINALIZED = "finalized"
    SERVER_STOPPED = "server_stopped"
    SKIPPED = "skipped"
    HANDOFF = "handoff"


@dataclass
class BootstrapReport:
    """Outcome of one bootstrap run.

    Attributes:
        skipped: True when the marker file already existed
        node_id: Resolved cluster node id
        layout_applied: False if layout apply soft-failed
        key_imported: True if the access key was imported this run
        buckets_created: Buckets created this run
        buckets_existing: Buckets that were already present
        permissions_granted: Buckets whose permissions were (re-)granted
    """

    skipped: bool = False
    node_id: str | None = None
    layout_applied: bool = False
    key_imported: bool = False
    buckets_created: list[str] = field(default_factory=list)
    buckets_existing: list[str] = field(default_factory=list)
    permissions_granted: list[str] = field(default_factory=list)


def parse_node_id(text: str) -> str:
    """Extract the node id from `node id` output.

    Takes the last non-empty line, its first whitespace-delimited token, and
    strips everything from "@" onward.

    Raises:
        BootstrapError: If no id can be found.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        raise BootstrapError("No node ID found", step=BootstrapStep.IDENTITY_RESOLVED.value)

    node_id = lines[-1].split()[0].split("@", 1)[0]
    if not node_id:
        raise BootstrapError(
            f"Could not parse node ID from {lines[-1]!r}",
            step=BootstrapStep.IDENTITY_RESOLVED.value,
        )
    return node_id


def listing_contains(listing: str, needle: str) -> bool:
    """Return True if any line of a CLI listing contains needle.

    This is a substring scan, not an exact match: a bucket named "app" is
    reported present by a line mentioning "application". Kept for
    compatibility with the daemon's plain-text listings.
    """
    return any(needle in line for line in listing.splitlines())


class BootstrapSequencer:
    """Cluster provisioning state machine.

    Attributes:
        config: Bootstrap configuration
        controller: Process controller for the background server and handoff
        cli: Daemon CLI wrapper
        state: Most recent state entered

    Example:
        >>> sequencer = BootstrapSequencer(config.garage, ProcessController())
        >>> sequencer.run()
        >>> sequencer.handoff()  # never returns
    """

    def __init__(
        self,
        config: GarageConfig,
        controller: ProcessController,
        cli: GarageCli | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.controller = controller
        self.cli = cli or GarageCli(config.binary, controller)
        self.marker_path = Path(config.marker_file)
        self.state = BootstrapStep.PENDING
        self._sleep = sleep

    def run(self) -> BootstrapReport:
        """Run the bootstrap sequence unless the marker file exists.

        Returns:
            BootstrapReport describing what was done.

        Raises:
            BootstrapError: On any fatal transition (server already stopped).
        """
        if self.marker_path.exists():
            self._enter(BootstrapStep.SKIPPED)
            logger.info(
                "Bootstrap already completed, skipping",
                extra={"marker_file": str(self.marker_path)},
            )
            return BootstrapReport(skipped=True)

        logger.info("Initializing storage cluster")
        report = BootstrapReport()

        self._enter(BootstrapStep.SERVER_STARTING)
        try:
            server = self.controller.start_background(self.cli.server_command())
        except CommandError as e:
            raise BootstrapError(
                f"Failed to start cluster server: {e}", step=self.state.value
            ) from e

        try:
            self._wait_ready(server)
            report.node_id = self._resolve_identity()
            self._assign_layout(report.node_id)
            report.layout_applied = self._apply_layout()
            report.key_imported = self._ensure_key()
            self._ensure_buckets(report)
            self._grant_permissions(report)
            self._finalize()
        finally:
            self._enter(BootstrapStep.SERVER_STOPPED)
            server.stop()

        logger.info("Initialization complete", extra={"node_id": report.node_id})
        return report

    def handoff(self) -> NoReturn:
        """Replace this process with the cluster server in the foreground."""
        self._enter(BootstrapStep.HANDOFF)
        logger.info("Starting cluster server")
        command = self.cli.server_command()
        self.controller.handoff(command[0], command)

    def _enter(self, step: BootstrapStep) -> None:
        self.state = step
        logger.debug("Bootstrap step", extra={"step": step.value})

    def _fail(self, message: str, cause: Exception | None = None) -> BootstrapError:
        logger.error(message)
        error = BootstrapError(message, step=self.state.value)
        error.__cause__ = cause
        return error

    def _log_help(self, *subcommand: str) -> None:
        text = self.cli.help(*subcommand)
        if text:
            logger.info(f"{' '.join(['garage', *subcommand])} --help:\n{text}")

    def _wait_ready(self, server: BackgroundProcess) -> None:
        self._enter(BootstrapStep.WAITING_READY)
        logger.info("Waiting for cluster server to start")
        poller = StatusPoller(
            probe=self.cli.status,
            interval=self.config.poll_interval_seconds,
            max_attempts=self.config.poll_max_attempts,
            is_alive=server.is_running,
            sleep=self._sleep,
        )
        poller.wait()

    def _resolve_identity(self) -> str:
        self._enter(BootstrapStep.IDENTITY_RESOLVED)
        try:
            output = self.cli.node_id()
        except CommandError as e:
            raise self._fail(f"Error getting node ID: {e}", e)

        node_id = parse_node_id(output)
        logger.info("Resolved node ID", extra={"node_id": node_id})
        return node_id

    def _assign_layout(self, node_id: str) -> None:
        self._enter(BootstrapStep.LAYOUT_ASSIGNED)
        try:
            self.cli.layout_assign(self.config.zone, self.config.capacity, node_id)
        except CommandError as e:
            self._log_help("layout", "assign")
            raise self._fail(f"Error assigning role: {e}", e)

    def _apply_layout(self) -> bool:
        self._enter(BootstrapStep.LAYOUT_APPLIED)
        try:
            self.cli.layout_apply(self.config.layout_version)
        except CommandError as e:
            logger.warning(f"Error applying layout: {e}")
            try:
                logger.info(f"Current layout status:\n{self.cli.layout_show()}")
            except CommandError as show_error:
                logger.warning(f"Could not show layout: {show_error}")
            logger.warning("Continuing with initialization despite layout apply failure")
            return False

        logger.info("Cluster layout configured")
        return True

    def _ensure_key(self) -> bool:
        self._enter(BootstrapStep.KEY_ENSURED)
        access_key = self.config.access_key
        logger.info(
            "Ensuring access key",
            extra={"access_key": access_key, "secret_key_length": len(self.config.secret_key)},
        )

        try:
            listing = self.cli.key_list()
        except CommandError as e:
            self._log_help("key")
            raise self._fail(f"Error listing keys: {e}", e)

        if listing_contains(listing, access_key):
            logger.info("Key already exists, skipping import")
            return False

        try:
            self.cli.key_import(access_key, self.config.secret_key, yes=self.config.key_import_yes)
        except CommandError as e:
            logger.warning(f"Error importing key: {e}")
            self._log_help("key", "import")
            if self._key_listed():
                logger.info("Key was imported successfully despite error")
                return True
            raise self._fail(f"Error importing key: {e}", e)

        logger.info("Key imported")
        return True

    def _key_listed(self) -> bool:
        try:
            return listing_contains(self.cli.key_list(), self.config.access_key)
        except CommandError as e:
            logger.warning(f"Re-listing keys failed: {e}")
            return False

    def _ensure_buckets(self, report: BootstrapReport) -> None:
        self._enter(BootstrapStep.BUCKETS_ENSURED)
        for bucket in self.config.buckets:
            try:
                listing = self.cli.bucket_list()
            except CommandError as e:
                self._log_help("bucket")
                raise self._fail(f"Error listing buckets: {e}", e)

            if listing_contains(listing, bucket):
                logger.info(f"Bucket {bucket} already exists, skipping create")
                report.buckets_existing.append(bucket)
                continue

            try:
                self.cli.bucket_create(bucket)
            except CommandError as e:
                self._log_help("bucket", "create")
                raise self._fail(f"Error creating bucket {bucket}: {e}", e)

            logger.info(f"Created bucket {bucket}")
            report.buckets_created.append(bucket)

    def _grant_permissions(self, report: BootstrapReport) -> None:
        self._enter(BootstrapStep.PERMISSIONS_GRANTED)
        for bucket in self.config.buckets:
            try:
                self.cli.bucket_allow(bucket, self.config.access_key, self.config.permissions)
            except CommandError as e:
                self._log_help("bucket", "allow")
                raise self._fail(f"Error allowing access to bucket {bucket}: {e}", e)
            report.permissions_granted.append(bucket)

    def _finalize(self) -> None:
        self._enter(BootstrapStep.FINALIZED)
        try:
            self.marker_path.parent.mkdir(parents=True, exist_ok=True)
            self.marker_path.touch(exist_ok=False)
        except OSError as e:
            raise self._fail(f"Failed to create marker file {self.marker_path}: {e}", e)
