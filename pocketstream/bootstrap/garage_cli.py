"""
CLI-shaped wrapper over the storage cluster daemon.

One method per command of the daemon's CLI contract. Methods that mutate
cluster state raise CommandError on non-zero exit; listing methods return the
raw text so callers can apply their own existence checks.
"""

from __future__ import annotations

import logging

from ..config import BucketPermissions
from ..errors import CommandError
from ..process import ProcessController

logger = logging.getLogger(__name__)


class GarageCli:
    """Typed access to `garage` subcommands.

    Attributes:
        binary: Path to the daemon CLI
        controller: ProcessController used to run every command
    """

    def __init__(self, binary: str, controller: ProcessController) -> None:
        self.binary = binary
        self.controller = controller

    def server_command(self) -> list[str]:
        return [self.binary, "server"]

    def status(self) -> bool:
        """Return True if the daemon answers a status query."""
        try:
            return self.controller.run([self.binary, "status"]).ok
        except CommandError as e:
            logger.debug(f"Status query could not run: {e}")
            return False

    def node_id(self) -> str:
        return self.controller.output([self.binary, "node", "id"])

    def layout_assign(self, zone: str, capacity: str, node_id: str) -> None:
        self.controller.output(
            [self.binary, "layout", "assign", "-z", zone, "-c", capacity, node_id]
        )

    def layout_apply(self, version: str) -> None:
        self.controller.output([self.binary, "layout", "apply", "--version", version])

    def layout_show(self) -> str:
        return self.controller.output([self.binary, "layout", "show"])

    def key_list(self) -> str:
        return self.controller.output([self.binary, "key", "list"])

    def key_import(self, access_key: str, secret_key: str, yes: bool = False) -> None:
        args = [self.binary, "key", "import"]
        if yes:
            args.append("--yes")
        args.extend([access_key, secret_key])
        try:
            self.controller.output(args)
        except CommandError as e:
            # argv carries the secret
            raise CommandError(
                [*args[:-1], "<redacted>"], e.returncode, e.stdout, e.stderr
            ) from None

    def bucket_list(self) -> str:
        return self.controller.output([self.binary, "bucket", "list"])

    def bucket_create(self, name: str) -> None:
        self.controller.output([self.binary, "bucket", "create", name])

    def bucket_allow(self, name: str, access_key: str, permissions: BucketPermissions) -> None:
        args = [self.binary, "bucket", "allow", name, "--key", access_key]
        if permissions.read:
            args.append("--read")
        if permissions.write:
            args.append("--write")
        if permissions.owner:
            args.append("--owner")
        self.controller.output(args)

    def help(self, *subcommand: str) -> str | None:
        """Return `--help` text for a subcommand, or None if unavailable."""
        try:
            result = self.controller.run([self.binary, *subcommand, "--help"])
        except CommandError:
            return None
        return result.stdout if result.ok else None
