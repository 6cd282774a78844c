"""
External process control for collaborator daemons.

The ProcessController owns every interaction with collaborator binaries:
- Foreground commands with captured output (status queries, listings)
- Background server processes (started, then killed and waited on)
- Irreversible process-image handoff to a long-lived server

Invariants:
    - A non-zero exit is reported, never silently ignored
    - BackgroundProcess.stop() always waits after killing, so no zombie
      holds a port or lock when the caller proceeds
    - handoff() never returns; no code runs after it

How to change safely:
    - Keep exit-status translation in one place (CommandResult / CommandError)
    - Inject execve in tests; never call the real one from a test
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import NoReturn

from ..errors import CommandError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Normalized result of a foreground collaborator command.

    Attributes:
        command: Argument vector that was executed
        returncode: Process exit status
        stdout: Captured standard output
        stderr: Captured standard error
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def raise_for_status(self) -> None:
        """Raise CommandError if the command exited non-zero."""
        if not self.ok:
            raise CommandError(
                command=self.command,
                returncode=self.returncode,
                stdout=self.stdout,
                stderr=self.stderr,
            )


class BackgroundProcess:
    """A collaborator running in the background of the current process.

    Example:
        >>> proc = controller.start_background(["garage", "server"])
        >>> try:
        ...     do_work()
        ... finally:
        ...     proc.stop()
    """

    def __init__(self, command: Sequence[str], popen: subprocess.Popen) -> None:
        self.command = tuple(command)
        self._popen = popen
        self._stopped = False

    @property
    def pid(self) -> int:
        return self._popen.pid

    def is_running(self) -> bool:
        """Return True while the process has not exited."""
        return self._popen.poll() is None

    def stop(self) -> int | None:
        """Kill the process and block until it has exited.

        Safe to call more than once and on a process that already exited.

        Returns:
            The process exit status.
        """
        if self._stopped:
            return self._popen.returncode

        if self._popen.poll() is None:
            try:
                self._popen.kill()
            except ProcessLookupError:
                pass
        returncode = self._popen.wait()
        self._stopped = True
        logger.info(
            "Background process stopped",
            extra={"command": " ".join(self.command), "returncode": returncode},
        )
        return returncode


class ProcessController:
    """Starts, stops and execs collaborator processes.

    Attributes:
        execve: Function used for the process-image handoff (os.execve)
    """

    def __init__(
        self,
        execve: Callable[[str, Sequence[str], Mapping[str, str]], None] | None = None,
    ) -> None:
        self.execve = execve or os.execve

    def run(self, args: Sequence[str], timeout: float | None = None) -> CommandResult:
        """Run a command to completion and capture its output.

        Args:
            args: Argument vector, binary first
            timeout: Optional bound in seconds

        Returns:
            CommandResult (a non-zero exit is not an exception here)

        Raises:
            CommandError: If the binary cannot be launched or times out
        """
        command = tuple(args)
        try:
            completed = subprocess.run(
                command,
                text=True,
                capture_output=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise CommandError(command, None, reason=f"timed out after {timeout}s")
        except OSError as e:
            raise CommandError(command, None, reason=str(e))

        return CommandResult(
            command=command,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def output(self, args: Sequence[str], timeout: float | None = None) -> str:
        """Run a command and return its stdout, raising on non-zero exit."""
        result = self.run(args, timeout=timeout)
        result.raise_for_status()
        return result.stdout

    def start_background(self, args: Sequence[str]) -> BackgroundProcess:
        """Start a command in the background with inherited stdio.

        Raises:
            CommandError: If the binary cannot be launched
        """
        command = tuple(args)
        try:
            popen = subprocess.Popen(command)
        except OSError as e:
            raise CommandError(command, None, reason=str(e))

        logger.info(
            "Background process started",
            extra={"command": " ".join(command), "pid": popen.pid},
        )
        return BackgroundProcess(command, popen)

    def handoff(
        self,
        binary: str,
        argv: Sequence[str],
        env: Mapping[str, str] | None = None,
    ) -> NoReturn:
        """Replace the current process image with binary.

        Args:
            binary: Program to execute, looked up on PATH when it has no directory part
            argv: Full argument vector (argv[0] included)
            env: Environment for the new image (inherits os.environ by default)

        Raises:
            CommandError: If the exec itself fails
        """
        environ = dict(os.environ if env is None else env)
        if os.sep not in binary:
            binary = shutil.which(binary, path=environ.get("PATH")) or binary
        logger.info("Handing off process", extra={"binary": binary, "argv": list(argv)})
        for handler in logging.getLogger().handlers:
            handler.flush()
        try:
            self.execve(binary, list(argv), environ)
        except OSError as e:
            raise CommandError(argv, None, reason=f"exec failed: {e}")
        raise CommandError(argv, None, reason="exec returned control")
