"""
In-memory doubles for ProcessController.

FakeController records every command and answers it from respond();
FakeGarage simulates the storage cluster daemon's CLI closely enough to drive
a full bootstrap, including injected failures.
"""

from __future__ import annotations

from pocketstream.process import CommandResult


class HandoffCalled(Exception):
    """Raised by FakeController.handoff in place of replacing the process."""

    def __init__(self, binary, argv):
        super().__init__(binary)
        self.binary = binary
        self.argv = list(argv)


class FakeBackground:
    """Stands in for BackgroundProcess."""

    pid = 4242

    def __init__(self, command, alive=True):
        self.command = tuple(command)
        self.running = alive
        self.stop_calls = 0

    def is_running(self):
        return self.running

    def stop(self):
        self.stop_calls += 1
        self.running = False
        return -9


class FakeController:
    """Records commands; every command succeeds with empty output by default."""

    def __init__(self, background_alive=True):
        self.calls: list[tuple[str, ...]] = []
        self.timeouts: list[float | None] = []
        self.background: list[FakeBackground] = []
        self.background_alive = background_alive
        self.start_error: Exception | None = None

    def run(self, args, timeout=None):
        command = tuple(args)
        self.calls.append(command)
        self.timeouts.append(timeout)
        return self.respond(command)

    def output(self, args, timeout=None):
        result = self.run(args, timeout=timeout)
        result.raise_for_status()
        return result.stdout

    def start_background(self, args):
        if self.start_error is not None:
            raise self.start_error
        proc = FakeBackground(args, alive=self.background_alive)
        self.background.append(proc)
        return proc

    def handoff(self, binary, argv, env=None):
        raise HandoffCalled(binary, argv)

    def respond(self, command):
        return CommandResult(command, 0, "", "")

    def subcommands(self):
        """Recorded commands without the binary."""
        return [call[1:] for call in self.calls]

    def index_of(self, *prefix):
        """Position of the first recorded command starting with prefix."""
        for i, sub in enumerate(self.subcommands()):
            if sub[: len(prefix)] == prefix:
                return i
        raise AssertionError(f"{' '.join(prefix)} was never called")

    def called(self, *prefix):
        return any(sub[: len(prefix)] == prefix for sub in self.subcommands())


NODE_ID = "563e1ac825ee3323aa441e72c26d1030d4d4a4bfaf8f9c0a9d1e1b5c8d3e7f21"


class FakeGarage(FakeController):
    """Simulated `garage` CLI.

    Attributes:
        keys: Access key ids the cluster knows about
        buckets: Existing bucket names
        grants: Recorded `bucket allow` argument tails
        ready_after: Status calls needed before the daemon answers
        failures: Subcommand prefix -> exit status for injected failures
        import_lands: A failing key import still registers the key
    """

    def __init__(self, keys=(), buckets=(), ready_after=1, background_alive=True):
        super().__init__(background_alive=background_alive)
        self.keys = list(keys)
        self.buckets = list(buckets)
        self.grants: list[tuple[str, ...]] = []
        self.ready_after = ready_after
        self.status_calls = 0
        self.failures: dict[tuple[str, ...], int] = {}
        self.import_lands = False

    def fail(self, *prefix, returncode=1):
        self.failures[prefix] = returncode

    def respond(self, command):
        sub = command[1:]
        if sub and sub[-1] == "--help":
            return self._ok(command, f"Usage: garage {' '.join(sub[:-1])} [OPTIONS]\n")

        if sub == ("status",):
            self.status_calls += 1
            if self.status_calls >= self.ready_after:
                return self._ok(command, "==== HEALTHY NODES ====\n")
            return CommandResult(command, 1, "", "Error: connection refused")

        for prefix, returncode in self.failures.items():
            if sub[: len(prefix)] == prefix:
                if prefix[:2] == ("key", "import") and self.import_lands:
                    self.keys.append(sub[-2])
                return CommandResult(command, returncode, "", f"Error: {' '.join(prefix)} failed")

        if sub == ("node", "id"):
            return self._ok(command, f"{NODE_ID}@127.0.0.1:3901\n")
        if sub[:1] == ("layout",):
            return self._ok(command, "==== CURRENT CLUSTER LAYOUT ====\n")
        if sub == ("key", "list"):
            lines = ["ID                          Name"]
            lines += [f"{key}                   pocketstream-key" for key in self.keys]
            return self._ok(command, "\n".join(lines) + "\n")
        if sub[:2] == ("key", "import"):
            self.keys.append(sub[-2])
            return self._ok(command, "Imported key\n")
        if sub == ("bucket", "list"):
            lines = ["List of buckets:"] + [f"  {name}" for name in self.buckets]
            return self._ok(command, "\n".join(lines) + "\n")
        if sub[:2] == ("bucket", "create"):
            self.buckets.append(sub[2])
            return self._ok(command, f"Bucket {sub[2]} was created.\n")
        if sub[:2] == ("bucket", "allow"):
            self.grants.append(sub[2:])
            return self._ok(command, "New permissions set\n")

        return CommandResult(command, 127, "", f"unknown command {' '.join(sub)}")

    @staticmethod
    def _ok(command, stdout):
        return CommandResult(command, 0, stdout, "")
