"""
Integration tests for the storage cluster bootstrap.

Tests cover:
- Fresh bootstrap end to end against a simulated cluster CLI
- Idempotence through the marker file
- Access key and bucket existence handling
- Degraded layout apply
- Background server cleanup on every fatal transition
- Handoff to the foreground server
"""

import logging

import pytest

from pocketstream.bootstrap import BootstrapSequencer, BootstrapStep
from pocketstream.config import BucketPermissions, GarageConfig
from pocketstream.errors import BootstrapError, CommandError
from tests.fakes import NODE_ID, FakeGarage, HandoffCalled


def no_sleep(seconds):
    pass


class TestBootstrapSequencer:
    """Tests for BootstrapSequencer against FakeGarage."""

    @pytest.fixture
    def marker(self, tmp_path):
        return tmp_path / "garage" / ".initialized"

    @pytest.fixture
    def config(self, marker):
        return GarageConfig(
            binary="garage",
            marker_file=str(marker),
            zone="dc1",
            capacity="1",
            access_key="AKIA_TEST",
            secret_key="s3cr3t",
            buckets=("app", "backup"),
            permissions=BucketPermissions(read=True, write=True, owner=True),
            poll_interval_seconds=0,
        )

    @pytest.fixture
    def garage(self):
        return FakeGarage()

    def make(self, config, garage):
        return BootstrapSequencer(config, garage, sleep=no_sleep)

    def test_fresh_bootstrap(self, config, garage, marker, caplog):
        """A fresh node is fully provisioned and the marker is written."""
        caplog.set_level(logging.DEBUG)

        report = self.make(config, garage).run()

        assert report.skipped is False
        assert report.node_id == NODE_ID
        assert report.layout_applied is True
        assert report.key_imported is True
        assert report.buckets_created == ["app", "backup"]
        assert report.buckets_existing == []
        assert report.permissions_granted == ["app", "backup"]
        assert marker.exists()

        assert ("layout", "assign", "-z", "dc1", "-c", "1", NODE_ID) in garage.subcommands()
        assert ("layout", "apply", "--version", "1") in garage.subcommands()
        assert ("key", "import", "AKIA_TEST", "s3cr3t") in garage.subcommands()
        assert garage.subcommands().count(("key", "list")) == 1
        assert garage.subcommands().count(("key", "import", "AKIA_TEST", "s3cr3t")) == 1
        assert garage.grants == [
            ("app", "--key", "AKIA_TEST", "--read", "--write", "--owner"),
            ("backup", "--key", "AKIA_TEST", "--read", "--write", "--owner"),
        ]

        assert len(garage.background) == 1
        assert garage.background[0].command == ("garage", "server")
        assert garage.background[0].stop_calls == 1

        assert "s3cr3t" not in caplog.text

    def test_steps_run_in_order(self, config, garage):
        """Each step's command is issued after the previous step's."""
        self.make(config, garage).run()

        order = [
            garage.index_of("status"),
            garage.index_of("node", "id"),
            garage.index_of("layout", "assign"),
            garage.index_of("layout", "apply"),
            garage.index_of("key", "list"),
            garage.index_of("key", "import"),
            garage.index_of("bucket", "list"),
            garage.index_of("bucket", "create"),
            garage.index_of("bucket", "allow"),
        ]
        assert order == sorted(order)

    def test_waits_until_status_answers(self, config, garage):
        """Readiness is polled until the daemon answers."""
        garage.ready_after = 4

        self.make(config, garage).run()

        assert garage.status_calls == 4
        assert garage.index_of("node", "id") > garage.index_of("status")

    def test_marker_present_skips_everything(self, config, garage, marker):
        """An existing marker makes run() a no-op with zero collaborator calls."""
        marker.parent.mkdir(parents=True)
        marker.touch()

        sequencer = self.make(config, garage)
        report = sequencer.run()

        assert report.skipped is True
        assert garage.calls == []
        assert garage.background == []
        assert sequencer.state == BootstrapStep.SKIPPED

    def test_second_run_is_noop(self, config, garage):
        """Running twice provisions once."""
        self.make(config, garage).run()
        calls_after_first = len(garage.calls)

        report = self.make(config, garage).run()

        assert report.skipped is True
        assert len(garage.calls) == calls_after_first
        assert len(garage.background) == 1

    def test_existing_key_is_not_imported(self, config):
        """A key already in the listing skips import."""
        garage = FakeGarage(keys=["AKIA_TEST"])

        report = self.make(config, garage).run()

        assert report.key_imported is False
        assert not garage.called("key", "import")

    def test_key_import_yes_flag(self, config, garage):
        """--yes is passed when configured."""
        config = GarageConfig(**{**config.__dict__, "key_import_yes": True})

        self.make(config, garage).run()

        assert ("key", "import", "--yes", "AKIA_TEST", "s3cr3t") in garage.subcommands()

    def test_failed_import_with_key_present_succeeds(self, config, garage, marker):
        """A reported import failure is fine if the key shows up afterwards."""
        garage.fail("key", "import")
        garage.import_lands = True

        report = self.make(config, garage).run()

        assert report.key_imported is True
        assert marker.exists()
        assert garage.called("key", "import", "--help")
        assert garage.subcommands().count(("key", "list")) == 2
        assert garage.subcommands().count(("key", "import", "AKIA_TEST", "s3cr3t")) == 1

    def test_failed_import_does_not_leak_secret(self, config, garage, caplog):
        """The secret key never appears in logs or the raised error."""
        garage.fail("key", "import")

        with pytest.raises(BootstrapError) as exc_info:
            self.make(config, garage).run()

        assert "s3cr3t" not in str(exc_info.value)
        assert "s3cr3t" not in caplog.text
        assert exc_info.value.step == BootstrapStep.KEY_ENSURED.value

    def test_layout_apply_failure_is_degraded(self, config, garage, marker):
        """Layout apply failure is logged and bootstrap still completes."""
        garage.fail("layout", "apply")

        report = self.make(config, garage).run()

        assert report.layout_applied is False
        assert garage.called("layout", "show")
        assert garage.called("bucket", "allow")
        assert marker.exists()

    def test_existing_bucket_is_not_created(self, config):
        """Only absent buckets are created; permissions cover all of them."""
        garage = FakeGarage(buckets=["app"])

        report = self.make(config, garage).run()

        assert report.buckets_existing == ["app"]
        assert report.buckets_created == ["backup"]
        assert ("bucket", "create", "app") not in garage.subcommands()
        assert report.permissions_granted == ["app", "backup"]

    def test_bucket_existence_is_substring_match(self, config):
        """A listing line containing the name counts as present."""
        garage = FakeGarage(buckets=["application", "backups-old"])

        report = self.make(config, garage).run()

        assert report.buckets_existing == ["app", "backup"]
        assert report.buckets_created == []

    @pytest.mark.parametrize(
        "prefix,step",
        [
            (("node", "id"), BootstrapStep.IDENTITY_RESOLVED),
            (("layout", "assign"), BootstrapStep.LAYOUT_ASSIGNED),
            (("key", "list"), BootstrapStep.KEY_ENSURED),
            (("key", "import"), BootstrapStep.KEY_ENSURED),
            (("bucket", "list"), BootstrapStep.BUCKETS_ENSURED),
            (("bucket", "create"), BootstrapStep.BUCKETS_ENSURED),
            (("bucket", "allow"), BootstrapStep.PERMISSIONS_GRANTED),
        ],
    )
    def test_fatal_failure_stops_server(self, config, garage, marker, prefix, step):
        """Every fatal transition kills and waits on the server and leaves no marker."""
        garage.fail(*prefix)
        sequencer = self.make(config, garage)

        with pytest.raises(BootstrapError) as exc_info:
            sequencer.run()

        assert exc_info.value.step == step.value
        assert garage.background[0].stop_calls == 1
        assert sequencer.state == BootstrapStep.SERVER_STOPPED
        assert not marker.exists()

    @pytest.mark.parametrize(
        "prefix,help_command",
        [
            (("layout", "assign"), ("layout", "assign", "--help")),
            (("key", "list"), ("key", "--help")),
            (("bucket", "list"), ("bucket", "--help")),
            (("bucket", "create"), ("bucket", "create", "--help")),
            (("bucket", "allow"), ("bucket", "allow", "--help")),
        ],
    )
    def test_fatal_failure_fetches_help(self, config, garage, prefix, help_command):
        """Failed steps log the relevant --help text before aborting."""
        garage.fail(*prefix)

        with pytest.raises(BootstrapError):
            self.make(config, garage).run()

        assert help_command in garage.subcommands()

    def test_server_death_while_waiting_is_fatal(self, config):
        """A background server that exits before answering aborts bootstrap."""
        garage = FakeGarage(ready_after=10**9, background_alive=False)

        with pytest.raises(BootstrapError) as exc_info:
            self.make(config, garage).run()

        assert exc_info.value.step == BootstrapStep.WAITING_READY.value
        assert garage.background[0].stop_calls == 1
        assert not garage.called("node", "id")

    def test_bounded_polling_gives_up(self, config):
        """An explicit attempt budget ends polling with a fatal error."""
        config = GarageConfig(**{**config.__dict__, "poll_max_attempts": 3})
        garage = FakeGarage(ready_after=10**9)

        with pytest.raises(BootstrapError):
            self.make(config, garage).run()

        assert garage.status_calls == 3
        assert garage.background[0].stop_calls == 1

    def test_marker_write_failure_is_fatal(self, config, garage, tmp_path):
        """An unwritable marker location aborts after stopping the server."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        config = GarageConfig(**{**config.__dict__, "marker_file": str(blocker / ".initialized")})

        with pytest.raises(BootstrapError) as exc_info:
            self.make(config, garage).run()

        assert exc_info.value.step == BootstrapStep.FINALIZED.value
        assert garage.background[0].stop_calls == 1

    def test_server_start_failure_is_fatal(self, config, garage):
        """A server that cannot be launched is a fatal error."""
        garage.start_error = CommandError(("garage", "server"), None, reason="not found")

        with pytest.raises(BootstrapError) as exc_info:
            self.make(config, garage).run()

        assert exc_info.value.step == BootstrapStep.SERVER_STARTING.value
        assert garage.calls == []

    def test_handoff_execs_server(self, config, garage):
        """Handoff replaces the process with `garage server`."""
        sequencer = self.make(config, garage)
        sequencer.run()

        with pytest.raises(HandoffCalled) as exc_info:
            sequencer.handoff()

        assert exc_info.value.binary == "garage"
        assert exc_info.value.argv == ["garage", "server"]
        assert sequencer.state == BootstrapStep.HANDOFF

    def test_handoff_after_skip(self, config, garage, marker):
        """Handoff still happens when bootstrap was skipped."""
        marker.parent.mkdir(parents=True)
        marker.touch()
        sequencer = self.make(config, garage)
        sequencer.run()

        with pytest.raises(HandoffCalled):
            sequencer.handoff()
