"""
pocketstream - Main entry point.

Each subcommand is one container entrypoint:
- bootstrap:  provision the storage cluster once, then exec `garage server`
- replicate:  prepare the database (config, restore, integrity), then exec the
              replication agent supervising the web application (`replicate -exec`)
- restore:    write the replication config, restore a missing database, then
              exec the web application
- serve:      run the HTTP host (write gate, checkpoint and health routes)
- checkpoint: force one database checkpoint and exit

Usage:
    pocketstream bootstrap
    python -m pocketstream.main serve

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Configuration errors exit with status 1 before any process is started
    - A fatal bootstrap or replication error exits with status 1
    - Handoff subcommands never return on success
"""

from __future__ import annotations

import argparse
import logging
import sqlite3
import sys
from collections.abc import Sequence

import json_log_formatter
import uvicorn

from ._version import __version__
from .api import create_app
from .bootstrap import BootstrapSequencer
from .config import ContainerConfig
from .errors import ConfigError, PocketstreamError
from .process import ProcessController
from .replication import ReplicationSupervisor

logger = logging.getLogger(__name__)


def setup_logging(config: ContainerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Container configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def run_bootstrap(config: ContainerConfig, controller: ProcessController) -> None:
    config.garage.validate_for_bootstrap()
    sequencer = BootstrapSequencer(config.garage, controller)
    sequencer.run()
    sequencer.handoff()


def run_replicate(config: ContainerConfig, controller: ProcessController) -> None:
    config.litestream.validate_for_replication()
    supervisor = ReplicationSupervisor(config.litestream, controller)
    supervisor.prepare()
    supervisor.handoff(config.app.serve_command)


def run_restore(config: ContainerConfig, controller: ProcessController) -> None:
    """Restore the database if missing, then run the web application directly."""
    config.litestream.validate_for_replication()
    supervisor = ReplicationSupervisor(config.litestream, controller)
    supervisor.restore_and_handoff(config.app.serve_command)


def run_serve(config: ContainerConfig, controller: ProcessController) -> None:
    if config.replication_enabled:
        config.litestream.validate_for_replication()
    supervisor = ReplicationSupervisor(config.litestream, controller)
    app = create_app(config, supervisor)
    uvicorn.run(
        app,
        host=config.http.host,
        port=config.http.port,
        log_config=None,
    )


def run_checkpoint(config: ContainerConfig, controller: ProcessController) -> None:
    supervisor = ReplicationSupervisor(config.litestream, controller)
    try:
        result = supervisor.checkpoint()
    except sqlite3.Error as e:
        raise PocketstreamError(f"Checkpoint failed: {e}") from e

    if result is None:
        logger.info("No database to checkpoint", extra={"db_path": config.litestream.db_path})
    else:
        logger.info("Checkpoint completed", extra={"busy": result.busy})


COMMANDS = {
    "bootstrap": run_bootstrap,
    "replicate": run_replicate,
    "restore": run_restore,
    "serve": run_serve,
    "checkpoint": run_checkpoint,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pocketstream",
        description="Container entrypoints for a web application with replicated SQLite storage.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("bootstrap", help="Provision the storage cluster, then run it")
    subparsers.add_parser("replicate", help="Run the web application under the replication agent")
    subparsers.add_parser("restore", help="Restore a missing database, then run the web application")
    subparsers.add_parser("serve", help="Run the HTTP host with the write gate")
    subparsers.add_parser("checkpoint", help="Force one database checkpoint")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Load configuration
    try:
        config = ContainerConfig.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    controller = ProcessController()
    try:
        COMMANDS[args.command](config, controller)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except PocketstreamError as e:
        logger.error(f"{args.command} failed: {e}", extra={"code": e.code, **e.details})
        sys.exit(1)


if __name__ == "__main__":
    main()
