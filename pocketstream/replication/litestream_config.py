"""
Replication agent configuration synthesis.

Builds the agent's YAML document from LitestreamConfig and writes it exactly
once. An existing file is authoritative and never overwritten, so the replica
target is fixed for the container's lifetime.

Document shape:
    levels:
      - interval: 5m
    snapshot:
      interval: 6h
      retention: 168h
    dbs:
      - path: /pb_data/data.db
        meta-path: ...
        monitor-interval: 1s
        ...
        replica:
          type: file | s3
          ...

Invariants:
    - Keys use the agent's kebab-case names
    - Unset optional values are omitted, not written as null
    - The file is created with exclusive-create semantics
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..config import LitestreamConfig, ReplicaType

logger = logging.getLogger(__name__)


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LevelDocument(_Document):
    """One compaction level."""

    interval: str


class SnapshotDocument(_Document):
    """Snapshot policy."""

    interval: str
    retention: str


class ReplicaDocument(_Document):
    """Replica target. File replicas use path; s3 replicas add the bucket fields."""

    type: str
    path: str | None = None
    bucket: str | None = None
    region: str | None = None
    endpoint: str | None = None
    access_key_id: str | None = Field(default=None, alias="access-key-id")
    secret_access_key: str | None = Field(default=None, alias="secret-access-key")
    skip_verify: bool | None = Field(default=None, alias="skip-verify")
    force_path_style: bool | None = Field(default=None, alias="force-path-style")
    sse: str | None = None
    sync_interval: str = Field(alias="sync-interval")
    snapshot_interval: str = Field(alias="snapshot-interval")
    retention: str
    compress: str | None = None


class DatabaseDocument(_Document):
    """One replicated database."""

    path: str
    meta_path: str | None = Field(default=None, alias="meta-path")
    monitor_interval: str | None = Field(default=None, alias="monitor-interval")
    checkpoint_interval: str | None = Field(default=None, alias="checkpoint-interval")
    busy_timeout: str | None = Field(default=None, alias="busy-timeout")
    min_checkpoint_page_count: int | None = Field(default=None, alias="min-checkpoint-page-count")
    max_checkpoint_page_count: int | None = Field(default=None, alias="max-checkpoint-page-count")
    replica: ReplicaDocument


class LitestreamDocument(_Document):
    """Top-level agent configuration."""

    levels: list[LevelDocument] = Field(default_factory=list)
    snapshot: SnapshotDocument
    dbs: list[DatabaseDocument] = Field(min_length=1)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_yaml(self) -> str:
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)


def build_replica(config: LitestreamConfig) -> ReplicaDocument:
    """Build the replica section for the configured replica kind."""
    replica = config.replica
    common = dict(
        type=replica.kind.value,
        path=replica.path,
        sync_interval=replica.sync_interval,
        snapshot_interval=replica.snapshot_interval,
        retention=replica.retention,
        compress=replica.compress,
    )
    if replica.kind == ReplicaType.FILE:
        return ReplicaDocument(**common)

    return ReplicaDocument(
        bucket=replica.bucket,
        region=replica.region,
        endpoint=replica.endpoint,
        access_key_id=replica.access_key_id,
        secret_access_key=replica.secret_access_key,
        skip_verify=replica.skip_verify or None,
        force_path_style=replica.force_path_style or None,
        sse=replica.sse,
        **common,
    )


class ConfigSynthesizer:
    """Builds and writes the replication agent's configuration file once.

    Attributes:
        config: Replication configuration
        path: Destination of the YAML document

    Example:
        >>> synthesizer = ConfigSynthesizer(config.litestream)
        >>> synthesizer.ensure_written()
        True
    """

    def __init__(self, config: LitestreamConfig) -> None:
        self.config = config
        self.path = Path(config.config_path)

    def build(self) -> LitestreamDocument:
        """Build the typed document from configuration."""
        config = self.config
        return LitestreamDocument(
            levels=[LevelDocument(interval=interval) for interval in config.levels],
            snapshot=SnapshotDocument(
                interval=config.replica.snapshot_interval,
                retention=config.replica.retention,
            ),
            dbs=[
                DatabaseDocument(
                    path=config.db_path,
                    meta_path=config.meta_path,
                    monitor_interval=config.monitor_interval,
                    checkpoint_interval=config.checkpoint_interval,
                    busy_timeout=config.busy_timeout,
                    min_checkpoint_page_count=config.min_checkpoint_page_count,
                    max_checkpoint_page_count=config.max_checkpoint_page_count,
                    replica=build_replica(config),
                )
            ],
        )

    def render(self) -> str:
        return self.build().to_yaml()

    def ensure_written(self) -> bool:
        """Write the document if no file exists at path.

        Returns:
            True if the file was written, False if an existing file was kept.

        Raises:
            OSError: If the file cannot be written.
        """
        if self.path.exists():
            logger.info(
                "Replication config already present, keeping it",
                extra={"path": str(self.path)},
            )
            return False

        content = self.render()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.path, "x", encoding="utf-8") as f:
                f.write(content)
        except FileExistsError:
            logger.info("Replication config appeared concurrently, keeping it")
            return False

        logger.info(
            "Replication config written",
            extra={"path": str(self.path), "replica_type": self.config.replica.kind.value},
        )
        return True
