"""
Configuration management for pocketstream.

All configuration is done via environment variables - no config files are read
by this process. This module provides typed configuration classes with
validation. The aggregate ContainerConfig is built once at startup and passed
by reference to every component; nothing else reads the environment.

Invariants:
    - All settings have sensible defaults for a single-node container
    - Secrets are never logged or exposed in error messages
    - An encryption key, when present, is exactly 32 hexadecimal characters

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep variable names aligned with the container's documented environment
    - Bootstrap-only requirements belong in GarageConfig.validate_for_bootstrap
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import ConfigError

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_PATTERN = re.compile(r"[0-9a-fA-F]{32}")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_or_default(name: str, default: str) -> str:
    """Return the variable's value, treating an empty string as unset."""
    value = os.getenv(name)
    return value if value else default


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _dedupe(names: tuple[str, ...]) -> tuple[str, ...]:
    seen: list[str] = []
    for name in names:
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


def validate_encryption_key(key: str) -> bool:
    """Return True if key is a 32-character hexadecimal string."""
    return bool(ENCRYPTION_KEY_PATTERN.fullmatch(key))


class ReplicaType(Enum):
    """Supported replica target kinds."""

    FILE = "file"
    S3 = "s3"


class AppMode(Enum):
    """Where the web application stores uploaded files."""

    FS = "fs"
    S3 = "s3"


class AppProfile(Enum):
    """Deployment profile; docker enables the replication hooks."""

    LOCAL = "local"
    DOCKER = "docker"


@dataclass(frozen=True)
class BucketPermissions:
    """Flags granted to the access key on every bootstrapped bucket."""

    read: bool = False
    write: bool = False
    owner: bool = False


@dataclass(frozen=True)
class GarageConfig:
    """Storage cluster bootstrap configuration.

    Attributes:
        binary: Path to the cluster daemon CLI
        marker_file: Existence-only flag recording a completed bootstrap
        zone: Zone the node is assigned to
        capacity: Capacity hint for the layout assignment
        layout_version: Layout version token to apply
        access_key: Access key id to import
        secret_key: Secret key paired with access_key
        key_import_yes: Pass --yes to key import
        buckets: Bucket names to ensure, in order
        permissions: Flags granted to access_key on each bucket
        poll_interval_seconds: Delay between readiness probes
        poll_max_attempts: Readiness probe budget (None = poll forever)
    """

    binary: str = "/usr/local/bin/garage"
    marker_file: str = "/var/lib/garage/.initialized"
    zone: str = "dc1"
    capacity: str = "1G"
    layout_version: str = "1"
    access_key: str = ""
    secret_key: str = ""
    key_import_yes: bool = False
    buckets: tuple[str, ...] = ()
    permissions: BucketPermissions = field(default_factory=BucketPermissions)
    poll_interval_seconds: float = 1.0
    poll_max_attempts: int | None = None

    @classmethod
    def from_env(cls) -> GarageConfig:
        """Load configuration from environment variables."""
        buckets = _env_list("GARAGE_BUCKETS") or (
            os.getenv("S3_BUCKET", ""),
            os.getenv("LITESTREAM_BUCKET", ""),
        )
        max_attempts = os.getenv("GARAGE_POLL_MAX_ATTEMPTS")
        return cls(
            binary=_env_or_default("GARAGE_BINARY", "/usr/local/bin/garage"),
            marker_file=_env_or_default("GARAGE_MARKER_FILE", "/var/lib/garage/.initialized"),
            zone=_env_or_default("GARAGE_ZONE", "dc1"),
            capacity=_env_or_default("GARAGE_CAPACITY", "1G"),
            layout_version=_env_or_default("GARAGE_LAYOUT_VERSION", "1"),
            access_key=os.getenv("GARAGE_ACCESS_KEY", ""),
            secret_key=os.getenv("GARAGE_SECRET_KEY", ""),
            key_import_yes=_env_bool("GARAGE_KEY_IMPORT_YES"),
            buckets=_dedupe(tuple(buckets)),
            permissions=BucketPermissions(
                read=_env_bool("GARAGE_BUCKET_ALLOW_READ"),
                write=_env_bool("GARAGE_BUCKET_ALLOW_WRITE"),
                owner=_env_bool("GARAGE_BUCKET_ALLOW_OWNER"),
            ),
            poll_interval_seconds=float(_env_or_default("GARAGE_POLL_INTERVAL_SECONDS", "1")),
            poll_max_attempts=int(max_attempts) if max_attempts else None,
        )

    def validate_for_bootstrap(self) -> None:
        """Check the settings only the bootstrap command needs.

        Raises:
            ConfigError: If the access key pair or bucket list is missing.
        """
        if not self.access_key:
            raise ConfigError("GARAGE_ACCESS_KEY is required for bootstrap", "GARAGE_ACCESS_KEY")
        if not self.secret_key:
            raise ConfigError("GARAGE_SECRET_KEY is required for bootstrap", "GARAGE_SECRET_KEY")
        if not self.buckets:
            raise ConfigError(
                "At least one bucket is required (GARAGE_BUCKETS, S3_BUCKET or LITESTREAM_BUCKET)",
                "GARAGE_BUCKETS",
            )


@dataclass(frozen=True)
class ReplicaTargetConfig:
    """Replica target for the replication agent.

    Fully determined by the environment at synthesis time. Durations are
    human-readable strings ("5m", "24h") passed through to the agent.
    """

    kind: ReplicaType = ReplicaType.FILE
    path: str | None = None
    bucket: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    region: str | None = None
    endpoint: str | None = None
    skip_verify: bool = False
    force_path_style: bool = False
    sse: str | None = None
    sync_interval: str = "5m"
    snapshot_interval: str = "6h"
    retention: str = "168h"
    compress: str = "gzip"

    @classmethod
    def from_env(cls) -> ReplicaTargetConfig:
        """Load configuration from environment variables."""
        kind_str = _env_or_default("LITESTREAM_REPLICA_TYPE", "file").lower()
        try:
            kind = ReplicaType(kind_str)
        except ValueError:
            raise ConfigError(
                f"Unsupported replica type '{kind_str}'. Must be one of: file, s3",
                "LITESTREAM_REPLICA_TYPE",
            )

        common = dict(
            kind=kind,
            sync_interval=_env_or_default("LITESTREAM_SYNC_INTERVAL", "5m"),
            snapshot_interval=_env_or_default("LITESTREAM_SNAPSHOT_INTERVAL", "6h"),
            retention=_env_or_default("LITESTREAM_RETENTION", "168h"),
            compress=_env_or_default("LITESTREAM_COMPRESS", "gzip"),
        )
        if kind == ReplicaType.FILE:
            return cls(path=os.getenv("LITESTREAM_BACKUP_PATH") or None, **common)

        return cls(
            path=os.getenv("LITESTREAM_PATH") or None,
            bucket=os.getenv("LITESTREAM_BUCKET") or None,
            access_key_id=os.getenv("LITESTREAM_ACCESS_KEY_ID") or None,
            secret_access_key=os.getenv("LITESTREAM_SECRET_ACCESS_KEY") or None,
            region=os.getenv("LITESTREAM_REGION") or None,
            endpoint=os.getenv("LITESTREAM_ENDPOINT") or None,
            skip_verify=_env_bool("LITESTREAM_SKIP_VERIFY"),
            force_path_style=_env_bool("LITESTREAM_FORCE_PATH_STYLE"),
            sse=os.getenv("LITESTREAM_SSE") or None,
            **common,
        )


@dataclass(frozen=True)
class LitestreamConfig:
    """Replication agent and supervisor configuration.

    Attributes:
        binary: Path to the replication agent CLI
        config_path: Where the agent's YAML document is written (once)
        db_path: SQLite database kept replicated
        meta_path: Directory for the agent's metadata
        replica: Replica target settings
        levels: Compaction level intervals
        monitor_interval: How often the agent checks the WAL
        checkpoint_interval: Agent-driven checkpoint cadence
        busy_timeout: Agent busy timeout
        min_checkpoint_page_count: Page threshold for passive checkpoints
        max_checkpoint_page_count: Page threshold for forced checkpoints
        integrity_check: Run PRAGMA integrity_check before replicating
        health_timeout_seconds: Bound on one health query invocation
        checkpoint_interval_seconds: Cadence of the periodic checkpoint task
        health_check_interval_seconds: Cadence of the periodic health task
        sqlite_busy_timeout_ms: busy_timeout applied to our own connections
    """

    binary: str = "/litestream"
    config_path: str = "/tmp/litestream.yml"
    db_path: str = "/pb_data/data.db"
    meta_path: str | None = None
    replica: ReplicaTargetConfig = field(default_factory=ReplicaTargetConfig)
    levels: tuple[str, ...] = ("5m", "1h", "24h")
    monitor_interval: str = "1s"
    checkpoint_interval: str = "1m"
    busy_timeout: str = "1s"
    min_checkpoint_page_count: int = 1000
    max_checkpoint_page_count: int = 10000
    integrity_check: bool = True
    health_timeout_seconds: float = 10.0
    checkpoint_interval_seconds: float = 30.0
    health_check_interval_seconds: float = 30.0
    sqlite_busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> LitestreamConfig:
        """Load configuration from environment variables."""
        return cls(
            binary=_env_or_default("LITESTREAM_BINARY", "/litestream"),
            config_path=_env_or_default("LITESTREAM_CONFIG_PATH", "/tmp/litestream.yml"),
            db_path=_env_or_default("LITESTREAM_DB_PATH", "/pb_data/data.db"),
            meta_path=os.getenv("LITESTREAM_BACKUP_PATH") or None,
            replica=ReplicaTargetConfig.from_env(),
            levels=_env_list("LITESTREAM_LEVELS") or ("5m", "1h", "24h"),
            monitor_interval=_env_or_default("LITESTREAM_MONITOR_INTERVAL", "1s"),
            checkpoint_interval=_env_or_default("LITESTREAM_CHECKPOINT_INTERVAL", "1m"),
            busy_timeout=_env_or_default("LITESTREAM_BUSY_TIMEOUT", "1s"),
            min_checkpoint_page_count=int(
                _env_or_default("LITESTREAM_MIN_CHECKPOINT_PAGE_COUNT", "1000")
            ),
            max_checkpoint_page_count=int(
                _env_or_default("LITESTREAM_MAX_CHECKPOINT_PAGE_COUNT", "10000")
            ),
            integrity_check=_env_bool("LITESTREAM_INTEGRITY_CHECK", "true"),
            health_timeout_seconds=float(_env_or_default("LITESTREAM_HEALTH_TIMEOUT_SECONDS", "10")),
            checkpoint_interval_seconds=float(_env_or_default("CHECKPOINT_INTERVAL_SECONDS", "30")),
            health_check_interval_seconds=float(
                _env_or_default("HEALTH_CHECK_INTERVAL_SECONDS", "30")
            ),
            sqlite_busy_timeout_ms=int(_env_or_default("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )

    def validate_for_replication(self) -> None:
        """Check the replica target is complete enough to synthesize.

        Raises:
            ConfigError: If the replica kind's destination is missing.
        """
        if self.replica.kind == ReplicaType.FILE and not self.replica.path:
            raise ConfigError(
                "LITESTREAM_BACKUP_PATH is required when LITESTREAM_REPLICA_TYPE=file",
                "LITESTREAM_BACKUP_PATH",
            )
        if self.replica.kind == ReplicaType.S3 and not self.replica.bucket:
            raise ConfigError(
                "LITESTREAM_BUCKET is required when LITESTREAM_REPLICA_TYPE=s3",
                "LITESTREAM_BUCKET",
            )


@dataclass(frozen=True)
class AppConfig:
    """Web application host configuration.

    Attributes:
        mode: File storage mode (fs or s3)
        profile: Deployment profile; docker turns on replication hooks
        binary: Web application binary used for serve/superuser commands
        http_addr: Address passed to the web application's serve command
        admin_email: Superuser email upserted on start (docker profile)
        admin_password: Superuser password
        encryption_key: Optional settings encryption key (32 hex chars)
        write_gate_enabled: Reject writes while replication is unhealthy
        checkpoint_on_write: Checkpoint after each successful mutating request
        launch: Start the web application in the background when serving
    """

    mode: AppMode = AppMode.FS
    profile: AppProfile = AppProfile.LOCAL
    binary: str = "/pocketbase"
    http_addr: str = ":8090"
    admin_email: str = "admin@example.com"
    admin_password: str = "admin123"
    encryption_key: str | None = None
    write_gate_enabled: bool = True
    checkpoint_on_write: bool = True
    launch: bool = True

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        mode_str = _env_or_default("APP_MODE", "fs").lower()
        profile_str = _env_or_default("APP_PROFILE", "local").lower()
        try:
            mode = AppMode(mode_str)
        except ValueError:
            raise ConfigError(f"Invalid APP_MODE '{mode_str}'. Must be one of: fs, s3", "APP_MODE")
        try:
            profile = AppProfile(profile_str)
        except ValueError:
            raise ConfigError(
                f"Invalid APP_PROFILE '{profile_str}'. Must be one of: local, docker",
                "APP_PROFILE",
            )

        return cls(
            mode=mode,
            profile=profile,
            binary=_env_or_default("APP_BINARY", "/pocketbase"),
            http_addr=_env_or_default("APP_HTTP_ADDR", ":8090"),
            admin_email=_env_or_default("POCKETBASE_ADMIN_EMAIL", "admin@example.com"),
            admin_password=_env_or_default("POCKETBASE_ADMIN_PASSWORD", "admin123"),
            encryption_key=os.getenv("POCKETBASE_ENCRYPTION_KEY") or None,
            write_gate_enabled=_env_bool("WRITE_GATE_ENABLED", "true"),
            checkpoint_on_write=_env_bool("CHECKPOINT_ON_WRITE", "true"),
            launch=_env_bool("APP_LAUNCH", "true"),
        )

    @property
    def serve_command(self) -> list[str]:
        """Argument vector that runs the web application in the foreground."""
        return [self.binary, "serve", "--http", self.http_addr]

    @property
    def upstream_url(self) -> str:
        """Base URL the host forwards application traffic to.

        An empty or wildcard host in http_addr maps to the loopback address.
        """
        host, _, port = self.http_addr.rpartition(":")
        if host in ("", "0.0.0.0", "[::]"):
            host = "127.0.0.1"
        return f"http://{host}:{port}"


@dataclass(frozen=True)
class S3Config:
    """Object store used by the web application in s3 mode.

    Attributes:
        endpoint: Object store endpoint URL
        use_ssl: Force https (else http) on the endpoint
        region: Region name
        access_key: Access key id
        secret_key: Secret access key
        bucket: Bucket for uploaded files
        replica_bucket: Bucket holding database replicas
    """

    endpoint: str | None = None
    use_ssl: bool = False
    region: str = "us-east-1"
    access_key: str | None = None
    secret_key: str | None = None
    bucket: str | None = None
    replica_bucket: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            endpoint=os.getenv("S3_ENDPOINT") or None,
            use_ssl=_env_bool("S3_USE_SSL"),
            region=_env_or_default("S3_REGION", "us-east-1"),
            access_key=os.getenv("S3_ACCESS_KEY") or None,
            secret_key=os.getenv("S3_SECRET_KEY") or None,
            bucket=os.getenv("S3_BUCKET") or None,
            replica_bucket=os.getenv("LITESTREAM_BUCKET") or None,
        )

    @property
    def bucket_names(self) -> tuple[str, ...]:
        return _dedupe((self.bucket or "", self.replica_bucket or ""))


class HttpConfig(BaseSettings):
    """HTTP host configuration loaded from HTTP_* variables."""

    host: str = Field(default="0.0.0.0", description="Bind host for the HTTP host")
    port: int = Field(default=8081, description="Bind port for the HTTP host")

    model_config = {"env_prefix": "HTTP_", "frozen": True}

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls()


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=_env_or_default("LOG_LEVEL", "INFO"),
            log_format=_env_or_default("LOG_FORMAT", "json").lower(),
        )


@dataclass
class ContainerConfig:
    """Complete container configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        garage: Storage cluster bootstrap configuration
        litestream: Replication configuration
        app: Web application host configuration
        s3: Object store configuration for s3 mode
        http: HTTP host configuration
        observability: Logging configuration
    """

    garage: GarageConfig = field(default_factory=GarageConfig)
    litestream: LitestreamConfig = field(default_factory=LitestreamConfig)
    app: AppConfig = field(default_factory=AppConfig)
    s3: S3Config = field(default_factory=S3Config)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ContainerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ContainerConfig with all sections populated from environment.

        Raises:
            ConfigError: If required configuration is missing or invalid.
        """
        try:
            config = cls(
                garage=GarageConfig.from_env(),
                litestream=LitestreamConfig.from_env(),
                app=AppConfig.from_env(),
                s3=S3Config.from_env(),
                http=HttpConfig.from_env(),
                observability=ObservabilityConfig.from_env(),
            )
        except ConfigError:
            raise
        except ValueError as e:
            raise ConfigError(f"Malformed numeric setting: {e}")

        config.validate()
        return config

    @property
    def replication_enabled(self) -> bool:
        return self.app.profile == AppProfile.DOCKER

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigError: If configuration is invalid.
        """
        key = self.app.encryption_key
        if key is not None and not validate_encryption_key(key):
            raise ConfigError(
                "POCKETBASE_ENCRYPTION_KEY must be a 32-character hexadecimal string "
                "(generated with 'openssl rand -hex 16')",
                "POCKETBASE_ENCRYPTION_KEY",
            )

        if self.app.mode == AppMode.S3 and not self.s3.endpoint:
            raise ConfigError("S3_ENDPOINT is required when APP_MODE=s3", "S3_ENDPOINT")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Container configuration loaded",
            extra={
                "garage_zone": self.garage.zone,
                "garage_capacity": self.garage.capacity,
                "garage_buckets": list(self.garage.buckets),
                "garage_access_key": self.garage.access_key or None,
                "garage_secret_key_length": len(self.garage.secret_key),
                "replica_type": self.litestream.replica.kind.value,
                "db_path": self.litestream.db_path,
                "litestream_config_path": self.litestream.config_path,
                "app_mode": self.app.mode.value,
                "app_profile": self.app.profile.value,
                "encryption_key_set": self.app.encryption_key is not None,
                "log_level": self.observability.log_level,
            },
        )
