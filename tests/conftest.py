"""
Shared fixtures for pocketstream tests.

Configuration is read only from the environment, so every test starts from a
clean slate for the variables pocketstream understands.
"""

import pytest

POCKETSTREAM_ENV_VARS = (
    "GARAGE_BINARY",
    "GARAGE_MARKER_FILE",
    "GARAGE_ZONE",
    "GARAGE_CAPACITY",
    "GARAGE_LAYOUT_VERSION",
    "GARAGE_ACCESS_KEY",
    "GARAGE_SECRET_KEY",
    "GARAGE_KEY_IMPORT_YES",
    "GARAGE_BUCKETS",
    "GARAGE_BUCKET_ALLOW_READ",
    "GARAGE_BUCKET_ALLOW_WRITE",
    "GARAGE_BUCKET_ALLOW_OWNER",
    "GARAGE_POLL_INTERVAL_SECONDS",
    "GARAGE_POLL_MAX_ATTEMPTS",
    "LITESTREAM_BINARY",
    "LITESTREAM_CONFIG_PATH",
    "LITESTREAM_DB_PATH",
    "LITESTREAM_REPLICA_TYPE",
    "LITESTREAM_BACKUP_PATH",
    "LITESTREAM_BUCKET",
    "LITESTREAM_PATH",
    "LITESTREAM_ACCESS_KEY_ID",
    "LITESTREAM_SECRET_ACCESS_KEY",
    "LITESTREAM_REGION",
    "LITESTREAM_ENDPOINT",
    "LITESTREAM_SKIP_VERIFY",
    "LITESTREAM_FORCE_PATH_STYLE",
    "LITESTREAM_SSE",
    "LITESTREAM_SYNC_INTERVAL",
    "LITESTREAM_SNAPSHOT_INTERVAL",
    "LITESTREAM_RETENTION",
    "LITESTREAM_COMPRESS",
    "LITESTREAM_LEVELS",
    "LITESTREAM_MONITOR_INTERVAL",
    "LITESTREAM_CHECKPOINT_INTERVAL",
    "LITESTREAM_BUSY_TIMEOUT",
    "LITESTREAM_MIN_CHECKPOINT_PAGE_COUNT",
    "LITESTREAM_MAX_CHECKPOINT_PAGE_COUNT",
    "LITESTREAM_INTEGRITY_CHECK",
    "LITESTREAM_HEALTH_TIMEOUT_SECONDS",
    "CHECKPOINT_INTERVAL_SECONDS",
    "HEALTH_CHECK_INTERVAL_SECONDS",
    "SQLITE_BUSY_TIMEOUT_MS",
    "APP_MODE",
    "APP_PROFILE",
    "APP_BINARY",
    "APP_HTTP_ADDR",
    "POCKETBASE_ADMIN_EMAIL",
    "POCKETBASE_ADMIN_PASSWORD",
    "POCKETBASE_ENCRYPTION_KEY",
    "WRITE_GATE_ENABLED",
    "CHECKPOINT_ON_WRITE",
    "APP_LAUNCH",
    "S3_ENDPOINT",
    "S3_USE_SSL",
    "S3_REGION",
    "S3_ACCESS_KEY",
    "S3_SECRET_KEY",
    "S3_BUCKET",
    "HTTP_HOST",
    "HTTP_PORT",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove pocketstream settings inherited from the host environment."""
    for name in POCKETSTREAM_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield monkeypatch
