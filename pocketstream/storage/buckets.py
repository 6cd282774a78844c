"""
Object-store bucket provisioning for the web application's s3 mode.

Buckets are created through the S3 API. Creating a bucket we already own is
not an error: a failed create followed by a successful head is treated as
"already provisioned".
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from urllib.parse import urlsplit, urlunsplit

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config
from ..errors import PocketstreamError

logger = logging.getLogger(__name__)


def normalize_endpoint(endpoint: str, use_ssl: bool) -> str:
    """Force the endpoint scheme to https (use_ssl) or http."""
    if "://" not in endpoint:
        endpoint = f"//{endpoint}"
    parts = urlsplit(endpoint)
    scheme = "https" if use_ssl else "http"
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


async def ensure_buckets(s3_config: S3Config, names: Sequence[str] | None = None) -> list[str]:
    """Create each bucket unless we already own it.

    Args:
        s3_config: Object store connection settings
        names: Buckets to ensure (defaults to the configured app and replica buckets)

    Returns:
        Names of the buckets created by this call.

    Raises:
        PocketstreamError: If a bucket can neither be created nor found.
    """
    if not s3_config.endpoint:
        raise PocketstreamError("S3_ENDPOINT is required to provision buckets")

    names = list(names if names is not None else s3_config.bucket_names)
    endpoint = normalize_endpoint(s3_config.endpoint, s3_config.use_ssl)

    client_kwargs = {
        "region_name": s3_config.region,
        "endpoint_url": endpoint,
        "config": AioConfig(s3={"addressing_style": "path"}),
    }
    if s3_config.access_key:
        client_kwargs["aws_access_key_id"] = s3_config.access_key
        client_kwargs["aws_secret_access_key"] = s3_config.secret_key

    created: list[str] = []
    session = get_session()
    async with session.create_client("s3", **client_kwargs) as client:
        for name in names:
            try:
                await client.create_bucket(Bucket=name)
            except (ClientError, BotoCoreError) as e:
                try:
                    await client.head_bucket(Bucket=name)
                except (ClientError, BotoCoreError):
                    raise PocketstreamError(f"Failed to create bucket {name}: {e}") from e
                logger.info(f"We already own {name}")
                continue

            logger.info(f"Successfully created {name}")
            created.append(name)

    return created
