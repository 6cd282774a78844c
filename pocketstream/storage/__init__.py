"""Object-store provisioning for the web application's s3 mode."""

from .buckets import ensure_buckets, normalize_endpoint

__all__ = ["ensure_buckets", "normalize_endpoint"]
