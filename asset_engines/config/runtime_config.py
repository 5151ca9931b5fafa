"""Runtime configuration helpers for asset engines."""
from __future__ import annotations

import os
from typing import Any, Dict, Optional

DEFAULT_JPEG_QUALITY = 90
DEFAULT_PNG_COMPRESS_LEVEL = 6
DEFAULT_S3_MAX_POOL_CONNECTIONS = 10
DEFAULT_STORAGE_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_FILTER_RADIUS = 100
DEFAULT_MAX_OUTPUT_DIMENSION = 8192
DEFAULT_MAX_OUTPUT_PIXELS = 40_000_000


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(name, default)


def _get_int(name: str, default: int, low: int, high: int) -> int:
    raw = _get_env(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")
    return value


def get_env() -> Optional[str]:
    return _get_env("ENV") or _get_env("APP_ENV")


def get_storage_config_path() -> Optional[str]:
    """JSON or YAML file holding the StorageReference records."""
    return _get_env("ASSET_STORES_CONFIG")


def get_jpeg_quality() -> int:
    return _get_int("ASSET_JPEG_QUALITY", DEFAULT_JPEG_QUALITY, 1, 100)


def get_png_compress_level() -> int:
    return _get_int("ASSET_PNG_COMPRESS_LEVEL", DEFAULT_PNG_COMPRESS_LEVEL, 0, 9)


def get_s3_max_pool_connections() -> int:
    return _get_int("ASSET_S3_MAX_POOL_CONNECTIONS", DEFAULT_S3_MAX_POOL_CONNECTIONS, 1, 1000)


def get_max_filter_radius() -> int:
    """Largest blur/rank radius a query may ask for."""
    return _get_int("ASSET_MAX_FILTER_RADIUS", DEFAULT_MAX_FILTER_RADIUS, 1, 10_000)


def get_max_output_dimension() -> int:
    return _get_int("ASSET_MAX_OUTPUT_DIMENSION", DEFAULT_MAX_OUTPUT_DIMENSION, 1, 65_535)


def get_max_output_pixels() -> int:
    return _get_int("ASSET_MAX_OUTPUT_PIXELS", DEFAULT_MAX_OUTPUT_PIXELS, 1, 1_000_000_000)


def get_storage_timeout_seconds() -> float:
    raw = _get_env("ASSET_STORAGE_TIMEOUT_SECONDS")
    if not raw:
        return DEFAULT_STORAGE_TIMEOUT_SECONDS
    return float(raw)


def get_gcs_project() -> Optional[str]:
    return _get_env("GCP_PROJECT_ID") or _get_env("GCP_PROJECT")


def get_aws_region() -> Optional[str]:
    return _get_env("AWS_REGION") or _get_env("AWS_DEFAULT_REGION")


def get_azure_connection_string() -> Optional[str]:
    return _get_env("AZURE_STORAGE_CONNECTION_STRING")


def config_snapshot() -> Dict[str, Any]:
    return {
        "env": get_env(),
        "storage_config_path": get_storage_config_path(),
        "jpeg_quality": get_jpeg_quality(),
        "png_compress_level": get_png_compress_level(),
        "s3_max_pool_connections": get_s3_max_pool_connections(),
        "max_filter_radius": get_max_filter_radius(),
        "max_output_dimension": get_max_output_dimension(),
        "max_output_pixels": get_max_output_pixels(),
        "storage_timeout_seconds": get_storage_timeout_seconds(),
        "gcp_project": get_gcs_project(),
        "aws_region": get_aws_region(),
    }
