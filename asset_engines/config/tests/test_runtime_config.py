import pytest

from asset_engines.config import runtime_config


def test_defaults_when_unset(monkeypatch):
    for name in ("ASSET_JPEG_QUALITY", "ASSET_PNG_COMPRESS_LEVEL", "ASSET_S3_MAX_POOL_CONNECTIONS", "ASSET_STORAGE_TIMEOUT_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    assert runtime_config.get_jpeg_quality() == runtime_config.DEFAULT_JPEG_QUALITY
    assert runtime_config.get_png_compress_level() == runtime_config.DEFAULT_PNG_COMPRESS_LEVEL
    assert runtime_config.get_s3_max_pool_connections() == runtime_config.DEFAULT_S3_MAX_POOL_CONNECTIONS
    assert runtime_config.get_storage_timeout_seconds() == runtime_config.DEFAULT_STORAGE_TIMEOUT_SECONDS


def test_out_of_range_values_are_rejected(monkeypatch):
    monkeypatch.setenv("ASSET_JPEG_QUALITY", "101")
    with pytest.raises(ValueError):
        runtime_config.get_jpeg_quality()
    monkeypatch.setenv("ASSET_PNG_COMPRESS_LEVEL", "fast")
    with pytest.raises(ValueError):
        runtime_config.get_png_compress_level()


def test_gcp_project_prefers_project_id(monkeypatch):
    monkeypatch.setenv("GCP_PROJECT_ID", "primary")
    monkeypatch.setenv("GCP_PROJECT", "fallback")
    assert runtime_config.get_gcs_project() == "primary"
    monkeypatch.delenv("GCP_PROJECT_ID")
    assert runtime_config.get_gcs_project() == "fallback"


def test_config_snapshot_keys(monkeypatch):
    monkeypatch.setenv("ASSET_STORES_CONFIG", "/etc/assets/stores.yaml")
    snapshot = runtime_config.config_snapshot()
    assert snapshot["storage_config_path"] == "/etc/assets/stores.yaml"
    assert set(snapshot) >= {"jpeg_quality", "png_compress_level", "s3_max_pool_connections", "aws_region"}


def test_output_limits(monkeypatch):
    for name in ("ASSET_MAX_FILTER_RADIUS", "ASSET_MAX_OUTPUT_DIMENSION", "ASSET_MAX_OUTPUT_PIXELS"):
        monkeypatch.delenv(name, raising=False)
    assert runtime_config.get_max_filter_radius() == runtime_config.DEFAULT_MAX_FILTER_RADIUS
    assert runtime_config.get_max_output_dimension() == runtime_config.DEFAULT_MAX_OUTPUT_DIMENSION
    assert runtime_config.get_max_output_pixels() == runtime_config.DEFAULT_MAX_OUTPUT_PIXELS
    monkeypatch.setenv("ASSET_MAX_OUTPUT_DIMENSION", "0")
    with pytest.raises(ValueError):
        runtime_config.get_max_output_dimension()
