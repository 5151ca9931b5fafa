from __future__ import annotations

import json
import threading
from unittest.mock import MagicMock

import pytest

from asset_engines.common.errors import ConfigurationError, StoreNotFound
from asset_engines.storage.cloud_adapters import S3StorageBackend
from asset_engines.storage.filesystem_adapter import FileSystemStorageBackend
from asset_engines.storage.models import StorageReference, expand_placeholders
from asset_engines.storage.registry import (
    StorageRegistry,
    create_backend,
    load_storage_records,
    set_storage_registry,
    storage_registry,
)


def _gallery_record(root: str = "${rootPath}gallery") -> dict:
    return {
        "name": "gallery",
        "store_type": "local",
        "store_provider": "local",
        "root_path": root,
        "store_parameters": "{}",
    }


def test_reference_from_exported_record_expands_root_path(tmp_path):
    reference = StorageReference.from_record(_gallery_record(), {"rootPath": f"{tmp_path}/"})
    assert reference.name == "gallery"
    assert reference.type == "local"
    assert reference.root_path == f"{tmp_path}/gallery"
    assert reference.parameters == {}


def test_store_parameters_json_string_is_decoded():
    reference = StorageReference.from_record(
        {
            "name": "media",
            "store_type": "cloud",
            "store_provider": "S3",
            "root_path": "s3://bucket/prefix",
            "store_parameters": json.dumps({"region": "eu-west-1"}),
        }
    )
    assert reference.provider == "s3"
    assert reference.parameters == {"region": "eu-west-1"}


def test_unresolved_placeholder_is_configuration_error(monkeypatch):
    monkeypatch.delenv("missingVar", raising=False)
    with pytest.raises(ConfigurationError) as exc_info:
        expand_placeholders("${missingVar}/files", store_name="gallery")
    assert exc_info.value.details["placeholder"] == "missingVar"


def test_invalid_store_type_is_configuration_error():
    with pytest.raises(ConfigurationError):
        StorageReference.from_record({"name": "x", "store_type": "tape", "root_path": "/tmp"})


def test_local_reference_resolves_to_filesystem_backend(tmp_path):
    registry = StorageRegistry.from_records([_gallery_record()], {"rootPath": f"{tmp_path}/"})
    backend = registry.backend("gallery", "images")
    assert isinstance(backend, FileSystemStorageBackend)
    backend.put("a.png", b"x")
    assert (tmp_path / "gallery" / "images" / "a.png").exists()


def test_backend_is_cached_per_store_and_namespace(tmp_path):
    registry = StorageRegistry.from_records([_gallery_record(str(tmp_path))])
    assert registry.backend("gallery", "images") is registry.backend("gallery", "images")
    assert registry.backend("gallery", "images") is not registry.backend("gallery", "thumbs")


def test_concurrent_lookups_create_one_backend(tmp_path):
    factory = MagicMock(side_effect=lambda reference, namespace: object())
    registry = StorageRegistry(
        [StorageReference.from_record(_gallery_record(str(tmp_path)))], backend_factory=factory
    )
    results = []
    threads = [
        threading.Thread(target=lambda: results.append(registry.backend("gallery", "images")))
        for _ in range(16)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert factory.call_count == 1
    assert len({id(result) for result in results}) == 1


def test_unknown_store_is_store_not_found(tmp_path):
    registry = StorageRegistry.from_records([_gallery_record(str(tmp_path))])
    with pytest.raises(StoreNotFound):
        registry.backend("nope")


def test_duplicate_names_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        StorageRegistry.from_records([_gallery_record(str(tmp_path)), _gallery_record(str(tmp_path))])


def test_validate_bindings_flags_missing_store(tmp_path):
    registry = StorageRegistry.from_records([_gallery_record(str(tmp_path))])
    registry.validate_bindings([("gallery", "images")])
    with pytest.raises(ConfigurationError) as exc_info:
        registry.validate_bindings([("gallery", "images"), ("archive", "docs")])
    assert exc_info.value.details["store"] == "archive"


def test_cloud_reference_selects_provider_backend():
    reference = StorageReference.from_record(
        {
            "name": "media",
            "store_type": "cloud",
            "store_provider": "s3",
            "root_path": "s3://media-bucket/prod",
            "store_parameters": {"region": "us-east-1"},
        }
    )
    backend = create_backend(reference, "images")
    assert isinstance(backend, S3StorageBackend)
    assert backend.bucket == "media-bucket"
    assert backend.object_name("a.png") == "prod/images/a.png"


def test_unsupported_provider_is_configuration_error():
    reference = StorageReference.from_record(
        {"name": "odd", "store_type": "cloud", "store_provider": "ftp", "root_path": "ftp://host"}
    )
    with pytest.raises(ConfigurationError):
        create_backend(reference)


def test_local_reference_without_root_is_configuration_error():
    reference = StorageReference.from_record({"name": "bare", "store_type": "local", "root_path": ""})
    with pytest.raises(ConfigurationError):
        create_backend(reference)


def test_remove_closes_cached_backends(tmp_path):
    closable = MagicMock()
    registry = StorageRegistry(
        [StorageReference.from_record(_gallery_record(str(tmp_path)))],
        backend_factory=lambda reference, namespace: closable,
    )
    registry.backend("gallery")
    registry.remove("gallery")
    closable.close.assert_called_once()
    with pytest.raises(StoreNotFound):
        registry.reference("gallery")


def test_load_records_from_yaml_envelope(tmp_path):
    config = tmp_path / "stores.yaml"
    config.write_text(
        "cloud_store:\n"
        "  - name: gallery\n"
        "    store_type: local\n"
        f"    root_path: {tmp_path}/gallery\n"
    )
    records = load_storage_records(config)
    assert records[0]["name"] == "gallery"


def test_load_records_rejects_non_list(tmp_path):
    config = tmp_path / "stores.json"
    config.write_text(json.dumps({"name": "gallery"}))
    with pytest.raises(ConfigurationError):
        load_storage_records(config)


def test_default_registry_loads_from_env(tmp_path, monkeypatch):
    config = tmp_path / "stores.json"
    config.write_text(json.dumps([_gallery_record(str(tmp_path))]))
    monkeypatch.setenv("ASSET_STORES_CONFIG", str(config))
    set_storage_registry(None)
    try:
        assert storage_registry().names() == ["gallery"]
    finally:
        set_storage_registry(None)


def test_default_registry_without_config_is_configuration_error(monkeypatch):
    monkeypatch.delenv("ASSET_STORES_CONFIG", raising=False)
    set_storage_registry(None)
    with pytest.raises(ConfigurationError):
        storage_registry()
