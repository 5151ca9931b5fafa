"""Blob storage engine: local filesystem and cloud object stores behind one interface."""
from asset_engines.storage.filesystem_adapter import FileSystemStorageBackend, StorageBackend
from asset_engines.storage.models import StorageReference
from asset_engines.storage.registry import StorageRegistry, set_storage_registry, storage_registry

__all__ = [
    "FileSystemStorageBackend",
    "StorageBackend",
    "StorageReference",
    "StorageRegistry",
    "set_storage_registry",
    "storage_registry",
]
