"""Storage registry: logical store name (+ namespace) -> configured backend.

References are loaded once at startup; backends are created once per
``(store_name, namespace)`` and cached for the process lifetime. After warm-up,
lookups are plain dict reads and safe for concurrent requests.
"""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from asset_engines.common.errors import ConfigurationError, StoreNotFound
from asset_engines.storage.cloud_adapters import (
    AzureBlobStorageBackend,
    GCSStorageBackend,
    S3StorageBackend,
)
from asset_engines.storage.filesystem_adapter import FileSystemStorageBackend, StorageBackend
from asset_engines.storage.models import StorageReference

logger = logging.getLogger(__name__)

BackendFactory = Callable[[StorageReference, str], StorageBackend]


def _split_bucket(root_path: str) -> Tuple[Optional[str], str]:
    """``s3://bucket/prefix`` -> ("bucket", "prefix"); plain paths have no bucket."""
    if "://" not in root_path:
        return None, root_path
    _, rest = root_path.split("://", 1)
    bucket, _, prefix = rest.partition("/")
    return bucket or None, prefix


def _bucket_and_prefix(reference: StorageReference, *bucket_keys: str) -> Tuple[str, str]:
    url_bucket, prefix = _split_bucket(reference.root_path)
    for key in bucket_keys:
        value = reference.parameters.get(key)
        if value:
            return str(value), prefix
    if url_bucket:
        return url_bucket, prefix
    raise ConfigurationError(
        f"store {reference.name!r} has no {bucket_keys[0]} configured",
        details={"store": reference.name, "provider": reference.provider},
    )


def _s3_backend(reference: StorageReference, namespace: str) -> StorageBackend:
    bucket, prefix = _bucket_and_prefix(reference, "bucket")
    params = reference.parameters
    return S3StorageBackend(
        bucket=bucket,
        prefix=prefix,
        namespace=namespace,
        region=params.get("region"),
        endpoint_url=params.get("endpoint_url"),
        access_key_id=params.get("access_key_id"),
        secret_access_key=params.get("secret_access_key"),
    )


def _gcs_backend(reference: StorageReference, namespace: str) -> StorageBackend:
    bucket, prefix = _bucket_and_prefix(reference, "bucket")
    return GCSStorageBackend(
        bucket=bucket,
        prefix=prefix,
        namespace=namespace,
        project=reference.parameters.get("project"),
    )


def _azure_backend(reference: StorageReference, namespace: str) -> StorageBackend:
    container, prefix = _bucket_and_prefix(reference, "container", "bucket")
    return AzureBlobStorageBackend(
        container=container,
        prefix=prefix,
        namespace=namespace,
        connection_string=reference.parameters.get("connection_string"),
    )


_CLOUD_FACTORIES: Dict[str, BackendFactory] = {
    "s3": _s3_backend,
    "aws": _s3_backend,
    "gcs": _gcs_backend,
    "gcp": _gcs_backend,
    "google": _gcs_backend,
    "azure": _azure_backend,
    "azure_blob": _azure_backend,
}


def create_backend(reference: StorageReference, namespace: str = "") -> StorageBackend:
    """Build the backend for one reference; selected by (type, provider), never inspected later."""
    if reference.type == "local":
        if not reference.root_path:
            raise ConfigurationError(
                f"local store {reference.name!r} requires root_path",
                details={"store": reference.name},
            )
        return FileSystemStorageBackend(reference.root_path, namespace)
    factory = _CLOUD_FACTORIES.get(reference.provider)
    if factory is None:
        raise ConfigurationError(
            f"unsupported cloud provider {reference.provider!r} for store {reference.name!r}. "
            f"Use one of: {', '.join(sorted(_CLOUD_FACTORIES))}.",
            details={"store": reference.name, "provider": reference.provider},
        )
    return factory(reference, namespace)


def load_storage_records(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Read StorageReference records from a JSON or YAML file.

    Accepts a bare list or the export envelope ``{"cloud_store": [...]}``.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read storage config {path}: {exc}") from exc
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"storage config {path} is not valid: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("cloud_store", data.get("stores"))
    if not isinstance(data, list):
        raise ConfigurationError(f"storage config {path} must contain a list of stores")
    return data


class StorageRegistry:
    """Owns StorageReferences and the lifecycle of their backends."""

    def __init__(
        self,
        references: Iterable[StorageReference] = (),
        backend_factory: BackendFactory = create_backend,
    ) -> None:
        self._references: Dict[str, StorageReference] = {}
        self._backends: Dict[Tuple[str, str], StorageBackend] = {}
        self._factory = backend_factory
        self._lock = threading.Lock()
        for reference in references:
            self.register(reference)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        variables: Optional[Mapping[str, str]] = None,
        backend_factory: BackendFactory = create_backend,
    ) -> "StorageRegistry":
        references = [StorageReference.from_record(record, variables) for record in records]
        return cls(references, backend_factory=backend_factory)

    @classmethod
    def from_config_file(
        cls,
        path: Union[str, Path],
        variables: Optional[Mapping[str, str]] = None,
    ) -> "StorageRegistry":
        return cls.from_records(load_storage_records(path), variables)

    def register(self, reference: StorageReference) -> StorageReference:
        with self._lock:
            if reference.name in self._references:
                raise ConfigurationError(
                    f"duplicate storage reference {reference.name!r}",
                    details={"store": reference.name},
                )
            self._references[reference.name] = reference
        logger.info("Registered store %s (type=%s provider=%s)", reference.name, reference.type, reference.provider)
        return reference

    def names(self) -> List[str]:
        return sorted(self._references)

    def reference(self, store_name: str) -> StorageReference:
        reference = self._references.get(store_name)
        if reference is None:
            raise StoreNotFound(
                f"storage reference {store_name!r} is not configured",
                details={"store": store_name},
            )
        return reference

    def backend(self, store_name: str, namespace: str = "") -> StorageBackend:
        """Resolve (store_name, namespace) to its cached backend instance."""
        key = (store_name, namespace or "")
        backend = self._backends.get(key)
        if backend is not None:
            return backend
        with self._lock:
            backend = self._backends.get(key)
            if backend is None:
                reference = self.reference(store_name)
                backend = self._factory(reference, namespace or "")
                self._backends[key] = backend
                logger.debug("Created backend for store=%s namespace=%s", store_name, namespace)
        return backend

    def validate_bindings(self, bindings: Iterable[Tuple[str, str]]) -> None:
        """Warm every (store_name, namespace) pair at startup; a miss is a configuration error."""
        for store_name, namespace in bindings:
            try:
                self.backend(store_name, namespace)
            except StoreNotFound as exc:
                raise ConfigurationError(
                    f"column binding references unknown store {store_name!r}",
                    details={"store": store_name, "namespace": namespace},
                ) from exc

    def remove(self, store_name: str) -> None:
        with self._lock:
            self._references.pop(store_name, None)
            stale = [key for key in self._backends if key[0] == store_name]
            backends = [self._backends.pop(key) for key in stale]
        for backend in backends:
            _close_backend(backend)
        logger.info("Removed store %s", store_name)

    def close(self) -> None:
        with self._lock:
            backends = list(self._backends.values())
            self._backends.clear()
        for backend in backends:
            _close_backend(backend)


def _close_backend(backend: StorageBackend) -> None:
    close = getattr(backend, "close", None)
    if callable(close):
        close()


_storage_registry: Optional[StorageRegistry] = None


def storage_registry() -> StorageRegistry:
    """Get or initialize the process-wide storage registry.

    Production loads ASSET_STORES_CONFIG; tests call set_storage_registry() first.
    """
    global _storage_registry
    if _storage_registry is None:
        from asset_engines.config import runtime_config

        path = runtime_config.get_storage_config_path()
        if not path:
            raise ConfigurationError(
                "ASSET_STORES_CONFIG not set. "
                "Point it at a JSON/YAML file of store records or call set_storage_registry()."
            )
        _storage_registry = StorageRegistry.from_config_file(path)
    return _storage_registry


def set_storage_registry(registry: Optional[StorageRegistry]) -> None:
    """Set the storage registry (for testing)."""
    global _storage_registry
    _storage_registry = registry
