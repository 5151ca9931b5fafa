"""Typed error taxonomy shared by storage, descriptor, filter and pipeline engines.

Every error carries a machine-readable ``code``, the HTTP status it maps to, and a
``details`` dict with enough context (filter name, storage key, descriptor name) to
diagnose a failure without retrying blindly.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class AssetEngineError(Exception):
    """Base class for every error surfaced by the asset engines."""

    code = "asset.error"
    http_status = 500
    retryable = False
    resource_kind: Optional[str] = None

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        return self.message


# ===== Configuration =====

class ConfigurationError(AssetEngineError):
    """Bad or missing StorageReference; fatal at startup."""

    code = "asset.configuration_error"
    http_status = 500
    resource_kind = "storage_reference"


# ===== Not found =====

class NotFoundError(AssetEngineError):
    code = "asset.not_found"
    http_status = 404


class EntityNotFound(NotFoundError):
    code = "asset.entity_not_found"
    resource_kind = "entity"


class ColumnNotFound(NotFoundError):
    code = "asset.column_not_found"
    resource_kind = "column"


class DescriptorNotFound(NotFoundError):
    code = "asset.descriptor_not_found"
    resource_kind = "asset_descriptor"


class ObjectNotFound(NotFoundError):
    """A storage key that was never written (or was deleted)."""

    code = "storage.object_not_found"
    resource_kind = "object_store"


class StoreNotFound(NotFoundError):
    """A column references a store that is no longer configured."""

    code = "storage.store_not_found"
    resource_kind = "storage_reference"


# ===== Validation (caller's fault, never retried) =====

class ValidationError(AssetEngineError):
    code = "asset.validation_error"
    http_status = 400


class InvalidFilterArgument(ValidationError):
    code = "image_filters.invalid_argument"
    resource_kind = "filter_chain"

    def __init__(self, filter_name: str, token: str, reason: str = "") -> None:
        message = f"invalid argument {token!r} for filter {filter_name!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details={"filter": filter_name, "token": token})
        self.filter_name = filter_name
        self.token = token


class MalformedDescriptor(ValidationError):
    code = "asset_descriptor.malformed"
    resource_kind = "asset_descriptor"


class InvalidPayload(ValidationError):
    code = "asset_descriptor.invalid_payload"
    resource_kind = "upload"


class InvalidKey(ValidationError):
    code = "storage.invalid_key"
    resource_kind = "object_store"


# ===== Storage access =====

class StoragePermissionDenied(AssetEngineError):
    code = "storage.permission_denied"
    http_status = 403
    resource_kind = "object_store"


class TransientStorageError(AssetEngineError):
    """Network or disk hiccup. Safe to retry with backoff at the caller."""

    code = "storage.unavailable"
    http_status = 503
    retryable = True
    resource_kind = "object_store"


class StorageWriteFailed(TransientStorageError):
    code = "asset_descriptor.storage_write_failed"


# ===== Pipeline =====

class UnsupportedFormatError(AssetEngineError):
    code = "image_pipeline.unsupported_format"
    http_status = 415
    resource_kind = "image"


class PipelineCancelled(AssetEngineError):
    """The calling context went away; partial results are discarded."""

    code = "asset.cancelled"
    http_status = 499
