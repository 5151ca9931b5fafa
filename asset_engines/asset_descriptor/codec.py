"""Column value codec for asset descriptors, including one-shot upload ingestion.

A column holding attachments persists a JSON array of descriptor objects. Uploads
arrive inline as base64 data URIs and are written to storage exactly once, then
replaced by the resulting descriptor before the row is committed.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import mimetypes
import re
import uuid
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Set, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from asset_engines.asset_descriptor.models import AssetDescriptor, INLINE_FIELDS, UploadPayload
from asset_engines.common.errors import (
    AssetEngineError,
    InvalidPayload,
    MalformedDescriptor,
    ObjectNotFound,
    StorageWriteFailed,
)
from asset_engines.storage.filesystem_adapter import StorageBackend

logger = logging.getLogger(__name__)

_SAFE_EXTENSION = re.compile(r"^[a-z0-9]{1,16}$")
DEFAULT_MIME_TYPE = "application/octet-stream"

ColumnItem = Union[AssetDescriptor, UploadPayload, dict]


def decode_descriptors(column_value: Any) -> List[AssetDescriptor]:
    """Decode a persisted column value into descriptors, in stored order."""
    if column_value is None or column_value == "" or column_value == b"":
        return []
    items = column_value
    if isinstance(column_value, (str, bytes, bytearray)):
        try:
            items = json.loads(column_value)
        except (ValueError, UnicodeDecodeError) as exc:
            raise MalformedDescriptor(f"column value is not valid JSON: {exc}") from exc
    if items is None:
        return []
    if not isinstance(items, list):
        raise MalformedDescriptor(
            f"column value must be a JSON array, got {type(items).__name__}"
        )
    return [_decode_item(index, item) for index, item in enumerate(items)]


def _decode_item(index: int, item: Any) -> AssetDescriptor:
    if isinstance(item, AssetDescriptor):
        return item
    if not isinstance(item, dict):
        raise MalformedDescriptor(
            f"descriptor #{index} must be an object", details={"index": index}
        )
    data = {k: v for k, v in item.items() if k not in INLINE_FIELDS}
    try:
        return AssetDescriptor.model_validate(data)
    except PydanticValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise MalformedDescriptor(
            f"descriptor #{index} is missing or has non-string {', '.join(fields) or 'fields'}",
            details={"index": index, "fields": fields, "name": item.get("name")},
        ) from exc


def encode_descriptors(descriptors: Iterable[AssetDescriptor]) -> str:
    """Inverse of decode_descriptors; inline payloads are never written back."""
    return json.dumps([descriptor.to_column() for descriptor in descriptors])


def derive_storage_key(reference_id: str, column_name: str, name: str) -> str:
    """Deterministic key: same (row, column, filename) -> same key, unique otherwise."""
    digest = hashlib.sha256(
        "\x00".join((str(reference_id), column_name, name)).encode("utf-8")
    ).hexdigest()
    extension = _extension(name)
    suffix = f".{extension}" if _SAFE_EXTENSION.match(extension) else ""
    return f"{digest[:2]}/{digest[2:]}{suffix}"


def _extension(name: str) -> str:
    return PurePosixPath(name).suffix.lower().lstrip(".")


def decode_inline_data(inline_data: str) -> Tuple[bytearray, Optional[str]]:
    """Decode ``data:<mime>;base64,<body>`` (or a bare base64 body) into bytes + declared mime."""
    declared_mime: Optional[str] = None
    body = inline_data
    if inline_data.startswith("data:"):
        header, sep, body = inline_data.partition(",")
        if not sep:
            raise InvalidPayload("inline data URI has no payload separator")
        params = header[len("data:"):].split(";")
        if "base64" not in params[1:]:
            raise InvalidPayload("inline data URI must be base64 encoded")
        declared_mime = params[0] or None
    try:
        decoded = base64.b64decode("".join(body.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidPayload(f"inline payload is not valid base64: {exc}") from exc
    return bytearray(decoded), declared_mime


@contextmanager
def decoded_payload(upload: UploadPayload) -> Iterator[Tuple[bytearray, Optional[str]]]:
    """Scoped decode buffer; released as soon as the block exits, even on failure."""
    buffer, declared_mime = decode_inline_data(upload.inline_data)
    try:
        yield buffer, declared_mime
    finally:
        buffer.clear()


def _check_extension(name: str, allowed_extensions: Optional[Sequence[str]]) -> None:
    if not allowed_extensions:
        return
    extension = _extension(name)
    allowed = {ext.lower().lstrip(".") for ext in allowed_extensions}
    if extension not in allowed:
        raise InvalidPayload(
            f"file {name!r} has extension {extension or '<none>'!r}; allowed: {', '.join(sorted(allowed))}",
            details={"name": name, "allowed_extensions": sorted(allowed)},
        )


def _mime_type(upload: UploadPayload, declared_mime: Optional[str]) -> str:
    return (
        upload.mime_type
        or declared_mime
        or mimetypes.guess_type(upload.name)[0]
        or DEFAULT_MIME_TYPE
    )


def _put(backend: StorageBackend, key: str, name: str, buffer: bytearray) -> None:
    try:
        backend.put(key, buffer)
    except AssetEngineError as exc:
        raise StorageWriteFailed(
            f"failed to store {name!r}: {exc}",
            details={"name": name, "key": key, "cause": exc.code},
        ) from exc


def ingest_upload(
    upload: UploadPayload,
    backend: StorageBackend,
    reference_id: str,
    column_name: str,
    allowed_extensions: Optional[Sequence[str]] = None,
) -> AssetDescriptor:
    """Decode one inline upload, write it to storage, and return its descriptor."""
    _check_extension(upload.name, allowed_extensions)
    storage_key = derive_storage_key(reference_id, column_name, upload.name)
    with decoded_payload(upload) as (buffer, declared_mime):
        size = len(buffer)
        _put(backend, storage_key, upload.name, buffer)
    logger.info("Ingested upload %s for %s (key=%s, size=%d)", upload.name, column_name, storage_key, size)
    return AssetDescriptor(
        name=upload.name, mime_type=_mime_type(upload, declared_mime), storage_key=storage_key, size=size
    )


def _as_upload(item: Any) -> Optional[UploadPayload]:
    if isinstance(item, UploadPayload):
        return item
    if isinstance(item, dict) and any(item.get(field) is not None for field in INLINE_FIELDS):
        data = dict(item)
        if "file" not in data:
            data["file"] = data.pop("inline_data")
        try:
            return UploadPayload.model_validate(data)
        except PydanticValidationError as exc:
            raise InvalidPayload(
                f"malformed upload {item.get('name')!r}: {exc.errors()[0]['msg']}",
                details={"name": item.get("name")},
            ) from exc
    return None


@dataclass
class _PendingUpload:
    upload: UploadPayload
    storage_key: str
    buffer: bytearray
    mime_type: str
    size: int

    def descriptor(self) -> AssetDescriptor:
        return AssetDescriptor(
            name=self.upload.name, mime_type=self.mime_type, storage_key=self.storage_key, size=self.size
        )


@dataclass
class ColumnIngest:
    """Outcome of a column write: the new descriptor list plus the keys this call created."""
    descriptors: List[AssetDescriptor]
    written_keys: List[str] = field(default_factory=list)


def _column_items(items: Any) -> List[Any]:
    if isinstance(items, (str, bytes, bytearray)):
        try:
            items = json.loads(items)
        except ValueError as exc:
            raise MalformedDescriptor(f"column value is not valid JSON: {exc}") from exc
    if items is None:
        return []
    if not isinstance(items, list):
        raise MalformedDescriptor("column value must be a JSON array")
    return items


def ingest_column_uploads(
    items: Any,
    backend: StorageBackend,
    reference_id: str,
    column_name: str,
    allowed_extensions: Optional[Sequence[str]] = None,
    protected_keys: Iterable[str] = (),
) -> ColumnIngest:
    """Resolve a write-time column value: keep descriptors, ingest uploads, in order.

    Every item is validated and decoded before storage is touched. Uploads are then
    written under staging keys and promoted to their derived keys only once all of
    them are staged, so a failure leaves blobs already committed to the row intact.
    ``protected_keys`` (the row's current descriptor keys) are never deleted.
    """
    items = _column_items(items)
    entries: List[Union[AssetDescriptor, _PendingUpload]] = []
    with ExitStack() as buffers:
        for index, item in enumerate(items):
            upload = _as_upload(item)
            if upload is None:
                entries.append(_decode_item(index, item))
                continue
            _check_extension(upload.name, allowed_extensions)
            buffer, declared_mime = buffers.enter_context(decoded_payload(upload))
            entries.append(
                _PendingUpload(
                    upload=upload,
                    storage_key=derive_storage_key(reference_id, column_name, upload.name),
                    buffer=buffer,
                    mime_type=_mime_type(upload, declared_mime),
                    size=len(buffer),
                )
            )
        pending = [entry for entry in entries if isinstance(entry, _PendingUpload)]
        referenced = set(protected_keys) | {
            entry.key for entry in entries if isinstance(entry, AssetDescriptor)
        }
        written = _stage_and_promote(backend, pending, referenced)

    for upload in pending:
        logger.info(
            "Ingested upload %s for %s (key=%s, size=%d)",
            upload.upload.name, column_name, upload.storage_key, upload.size,
        )
    descriptors = [
        entry.descriptor() if isinstance(entry, _PendingUpload) else entry for entry in entries
    ]
    return ColumnIngest(descriptors=descriptors, written_keys=written)


def _stage_and_promote(
    backend: StorageBackend, pending: List[_PendingUpload], referenced: Set[str]
) -> List[str]:
    staged: List[str] = []
    promoted: List[str] = []
    try:
        for upload in pending:
            staging_key = f"{upload.storage_key}.staging-{uuid.uuid4().hex}"
            _put(backend, staging_key, upload.upload.name, upload.buffer)
            staged.append(staging_key)
        try:
            for upload in pending:
                _put(backend, upload.storage_key, upload.upload.name, upload.buffer)
                if upload.storage_key not in referenced and upload.storage_key not in promoted:
                    promoted.append(upload.storage_key)
        except AssetEngineError:
            logger.error("Promotion failed after %d of %d upload(s)", len(promoted), len(pending))
            discard_blobs(backend, promoted)
            raise
    finally:
        discard_blobs(backend, staged)
    return promoted


def ingest_column(
    items: Any,
    backend: StorageBackend,
    reference_id: str,
    column_name: str,
    allowed_extensions: Optional[Sequence[str]] = None,
    protected_keys: Iterable[str] = (),
) -> List[AssetDescriptor]:
    """All-or-nothing column write; see ingest_column_uploads."""
    return ingest_column_uploads(
        items, backend, reference_id, column_name, allowed_extensions, protected_keys
    ).descriptors


def discard_blobs(backend: StorageBackend, keys: Iterable[str]) -> None:
    """Best-effort delete; a blob that is already gone is fine."""
    for key in keys:
        try:
            backend.delete(key)
        except ObjectNotFound:
            continue
        except AssetEngineError as exc:
            logger.warning("Could not delete %s: %s", key, exc)
