from __future__ import annotations

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel

from asset_engines.asset_descriptor.codec import (
    decode_descriptors,
    discard_blobs,
    encode_descriptors,
    ingest_column_uploads,
)
from asset_engines.asset_descriptor.models import AssetDescriptor
from asset_engines.asset_service.entity import ColumnBinding, EntityStore, InMemoryEntityStore
from asset_engines.common.errors import DescriptorNotFound, MalformedDescriptor, PipelineCancelled
from asset_engines.image_filters.models import AssetQuery
from asset_engines.image_filters.parser import parse_asset_query
from asset_engines.image_pipeline.service import ImagePipeline
from asset_engines.logging.event_log import EventLogEntry, EventLogger, default_event_logger
from asset_engines.storage.filesystem_adapter import StorageBackend
from asset_engines.storage.registry import StorageRegistry, storage_registry

logger = logging.getLogger(__name__)


class AssetState(str, Enum):
    RESOLVING = "resolving"
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    RESPONDING = "responding"


class AssetRequest(BaseModel):
    entity_name: str
    reference_id: str
    column_name: str
    filename: str = ""
    # Set instead of filename when the URL names the column as "<column>.<ext>".
    extension: Optional[str] = None
    raw_query: str = ""
    caller_id: Optional[str] = None
    request_id: Optional[str] = None


class AssetResponse(BaseModel):
    data: bytes
    mime_type: str
    filename: str
    transformed: bool = False

    @property
    def size(self) -> int:
        return len(self.data)


def select_descriptor(descriptors: List[AssetDescriptor], request: AssetRequest) -> AssetDescriptor:
    """Exact filename match; without a filename, the first file with the requested extension."""
    if request.filename:
        wanted = request.filename
        descriptor = next((d for d in descriptors if d.name == wanted), None)
    else:
        suffix = f".{request.extension.lower()}" if request.extension else ""
        wanted = f"*{suffix}"
        descriptor = next((d for d in descriptors if d.name.lower().endswith(suffix)), None)
    if descriptor is None:
        raise DescriptorNotFound(
            f"{request.entity_name}/{request.reference_id}.{request.column_name} has no file {wanted!r}",
            details={
                "entity": request.entity_name,
                "reference_id": request.reference_id,
                "column": request.column_name,
                "name": wanted,
            },
        )
    return descriptor


class AssetService:
    """Resolve (entity, row, column, filename) to bytes, optionally through the image pipeline."""

    def __init__(
        self,
        entity_store: EntityStore,
        registry: Optional[StorageRegistry] = None,
        pipeline: Optional[ImagePipeline] = None,
        event_logger: EventLogger = default_event_logger,
    ) -> None:
        self.entity_store = entity_store
        self._registry = registry
        self._pipeline = pipeline
        self.event_logger = event_logger

    @property
    def registry(self) -> StorageRegistry:
        return self._registry if self._registry is not None else storage_registry()

    @property
    def pipeline(self) -> ImagePipeline:
        if self._pipeline is None:
            self._pipeline = ImagePipeline()
        return self._pipeline

    def _backend(self, binding: ColumnBinding) -> StorageBackend:
        return self.registry.backend(binding.store_name, binding.namespace)

    def _enter(self, request: AssetRequest, state: AssetState, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled(
                f"request cancelled before {state.value}",
                details={"state": state.value, "filename": request.filename},
            )
        logger.debug(
            "asset %s/%s/%s/%s -> %s",
            request.entity_name, request.reference_id, request.column_name, request.filename, state.value,
        )

    def validate_bindings(self) -> None:
        """Fail fast when a file column points at a store that is not configured."""
        pairs = [(binding.store_name, binding.namespace) for binding in self.entity_store.bindings()]
        if pairs:
            self.registry.validate_bindings(pairs)

    def list_descriptors(self, entity_name: str, reference_id: str, column_name: str, caller_id: Optional[str] = None) -> List[AssetDescriptor]:
        value = self.entity_store.get_column_value(entity_name, reference_id, column_name, caller_id)
        return decode_descriptors(value)

    def serve(self, request: AssetRequest, cancel_event: Optional[threading.Event] = None) -> AssetResponse:
        started = time.monotonic()

        self._enter(request, AssetState.RESOLVING, cancel_event)
        query: AssetQuery = parse_asset_query(request.raw_query)
        binding = self.entity_store.get_column_binding(request.entity_name, request.column_name)
        descriptors = self.list_descriptors(
            request.entity_name, request.reference_id, request.column_name, request.caller_id
        )
        descriptor = select_descriptor(descriptors, request)

        self._enter(request, AssetState.FETCHING, cancel_event)
        data = self._backend(binding).get(descriptor.key)

        mime_type = descriptor.mime_type
        transformed = False
        if query.needs_pipeline:
            self._enter(request, AssetState.TRANSFORMING, cancel_event)
            result = self.pipeline.process(
                data,
                query.filters,
                output_format=query.output_format,
                quality=query.quality,
                cancel_event=cancel_event,
            )
            data, transformed = result.data, result.transformed
            if transformed:
                mime_type = result.mime_type

        self._enter(request, AssetState.RESPONDING, cancel_event)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Served %s (%d bytes, %d filter(s), %d ms)",
            descriptor.name, len(data), len(query.filters), elapsed_ms,
        )
        self.event_logger(
            EventLogEntry(
                event_type="asset_served",
                asset_type=request.entity_name,
                asset_id=f"{request.reference_id}/{request.column_name}/{descriptor.name}",
                user_id=request.caller_id,
                request_id=request.request_id,
                metadata={
                    "store": binding.store_name,
                    "filters": [invocation.describe() for invocation in query.filters],
                    "bytes": len(data),
                    "elapsed_ms": elapsed_ms,
                },
            )
        )
        return AssetResponse(data=data, mime_type=mime_type, filename=descriptor.name, transformed=transformed)

    async def serve_async(self, request: AssetRequest) -> AssetResponse:
        """Run serve() in a worker thread; cancelling the awaiting task stops the worker at its next step."""
        cancel_event = threading.Event()
        try:
            return await asyncio.to_thread(self.serve, request, cancel_event)
        except asyncio.CancelledError:
            cancel_event.set()
            logger.info("Cancelled asset request for %s", request.filename)
            raise

    def ingest(
        self,
        entity_name: str,
        reference_id: str,
        column_name: str,
        items: Any,
        caller_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> List[AssetDescriptor]:
        """Write path: store inline uploads, then persist the resulting descriptor list on the row.

        The row is resolved before any blob is written. Blobs the row already references
        survive a failed write; blobs written by this call are removed if the commit fails.
        """
        binding = self.entity_store.get_column_binding(entity_name, column_name)
        current = self.entity_store.get_column_value(entity_name, reference_id, column_name, caller_id)
        try:
            committed_keys = {descriptor.key for descriptor in decode_descriptors(current)}
        except MalformedDescriptor:
            logger.warning("Overwriting malformed %s.%s on row %s", entity_name, column_name, reference_id)
            committed_keys = set()

        backend = self._backend(binding)
        ingested = ingest_column_uploads(
            items,
            backend,
            reference_id,
            column_name,
            allowed_extensions=binding.allowed_extensions,
            protected_keys=committed_keys,
        )
        descriptors = ingested.descriptors
        try:
            self.entity_store.set_column_value(
                entity_name, reference_id, column_name, encode_descriptors(descriptors), caller_id
            )
        except Exception:
            discard_blobs(backend, ingested.written_keys)
            raise
        self.event_logger(
            EventLogEntry(
                event_type="asset_ingested",
                asset_type=entity_name,
                asset_id=f"{reference_id}/{column_name}",
                user_id=caller_id,
                request_id=request_id,
                metadata={"store": binding.store_name, "files": [d.name for d in descriptors]},
            )
        )
        return descriptors


_default_service: Optional[AssetService] = None


def get_asset_service() -> AssetService:
    global _default_service
    if _default_service is None:
        _default_service = AssetService(entity_store=InMemoryEntityStore())
    return _default_service


def set_asset_service(service: Optional[AssetService]) -> None:
    global _default_service
    _default_service = service
