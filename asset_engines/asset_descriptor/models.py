"""Asset descriptor data models (Pydantic)."""
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class AssetDescriptor(BaseModel):
    """
    One stored attachment inside a column value.

    Persisted as ``{"name", "type", "path", "size", ...}``; unknown keys are kept so
    newer writers do not lose data through older readers.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: StrictStr = Field(..., description="Original filename")
    mime_type: StrictStr = Field(..., alias="type")
    storage_key: Optional[str] = Field(None, alias="path", description="Backend-relative key")
    size: Optional[int] = Field(None, description="Size in bytes at ingestion")

    @property
    def key(self) -> str:
        # Descriptors written before keys were derived live under their filename.
        return self.storage_key or self.name

    def to_column(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude_none=True)
        for inline_field in INLINE_FIELDS:
            data.pop(inline_field, None)
        return data


INLINE_FIELDS = ("file", "inline_data")


class UploadPayload(BaseModel):
    """Ingestion-time only: ``{name, type, file}`` where file is a base64 data URI."""
    model_config = ConfigDict(populate_by_name=True)

    name: StrictStr
    mime_type: Optional[str] = Field(None, alias="type")
    inline_data: StrictStr = Field(..., alias="file")
