"""Lightweight EventLog entry helper reused across asset services."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from asset_engines.config import runtime_config

event_logger = logging.getLogger("asset_engines.events")


class EventLogEntry(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    asset_type: str
    asset_id: str
    user_id: Optional[str] = None
    request_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = Field(default_factory=dict)


EventLogger = Callable[[EventLogEntry], None]


def default_event_logger(entry: EventLogEntry) -> None:
    """Emit the entry on the ``asset_engines.events`` logger as a structured record."""
    metadata = dict(entry.metadata)
    metadata.setdefault("actor_type", "human" if entry.user_id else "anonymous")
    metadata["env"] = runtime_config.get_env() or "dev"
    event_logger.info(
        "%s %s=%s",
        entry.event_type,
        entry.asset_type,
        entry.asset_id,
        extra={
            "event_id": entry.event_id,
            "event_type": entry.event_type,
            "request_id": entry.request_id,
            "event_metadata": metadata,
        },
    )
