from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from .base import CamelModel


class AlertResponse(CamelModel):
    id: int
    type: str
    title: str
    description: str | None = None
    severity: str
    worker_id: int | None = None
    site_id: int | None = None
    metadata_json: dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")
    is_read: bool = False
    resolved_at: datetime | None = None
    created_at: datetime | None = None
