# campus_helpdesk/backend/app/schemas/metadata.py
"""
Typed view over the ticket `metadata` JSON column.

The lifecycle code reads and writes TAT state and the forward counter
through these models. Category-specific dynamic field values stay a free
map, since their shape is defined by admins at runtime.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import METADATA_MAX_BYTES
from ..errors import PayloadTooLarge


class TatExtension(BaseModel):
    previous_tat_hours: Optional[int] = None
    new_tat_hours: int
    previous_due_at: Optional[datetime] = None
    new_due_at: datetime
    extended_at: datetime
    extended_by: Optional[int] = None


class TatState(BaseModel):
    tat_hours: Optional[int] = None
    set_at: Optional[datetime] = None
    set_by: Optional[int] = None

    # Clock pause while waiting on the student
    pause_started_at: Optional[datetime] = None
    paused_seconds: float = 0.0

    # Append-only audit of TAT changes
    extensions: List[TatExtension] = Field(default_factory=list)


class Attachment(BaseModel):
    url: str
    file_name: Optional[str] = None
    uploaded_by: Optional[int] = None


class TicketMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tat: TatState = Field(default_factory=TatState)
    dynamic_fields: Dict[str, Any] = Field(default_factory=dict)
    attachments: List[Attachment] = Field(default_factory=list)
    forward_count: int = 0

    # Last handler reminder sent by the sweep, at most one per day
    reminded_at: Optional[datetime] = None


def load_metadata(raw: Optional[dict]) -> TicketMetadata:
    if not raw:
        return TicketMetadata()
    return TicketMetadata.model_validate(raw)


def dump_metadata(meta: TicketMetadata) -> dict:
    return meta.model_dump(mode="json")


def ensure_within_limit(data: dict, limit: int = METADATA_MAX_BYTES) -> int:
    """Raise PayloadTooLarge when the serialized metadata exceeds `limit` bytes."""
    size = len(json.dumps(data, separators=(",", ":")).encode("utf-8"))
    if size > limit:
        raise PayloadTooLarge(
            f"Ticket metadata is {size} bytes, limit is {limit} bytes"
        )
    return size
