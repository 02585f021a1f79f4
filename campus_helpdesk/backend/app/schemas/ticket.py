# campus_helpdesk/backend/app/schemas/ticket.py

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .metadata import Attachment


class TicketCreate(BaseModel):
    category_id: int
    subcategory_id: Optional[int] = None
    sub_subcategory_id: Optional[int] = None
    # Dynamic field values keyed by field slug
    dynamic_fields: Dict[str, Any] = Field(default_factory=dict)
    location: Optional[str] = None
    description: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)


class StatusChange(BaseModel):
    status: str
    reason: Optional[str] = Field(default=None, max_length=2000)


class CommentCreate(BaseModel):
    body: str = Field(min_length=1)
    visibility: Literal["public", "internal"] = "public"
    # Handler asks the student something -> ticket waits on the student
    ask_question: bool = False


class EscalateRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class ForwardRequest(BaseModel):
    # A handler id, or "auto" for the next level of the escalation chain
    target: Union[int, Literal["auto"]] = "auto"
    reason: Optional[str] = Field(default=None, max_length=2000)


class ReassignRequest(BaseModel):
    target_handler_id: int


class TatRequest(BaseModel):
    tat_hours: int = Field(gt=0, le=24 * 90)
    mark_in_progress: bool = False


class RatingRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=2000)


class TicketRead(BaseModel):
    id: int
    description: Optional[str] = None
    location: Optional[str] = None
    status_value: Optional[str] = None

    category_id: int
    subcategory_id: Optional[int] = None
    sub_subcategory_id: Optional[int] = None

    created_by: int
    assigned_to: Optional[int] = None
    needs_attention: bool
    assignment_step: Optional[str] = None

    escalation_level: int
    acknowledgement_due_at: Optional[datetime] = None
    resolution_due_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    reopen_count: int
    rating: Optional[int] = None

    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommentRead(BaseModel):
    id: int
    ticket_id: int
    author_id: int
    body: str
    visibility: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EscalationRead(BaseModel):
    id: int
    ticket_id: int
    escalated_by: Optional[int] = None
    escalated_to: Optional[int] = None
    reason: Optional[str] = None
    level: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
