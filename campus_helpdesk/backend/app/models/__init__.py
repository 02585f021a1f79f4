# backend/app/models/__init__.py

from .user import User
from .student import StudentProfile
from .domain import Domain, Scope
from .category import (
    Category,
    CategoryAssignment,
    CategoryField,
    FieldOption,
    SubSubcategory,
    Subcategory,
)
from .escalation import Escalation, EscalationRule
from .ticket_status import TicketStatus
from .ticket import Ticket
from .ticket_history import TicketHistory
from .comment import Comment
from .outbox import OutboxEntry
from .notification import Notification

__all__ = [
    "User",
    "StudentProfile",
    "Domain",
    "Scope",
    "Category",
    "CategoryAssignment",
    "CategoryField",
    "FieldOption",
    "SubSubcategory",
    "Subcategory",
    "Escalation",
    "EscalationRule",
    "TicketStatus",
    "Ticket",
    "TicketHistory",
    "Comment",
    "OutboxEntry",
    "Notification",
]
