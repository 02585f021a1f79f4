# campus_helpdesk/backend/app/services/tickets.py
"""
Ticket commands.

Each public method is one unit of work: it locks the ticket row,
re-validates the category chain, applies the state-machine rules, writes
the audit trail and appends the outbox event. Either all of it commits or
none of it does.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..auth import Identity
from ..clock import utcnow
from ..config import (
    ACK_TAT_HOURS,
    AUTO_ESCALATION_COOLDOWN_HOURS,
    FORWARD_LIMIT,
    TAT_EXTENSION_ESCALATION_THRESHOLD,
)
from ..db import transaction
from ..errors import (
    ConcurrentModificationError,
    GuardViolation,
    PermissionDenied,
    StaleReferenceError,
    TicketCommandError,
    TicketNotFound,
)
from ..models.category import Category, CategoryField, Subcategory, SubSubcategory
from ..models.comment import VISIBILITY_INTERNAL, VISIBILITY_PUBLIC, Comment
from ..models.escalation import Escalation
from ..models.ticket import Ticket
from ..models.ticket_history import TicketHistory
from ..models.user import User
from ..schemas.metadata import (
    TicketMetadata,
    dump_metadata,
    ensure_within_limit,
    load_metadata,
)
from ..schemas.ticket import TicketCreate
from . import lifecycle
from .assignment import STEP_MANUAL, AssignmentContext, AssignmentResolver
from .outbox import (
    COMMENT_ADDED,
    STATUS_CHANGED,
    TICKET_CREATED,
    TICKET_ESCALATED,
    TICKET_REMINDER,
    enqueue,
)
from .status_registry import StatusRegistry, StatusValue, normalize_status

logger = logging.getLogger(__name__)

S = StatusValue

AUTO = "auto"


@contextmanager
def unit_of_work(db: Session):
    """transaction() that reports a lost optimistic version check as a 409."""
    try:
        with transaction(db):
            yield db
    except StaleDataError as exc:
        raise ConcurrentModificationError(
            "Ticket was changed by another request. Please refresh and retry."
        ) from exc


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class TicketService:
    def __init__(
        self,
        registry: Optional[StatusRegistry] = None,
        resolver: Optional[AssignmentResolver] = None,
        clock=utcnow,
        forward_limit: int = FORWARD_LIMIT,
    ):
        self.registry = registry or StatusRegistry()
        self.resolver = resolver or AssignmentResolver()
        self.clock = clock
        self.forward_limit = forward_limit

    # Loading and validation

    def _lock_ticket(self, db: Session, ticket_id: int) -> Ticket:
        ticket = (
            db.query(Ticket)
            .filter(Ticket.id == ticket_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if ticket is None:
            raise TicketNotFound(f"Ticket {ticket_id} not found")
        return ticket

    def _validate_chain(
        self,
        db: Session,
        category_id: int,
        subcategory_id: Optional[int],
        sub_subcategory_id: Optional[int],
    ) -> Tuple[Category, Optional[Subcategory], Optional[SubSubcategory]]:
        category = db.get(Category, category_id, populate_existing=True)
        if category is None or not category.active:
            raise StaleReferenceError("The selected category is no longer available")

        subcategory = None
        if subcategory_id is not None:
            subcategory = db.get(Subcategory, subcategory_id, populate_existing=True)
            if (
                subcategory is None
                or not subcategory.active
                or subcategory.category_id != category.id
            ):
                raise StaleReferenceError("The selected subcategory is no longer available")

        sub_subcategory = None
        if sub_subcategory_id is not None:
            sub_subcategory = db.get(
                SubSubcategory, sub_subcategory_id, populate_existing=True
            )
            if (
                subcategory is None
                or sub_subcategory is None
                or not sub_subcategory.active
                or sub_subcategory.subcategory_id != subcategory.id
            ):
                raise StaleReferenceError(
                    "The selected sub-subcategory is no longer available"
                )

        return category, subcategory, sub_subcategory

    def _validate_ticket_chain(self, db: Session, ticket: Ticket):
        return self._validate_chain(
            db, ticket.category_id, ticket.subcategory_id, ticket.sub_subcategory_id
        )

    def _field_slugs(
        self,
        db: Session,
        subcategory: Optional[Subcategory],
        values: Dict[str, Any],
    ) -> List[str]:
        """Slugs of active fields that carry a value; enforces required fields."""
        if subcategory is None:
            return []
        fields = (
            db.query(CategoryField)
            .filter(
                CategoryField.subcategory_id == subcategory.id,
                CategoryField.active.is_(True),
            )
            .order_by(CategoryField.display_order, CategoryField.id)
            .all()
        )
        present = []
        for f in fields:
            value = values.get(f.slug)
            has_value = value is not None and value != "" and value != []
            if f.required and not has_value:
                raise TicketCommandError(f"Field '{f.name}' is required")
            if has_value:
                present.append(f.slug)
        return present

    def _require_handler(self, db: Session, user_id: int) -> User:
        user = db.get(User, user_id)
        if user is None or not user.is_active:
            raise TicketNotFound(f"Handler {user_id} not found")
        if user.role not in lifecycle.HANDLER_ROLES:
            raise GuardViolation(f"User {user_id} cannot handle tickets")
        return user

    def _status(self, db: Session, ticket: Ticket) -> StatusValue:
        return self.registry.by_id(db, ticket.status_id).value

    def _set_status(self, db: Session, ticket: Ticket, value: StatusValue) -> None:
        ticket.status_id = self.registry.get(db, value).id

    def _context(
        self,
        db: Session,
        ticket: Ticket,
        category: Category,
        subcategory: Optional[Subcategory],
        sub_subcategory: Optional[SubSubcategory],
        meta: TicketMetadata,
    ) -> AssignmentContext:
        return self.resolver.context(
            db,
            category,
            subcategory=subcategory,
            sub_subcategory=sub_subcategory,
            field_slugs=[k for k, v in meta.dynamic_fields.items() if v not in (None, "")],
            location=ticket.location,
            creator_id=ticket.created_by,
        )

    @staticmethod
    def _record(
        db: Session,
        ticket_id: int,
        field: str,
        old,
        new,
        actor_id: Optional[int],
        now: datetime,
    ) -> None:
        db.add(
            TicketHistory(
                ticket_id=ticket_id,
                field=field,
                old_value=None if old is None else str(old),
                new_value="" if new is None else str(new),
                changed_by=actor_id,
                changed_at=now,
            )
        )

    # Commands

    def create_ticket(
        self,
        db: Session,
        actor: Identity,
        data: TicketCreate,
        now: Optional[datetime] = None,
    ) -> Ticket:
        now = now or self.clock()

        meta = TicketMetadata(
            dynamic_fields=dict(data.dynamic_fields),
            attachments=list(data.attachments),
        )
        raw_meta = dump_metadata(meta)
        ensure_within_limit(raw_meta)

        with unit_of_work(db):
            creator = db.get(User, actor.user_id)
            if creator is None or not creator.is_active:
                raise PermissionDenied("Unknown or inactive user")

            category, subcategory, sub_subcategory = self._validate_chain(
                db, data.category_id, data.subcategory_id, data.sub_subcategory_id
            )
            field_slugs = self._field_slugs(db, subcategory, data.dynamic_fields)

            resolution = self.resolver.resolve(
                db,
                category,
                subcategory=subcategory,
                sub_subcategory=sub_subcategory,
                field_slugs=field_slugs,
                location=data.location,
                creator_id=actor.user_id,
            )

            ticket = Ticket(
                description=data.description,
                location=data.location,
                status_id=self.registry.get(db, S.OPEN).id,
                category_id=category.id,
                subcategory_id=subcategory.id if subcategory else None,
                sub_subcategory_id=sub_subcategory.id if sub_subcategory else None,
                created_by=actor.user_id,
                assigned_to=resolution.handler_id,
                needs_attention=resolution.needs_attention,
                assignment_step=resolution.step,
                escalation_level=0,
                reopen_count=0,
                acknowledgement_due_at=now + timedelta(hours=ACK_TAT_HOURS),
                meta=raw_meta,
                created_at=now,
                updated_at=now,
            )
            db.add(ticket)
            db.flush()

            self._record(db, ticket.id, "status", None, S.OPEN.value, actor.user_id, now)
            self._record(db, ticket.id, "assigned_to", None, resolution.handler_id, None, now)
            self._record(db, ticket.id, "assignment_step", None, resolution.step, None, now)

            enqueue(
                db,
                TICKET_CREATED,
                {
                    "ticket_id": ticket.id,
                    "created_by": actor.user_id,
                    "category_id": category.id,
                    "assigned_to": resolution.handler_id,
                    "assignment_step": resolution.step,
                    "needs_attention": resolution.needs_attention,
                },
            )

        logger.info(
            "[LIFECYCLE] Ticket %s created by %s, assigned to %s (%s)",
            ticket.id, actor.user_id, ticket.assigned_to, ticket.assignment_step,
        )
        return ticket

    def change_status(
        self,
        db: Session,
        actor: Identity,
        ticket_id: int,
        target,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Ticket:
        try:
            target = normalize_status(target)
        except ValueError as exc:
            raise GuardViolation(str(exc))

        if target == S.ESCALATED:
            self.escalate(db, actor, ticket_id, reason=reason, now=now)
            return db.get(Ticket, ticket_id)
        if target == S.FORWARDED:
            return self.forward(db, actor, ticket_id, AUTO, reason=reason, now=now)

        now = now or self.clock()
        with unit_of_work(db):
            ticket = self._lock_ticket(db, ticket_id)
            category, _, _ = self._validate_ticket_chain(db, ticket)

            current = self._status(db, ticket)
            lifecycle.check_transition(current, target)
            lifecycle.check_actor(
                actor.role,
                target,
                is_creator=ticket.created_by == actor.user_id,
                is_assignee=ticket.assigned_to == actor.user_id,
            )

            meta = load_metadata(ticket.meta)
            old_reopen_count = ticket.reopen_count
            lifecycle.apply_transition(
                ticket, meta, current, target, now, default_tat_hours=category.sla_hours
            )
            self._set_status(db, ticket, target)
            ticket.meta = dump_metadata(meta)
            ticket.updated_at = now

            self._record(db, ticket.id, "status", current.value, target.value, actor.user_id, now)
            if ticket.reopen_count != old_reopen_count:
                self._record(
                    db, ticket.id, "reopen_count", old_reopen_count,
                    ticket.reopen_count, actor.user_id, now,
                )

            enqueue(
                db,
                STATUS_CHANGED,
                {
                    "ticket_id": ticket.id,
                    "action": "status",
                    "old_status": current.value,
                    "new_status": target.value,
                    "changed_by": actor.user_id,
                    "reason": reason,
                },
            )

        logger.info(
            "[LIFECYCLE] Ticket %s %s -> %s by %s",
            ticket_id, current.value, target.value, actor.user_id,
        )
        return ticket

    def add_comment(
        self,
        db: Session,
        actor: Identity,
        ticket_id: int,
        body: str,
        visibility: str = VISIBILITY_PUBLIC,
        ask_question: bool = False,
        now: Optional[datetime] = None,
    ) -> Comment:
        if visibility not in (VISIBILITY_PUBLIC, VISIBILITY_INTERNAL):
            raise TicketCommandError(f"Unknown comment visibility {visibility!r}")
        if not body or not body.strip():
            raise TicketCommandError("Comment body is empty")

        now = now or self.clock()
        with unit_of_work(db):
            ticket = self._lock_ticket(db, ticket_id)
            category, _, _ = self._validate_ticket_chain(db, ticket)

            is_creator = ticket.created_by == actor.user_id
            is_handler = actor.role in lifecycle.HANDLER_ROLES
            if not (is_creator or is_handler):
                raise PermissionDenied("You cannot comment on this ticket")
            if visibility == VISIBILITY_INTERNAL and not is_handler:
                raise PermissionDenied("Internal notes are limited to staff")

            current = self._status(db, ticket)
            target = None
            if ask_question:
                if not is_handler:
                    raise PermissionDenied("Only handlers can ask the student a question")
                if visibility != VISIBILITY_PUBLIC:
                    raise GuardViolation("A question to the student must be public")
                lifecycle.check_transition(current, S.AWAITING_STUDENT)
                target = S.AWAITING_STUDENT
            elif (
                is_creator
                and current == S.AWAITING_STUDENT
                and visibility == VISIBILITY_PUBLIC
            ):
                target = S.IN_PROGRESS

            comment = Comment(
                ticket_id=ticket.id,
                author_id=actor.user_id,
                body=body.strip(),
                visibility=visibility,
                created_at=now,
            )
            db.add(comment)

            if target is not None:
                meta = load_metadata(ticket.meta)
                lifecycle.apply_transition(
                    ticket, meta, current, target, now,
                    default_tat_hours=category.sla_hours,
                )
                self._set_status(db, ticket, target)
                ticket.meta = dump_metadata(meta)
                self._record(
                    db, ticket.id, "status", current.value, target.value, actor.user_id, now
                )
            ticket.updated_at = now
            db.flush()

            enqueue(
                db,
                COMMENT_ADDED,
                {
                    "ticket_id": ticket.id,
                    "comment_id": comment.id,
                    "author_id": actor.user_id,
                    "visibility": visibility,
                    "ask_question": ask_question,
                },
            )
            if target is not None:
                enqueue(
                    db,
                    STATUS_CHANGED,
                    {
                        "ticket_id": ticket.id,
                        "action": "comment",
                        "old_status": current.value,
                        "new_status": target.value,
                        "changed_by": actor.user_id,
                        "reason": None,
                    },
                )

        return comment

    def escalate(
        self,
        db: Session,
        actor: Optional[Identity],
        ticket_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
        auto: bool = False,
    ) -> Optional[Escalation]:
        """
        Move the ticket one escalation level up and hand it to that level's
        handler. `actor=None` means the automatic sweep.

        With `auto=True` the breach is checked again under the row lock and
        None is returned when it no longer holds, so a ticket picked by two
        sweeps at once moves up one level only.
        """
        now = now or self.clock()
        actor_id = actor.user_id if actor else None

        with unit_of_work(db):
            ticket = self._lock_ticket(db, ticket_id)
            if auto:
                breach = self._breach_reason(db, ticket, now)
                if breach is None:
                    logger.info(
                        "[LIFECYCLE] Ticket %s no longer due for escalation, skipping",
                        ticket_id,
                    )
                    return None
                reason = breach
            category, subcategory, sub_subcategory = self._validate_ticket_chain(db, ticket)

            if actor is not None:
                is_creator = ticket.created_by == actor.user_id
                if not (is_creator or actor.role in lifecycle.HANDLER_ROLES):
                    raise PermissionDenied("You cannot escalate this ticket")

            current = self._status(db, ticket)
            lifecycle.check_transition(current, S.ESCALATED)

            meta = load_metadata(ticket.meta)
            lifecycle.apply_transition(ticket, meta, current, S.ESCALATED, now)

            old_level = ticket.escalation_level or 0
            new_level = lifecycle.next_escalation_level(old_level)
            ctx = self._context(db, ticket, category, subcategory, sub_subcategory, meta)
            target, rule = self.resolver.escalation_target(db, ctx, new_level)

            old_assignee = ticket.assigned_to
            ticket.escalation_level = new_level
            ticket.last_escalation_at = now
            if target is not None:
                ticket.assigned_to = target
                ticket.needs_attention = False
            else:
                ticket.needs_attention = True
            self._set_status(db, ticket, S.ESCALATED)
            ticket.meta = dump_metadata(meta)
            ticket.updated_at = now

            record = Escalation(
                ticket_id=ticket.id,
                escalated_by=actor_id,
                escalated_to=target,
                reason=reason,
                level=new_level,
                created_at=now,
            )
            db.add(record)

            if current != S.ESCALATED:
                self._record(db, ticket.id, "status", current.value, S.ESCALATED.value, actor_id, now)
            self._record(db, ticket.id, "escalation_level", old_level, new_level, actor_id, now)
            if old_assignee != ticket.assigned_to:
                self._record(db, ticket.id, "assigned_to", old_assignee, ticket.assigned_to, actor_id, now)
            db.flush()

            enqueue(
                db,
                TICKET_ESCALATED,
                {
                    "ticket_id": ticket.id,
                    "escalation_id": record.id,
                    "level": new_level,
                    "escalated_to": target,
                    "escalated_by": actor_id,
                    "reason": reason,
                    "notify_channel": rule.notify_channel if rule else "email",
                },
            )

        logger.info(
            "[LIFECYCLE] Ticket %s escalated to level %s, handler %s",
            ticket_id, new_level, target,
        )
        return record

    def forward(
        self,
        db: Session,
        actor: Identity,
        ticket_id: int,
        target: Union[int, str, None] = AUTO,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Ticket:
        if actor.role not in lifecycle.HANDLER_ROLES:
            raise PermissionDenied("Only handlers can forward tickets")

        now = now or self.clock()
        with unit_of_work(db):
            ticket = self._lock_ticket(db, ticket_id)
            category, subcategory, sub_subcategory = self._validate_ticket_chain(db, ticket)

            current = self._status(db, ticket)
            lifecycle.check_transition(current, S.FORWARDED)

            meta = load_metadata(ticket.meta)
            lifecycle.check_forward_allowed(meta.forward_count, self.forward_limit)

            if target is None or target == AUTO:
                ctx = self._context(db, ticket, category, subcategory, sub_subcategory, meta)
                handler_id, _ = self.resolver.escalation_target(
                    db, ctx, lifecycle.next_escalation_level(ticket.escalation_level)
                )
                if handler_id is None:
                    raise GuardViolation("No handler is configured to forward this ticket to")
            else:
                handler_id = self._require_handler(db, int(target)).id

            lifecycle.apply_transition(ticket, meta, current, S.FORWARDED, now)
            meta.forward_count += 1

            old_assignee = ticket.assigned_to
            ticket.assigned_to = handler_id
            ticket.needs_attention = False
            self._set_status(db, ticket, S.FORWARDED)
            ticket.meta = dump_metadata(meta)
            ticket.updated_at = now

            if current != S.FORWARDED:
                self._record(db, ticket.id, "status", current.value, S.FORWARDED.value, actor.user_id, now)
            self._record(db, ticket.id, "assigned_to", old_assignee, handler_id, actor.user_id, now)
            self._record(
                db, ticket.id, "forward_count", meta.forward_count - 1,
                meta.forward_count, actor.user_id, now,
            )

            enqueue(
                db,
                STATUS_CHANGED,
                {
                    "ticket_id": ticket.id,
                    "action": "forwarded",
                    "old_status": current.value,
                    "new_status": S.FORWARDED.value,
                    "previous_assigned_to": old_assignee,
                    "assigned_to": handler_id,
                    "forward_count": meta.forward_count,
                    "changed_by": actor.user_id,
                    "reason": reason,
                },
            )

        logger.info(
            "[LIFECYCLE] Ticket %s forwarded %s -> %s (count %s)",
            ticket_id, old_assignee, handler_id, meta.forward_count,
        )
        return ticket

    def reassign(
        self,
        db: Session,
        actor: Identity,
        ticket_id: int,
        target_handler_id: int,
        now: Optional[datetime] = None,
    ) -> Ticket:
        if actor.role not in lifecycle.STAFF_ROLES:
            raise PermissionDenied("Only admins can reassign tickets")

        now = now or self.clock()
        with unit_of_work(db):
            ticket = self._lock_ticket(db, ticket_id)
            self._validate_ticket_chain(db, ticket)
            handler = self._require_handler(db, target_handler_id)
            current = self._status(db, ticket)

            old_assignee = ticket.assigned_to
            ticket.assigned_to = handler.id
            ticket.needs_attention = False
            ticket.assignment_step = STEP_MANUAL
            ticket.updated_at = now

            self._record(db, ticket.id, "assigned_to", old_assignee, handler.id, actor.user_id, now)
            self._record(db, ticket.id, "assignment_step", None, STEP_MANUAL, actor.user_id, now)

            enqueue(
                db,
                STATUS_CHANGED,
                {
                    "ticket_id": ticket.id,
                    "action": "reassigned",
                    "old_status": current.value,
                    "new_status": current.value,
                    "previous_assigned_to": old_assignee,
                    "assigned_to": handler.id,
                    "changed_by": actor.user_id,
                    "reason": None,
                },
            )

        return ticket

    def set_tat(
        self,
        db: Session,
        actor: Identity,
        ticket_id: int,
        tat_hours: int,
        mark_in_progress: bool = False,
        now: Optional[datetime] = None,
    ) -> Ticket:
        """
        Set the TAT of a ticket, or extend it once a deadline is running.
        Extensions are appended to the ticket's TAT history.
        """
        if actor.role not in lifecycle.HANDLER_ROLES:
            raise PermissionDenied("Only handlers can set TAT")
        if tat_hours is None or tat_hours <= 0:
            raise TicketCommandError("TAT must be a positive number of hours")

        now = now or self.clock()
        with unit_of_work(db):
            ticket = self._lock_ticket(db, ticket_id)
            category, _, _ = self._validate_ticket_chain(db, ticket)
            current = self._status(db, ticket)
            if current in (S.RESOLVED, S.AWAITING_STUDENT):
                raise GuardViolation(f"Cannot change TAT while ticket is {current.value}")

            meta = load_metadata(ticket.meta)
            old_hours = lifecycle.current_tat_hours(meta, category.sla_hours)

            if ticket.resolution_due_at is not None:
                lifecycle.extend_tat(
                    ticket, meta, tat_hours, now, actor.user_id,
                    default_tat_hours=category.sla_hours,
                )
                action = "tat_extended"
            else:
                meta.tat.tat_hours = tat_hours
                meta.tat.set_at = now
                meta.tat.set_by = actor.user_id
                if current == S.IN_PROGRESS:
                    ticket.resolution_due_at = lifecycle.resolution_due(now, tat_hours)
                action = "tat_set"

            new_status = current
            if mark_in_progress and current != S.IN_PROGRESS:
                lifecycle.check_transition(current, S.IN_PROGRESS)
                lifecycle.apply_transition(
                    ticket, meta, current, S.IN_PROGRESS, now,
                    default_tat_hours=category.sla_hours,
                )
                self._set_status(db, ticket, S.IN_PROGRESS)
                new_status = S.IN_PROGRESS
                self._record(
                    db, ticket.id, "status", current.value, new_status.value, actor.user_id, now
                )

            ensure_within_limit(dump_metadata(meta))
            ticket.meta = dump_metadata(meta)
            ticket.updated_at = now
            self._record(db, ticket.id, "tat_hours", old_hours, tat_hours, actor.user_id, now)

            enqueue(
                db,
                STATUS_CHANGED,
                {
                    "ticket_id": ticket.id,
                    "action": action,
                    "old_status": current.value,
                    "new_status": new_status.value,
                    "tat_hours": tat_hours,
                    "resolution_due_at": _iso(ticket.resolution_due_at),
                    "changed_by": actor.user_id,
                    "reason": None,
                },
            )

        return ticket

    def rate_ticket(
        self,
        db: Session,
        actor: Identity,
        ticket_id: int,
        rating: int,
        feedback: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Ticket:
        if rating is None or not 1 <= int(rating) <= 5:
            raise TicketCommandError("Rating must be between 1 and 5")

        now = now or self.clock()
        with unit_of_work(db):
            ticket = self._lock_ticket(db, ticket_id)
            if ticket.created_by != actor.user_id:
                raise PermissionDenied("Only the ticket creator can rate it")
            if self._status(db, ticket) != S.RESOLVED:
                raise GuardViolation("Only resolved tickets can be rated")

            old = ticket.rating
            ticket.rating = int(rating)
            ticket.feedback = feedback
            ticket.updated_at = now
            self._record(db, ticket.id, "rating", old, ticket.rating, actor.user_id, now)

        return ticket

    def get_ticket(self, db: Session, actor: Identity, ticket_id: int) -> Ticket:
        ticket = db.get(Ticket, ticket_id)
        if ticket is None:
            raise TicketNotFound(f"Ticket {ticket_id} not found")
        if actor.role == lifecycle.ROLE_STUDENT and ticket.created_by != actor.user_id:
            raise PermissionDenied("You cannot view this ticket")
        return ticket

    # Automatic escalation

    def _breach_reason(self, db: Session, ticket: Ticket, now: datetime) -> Optional[str]:
        """Why the sweep should escalate `ticket` at `now`, or None when it should not."""
        if ticket.status_id in self.registry.final_ids(db):
            return None
        cooldown = timedelta(hours=AUTO_ESCALATION_COOLDOWN_HOURS)
        if ticket.last_escalation_at and now - ticket.last_escalation_at < cooldown:
            return None

        meta = load_metadata(ticket.meta)
        status = self._status(db, ticket)
        due_at = lifecycle.escalation_due_at(ticket)
        if lifecycle.is_overdue(status, due_at, meta.tat, now):
            if ticket.resolution_due_at is None:
                return "Acknowledgement overdue"
            return "TAT breached"

        extensions = len(meta.tat.extensions)
        if extensions >= TAT_EXTENSION_ESCALATION_THRESHOLD:
            return f"TAT extended {extensions} times"
        return None

    def overdue_candidates(self, db: Session, now: datetime) -> List[Tuple[int, str]]:
        """
        (ticket_id, reason) for non-final tickets that breached their deadline
        or were extended too often. Read without locks; escalate(auto=True)
        checks each one again.
        """
        final_ids = self.registry.final_ids(db)
        q = db.query(Ticket)
        if final_ids:
            q = q.filter(Ticket.status_id.notin_(final_ids))

        due: List[Tuple[int, str]] = []
        for ticket in q.order_by(Ticket.id).all():
            reason = self._breach_reason(db, ticket, now)
            if reason is not None:
                due.append((ticket.id, reason))
        return due

    def auto_escalate_overdue(
        self, db: Session, now: Optional[datetime] = None
    ) -> List[int]:
        now = now or self.clock()
        escalated: List[int] = []
        for ticket_id, reason in self.overdue_candidates(db, now):
            try:
                record = self.escalate(db, None, ticket_id, reason=reason, now=now, auto=True)
            except TicketCommandError as exc:
                logger.warning(
                    "[LIFECYCLE] Auto-escalation skipped ticket %s: %s",
                    ticket_id, exc.message,
                )
                continue
            if record is not None:
                escalated.append(ticket_id)

        if escalated:
            logger.info("[LIFECYCLE] Auto-escalated %s tickets", len(escalated))
        return escalated

    # Reminders

    def reminder_candidates(self, db: Session, now: datetime) -> List[Tuple[int, str]]:
        """(ticket_id, kind) for assigned tickets whose handler has not been reminded today."""
        final_ids = self.registry.final_ids(db)
        q = db.query(Ticket).filter(Ticket.assigned_to.isnot(None))
        if final_ids:
            q = q.filter(Ticket.status_id.notin_(final_ids))

        due: List[Tuple[int, str]] = []
        for ticket in q.order_by(Ticket.id).all():
            kind = self._reminder_kind(db, ticket, now)
            if kind is not None:
                due.append((ticket.id, kind))
        return due

    def _reminder_kind(self, db: Session, ticket: Ticket, now: datetime) -> Optional[str]:
        if ticket.assigned_to is None or ticket.status_id in self.registry.final_ids(db):
            return None
        meta = load_metadata(ticket.meta)
        if meta.reminded_at is not None and meta.reminded_at.date() == now.date():
            return None
        return lifecycle.reminder_kind(self._status(db, ticket), ticket, meta.tat, now)

    def remind(self, db: Session, ticket_id: int, now: Optional[datetime] = None) -> Optional[str]:
        """
        Queue a reminder for the ticket's handler. Returns the reminder kind,
        or None when nothing is due or a reminder already went out today.
        """
        now = now or self.clock()
        with unit_of_work(db):
            ticket = self._lock_ticket(db, ticket_id)
            kind = self._reminder_kind(db, ticket, now)
            if kind is None:
                return None

            meta = load_metadata(ticket.meta)
            meta.reminded_at = now
            ticket.meta = dump_metadata(meta)

            if kind == lifecycle.REMINDER_UNACKNOWLEDGED:
                due_at = ticket.acknowledgement_due_at
            else:
                due_at = lifecycle.effective_due_at(ticket.resolution_due_at, meta.tat, now)
            enqueue(
                db,
                TICKET_REMINDER,
                {
                    "ticket_id": ticket.id,
                    "kind": kind,
                    "assigned_to": ticket.assigned_to,
                    "due_at": _iso(due_at),
                },
            )

        logger.info("[LIFECYCLE] Reminder (%s) queued for ticket %s", kind, ticket_id)
        return kind

    def send_reminders(self, db: Session, now: Optional[datetime] = None) -> List[int]:
        now = now or self.clock()
        reminded: List[int] = []
        for ticket_id, _ in self.reminder_candidates(db, now):
            try:
                kind = self.remind(db, ticket_id, now=now)
            except TicketCommandError as exc:
                logger.warning(
                    "[LIFECYCLE] Reminder skipped ticket %s: %s", ticket_id, exc.message
                )
                continue
            if kind is not None:
                reminded.append(ticket_id)

        if reminded:
            logger.info("[LIFECYCLE] Sent reminders for %s tickets", len(reminded))
        return reminded
