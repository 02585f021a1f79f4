# campus_helpdesk/backend/app/services/assignment.py
"""
Assignment resolver.

A ticket is routed by running an ordered list of strategies; the first one
that names an active handler wins:

  1. sub-subcategory override
  2. subcategory override
  3. dynamic-field override (fields in display order)
  4. category assignments (primary first, highest priority, least loaded)
  5. category default admin
  6. domain/scope escalation chain, level 1, then the super admin

When nothing matches the ticket is left unassigned and flagged for an
operator. Missing configuration never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.category import (
    SCOPE_DYNAMIC,
    Category,
    CategoryAssignment,
    CategoryField,
    Subcategory,
    SubSubcategory,
)
from ..models.domain import Domain, Scope
from ..models.escalation import EscalationRule
from ..models.student import StudentProfile
from ..models.ticket import Ticket
from ..models.ticket_status import TicketStatus
from ..models.user import User
from .directory import DirectoryCache

logger = logging.getLogger(__name__)

STEP_SUB_SUBCATEGORY = "sub_subcategory"
STEP_SUBCATEGORY = "subcategory"
STEP_FIELD = "field"
STEP_CATEGORY_ASSIGNMENT = "category_assignment"
STEP_CATEGORY_DEFAULT = "category_default"
STEP_DOMAIN_SCOPE = "domain_scope"
STEP_UNASSIGNED = "unassigned"
STEP_MANUAL = "manual"


@dataclass
class AssignmentContext:
    db: Session
    category: Category
    subcategory: Optional[Subcategory] = None
    sub_subcategory: Optional[SubSubcategory] = None
    field_slugs: Sequence[str] = ()
    location: Optional[str] = None
    creator_id: Optional[int] = None
    directory: DirectoryCache = field(default_factory=DirectoryCache)


@dataclass(frozen=True)
class Resolution:
    handler_id: Optional[int]
    step: str
    needs_attention: bool = False


Strategy = Callable[[AssignmentContext], Optional[int]]


def _active_handler(db: Session, user_id: Optional[int]) -> Optional[int]:
    if user_id is None:
        return None
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        logger.info("[ASSIGN] Skipping inactive or missing handler %s", user_id)
        return None
    return user.id


# Strategies

def sub_subcategory_override(ctx: AssignmentContext) -> Optional[int]:
    if ctx.sub_subcategory is None:
        return None
    return _active_handler(ctx.db, ctx.sub_subcategory.assigned_admin_id)


def subcategory_override(ctx: AssignmentContext) -> Optional[int]:
    if ctx.subcategory is None:
        return None
    return _active_handler(ctx.db, ctx.subcategory.assigned_admin_id)


def field_override(ctx: AssignmentContext) -> Optional[int]:
    if ctx.subcategory is None or not ctx.field_slugs:
        return None

    fields = (
        ctx.db.query(CategoryField)
        .filter(
            CategoryField.subcategory_id == ctx.subcategory.id,
            CategoryField.active.is_(True),
            CategoryField.assigned_admin_id.isnot(None),
            CategoryField.slug.in_(list(ctx.field_slugs)),
        )
        .order_by(CategoryField.display_order, CategoryField.id)
        .all()
    )
    for f in fields:
        handler = _active_handler(ctx.db, f.assigned_admin_id)
        if handler is not None:
            return handler
    return None


def open_ticket_count(db: Session, user_id: int) -> int:
    return (
        db.query(func.count(Ticket.id))
        .join(TicketStatus, Ticket.status_id == TicketStatus.id)
        .filter(Ticket.assigned_to == user_id, TicketStatus.is_final.is_(False))
        .scalar()
        or 0
    )


def category_assignment(ctx: AssignmentContext) -> Optional[int]:
    """
    Primaries win over non-primaries regardless of priority. Within the
    chosen group the highest priority number wins, then the handler with
    the fewest open tickets, then the oldest assignment row.
    """
    rows = (
        ctx.db.query(CategoryAssignment)
        .join(User, CategoryAssignment.user_id == User.id)
        .filter(
            CategoryAssignment.category_id == ctx.category.id,
            User.is_active.is_(True),
        )
        .order_by(CategoryAssignment.id)
        .all()
    )
    if not rows:
        return None

    primaries = [r for r in rows if r.is_primary]
    pool = primaries or rows
    top = max(r.priority for r in pool)
    candidates = [r for r in pool if r.priority == top]
    if len(candidates) == 1:
        return candidates[0].user_id

    def load_key(row: CategoryAssignment) -> Tuple[int, int]:
        return (open_ticket_count(ctx.db, row.user_id), row.id)

    chosen = min(candidates, key=load_key)
    return chosen.user_id


def category_default(ctx: AssignmentContext) -> Optional[int]:
    return _active_handler(ctx.db, ctx.category.default_admin_id)


def resolve_domain_scope(ctx: AssignmentContext) -> Tuple[Optional[int], Optional[int]]:
    """
    (domain_id, scope_id) used for escalation-rule lookups.

    A "dynamic" category reads the scope name from the creator's student
    profile (e.g. hostel), falling back to the ticket location.
    """
    category = ctx.category
    domain_id = category.domain_id

    if category.scope_mode != SCOPE_DYNAMIC:
        return domain_id, category.scope_id

    scope_name = None
    if category.scope_student_field and ctx.creator_id is not None:
        profile = (
            ctx.db.query(StudentProfile)
            .filter(StudentProfile.user_id == ctx.creator_id)
            .first()
        )
        if profile is not None:
            scope_name = getattr(profile, category.scope_student_field, None)
    if not scope_name:
        scope_name = ctx.location

    if not scope_name:
        return domain_id, category.scope_id

    scope = (
        ctx.db.query(Scope)
        .filter(
            Scope.domain_id == domain_id,
            func.lower(Scope.name) == str(scope_name).strip().lower(),
            Scope.is_active.is_(True),
        )
        .first()
    )
    return domain_id, (scope.id if scope else category.scope_id)


def escalation_rule_for(
    db: Session,
    domain_id: Optional[int],
    scope_id: Optional[int],
    level: int,
    exact: bool = False,
) -> Optional[EscalationRule]:
    """
    Lowest-level rule at or above `level` (exactly `level` when `exact`)
    whose handler is active. Scoped rules are tried before the domain-wide
    (null scope) ones.
    """
    if domain_id is None:
        return None

    scopes: List[Optional[int]] = [scope_id, None] if scope_id is not None else [None]
    for sid in scopes:
        q = (
            db.query(EscalationRule)
            .join(User, EscalationRule.user_id == User.id)
            .filter(
                EscalationRule.domain_id == domain_id,
                User.is_active.is_(True),
            )
        )
        if exact:
            q = q.filter(EscalationRule.level == level)
        else:
            q = q.filter(EscalationRule.level >= level)
        if sid is None:
            q = q.filter(EscalationRule.scope_id.is_(None))
        else:
            q = q.filter(EscalationRule.scope_id == sid)
        rule = q.order_by(EscalationRule.level, EscalationRule.id).first()
        if rule is not None:
            return rule
    return None


def domain_scope_fallback(ctx: AssignmentContext) -> Optional[int]:
    domain_id, scope_id = resolve_domain_scope(ctx)
    domain = ctx.db.get(Domain, domain_id) if domain_id is not None else None
    if domain is not None and domain.is_active:
        rule = escalation_rule_for(ctx.db, domain_id, scope_id, level=1, exact=True)
        if rule is not None:
            return rule.user_id
    return ctx.directory.super_admin_id(ctx.db)


DEFAULT_STRATEGIES: List[Tuple[str, Strategy]] = [
    (STEP_SUB_SUBCATEGORY, sub_subcategory_override),
    (STEP_SUBCATEGORY, subcategory_override),
    (STEP_FIELD, field_override),
    (STEP_CATEGORY_ASSIGNMENT, category_assignment),
    (STEP_CATEGORY_DEFAULT, category_default),
    (STEP_DOMAIN_SCOPE, domain_scope_fallback),
]


class AssignmentResolver:
    def __init__(
        self,
        directory: Optional[DirectoryCache] = None,
        strategies: Optional[Sequence[Tuple[str, Strategy]]] = None,
    ):
        self.directory = directory or DirectoryCache()
        self.strategies = list(strategies or DEFAULT_STRATEGIES)

    def context(
        self,
        db: Session,
        category: Category,
        subcategory: Optional[Subcategory] = None,
        sub_subcategory: Optional[SubSubcategory] = None,
        field_slugs: Sequence[str] = (),
        location: Optional[str] = None,
        creator_id: Optional[int] = None,
    ) -> AssignmentContext:
        return AssignmentContext(
            db=db,
            category=category,
            subcategory=subcategory,
            sub_subcategory=sub_subcategory,
            field_slugs=tuple(field_slugs),
            location=location,
            creator_id=creator_id,
            directory=self.directory,
        )

    def resolve(self, db: Session, category: Category, **kwargs) -> Resolution:
        ctx = self.context(db, category, **kwargs)
        for step, strategy in self.strategies:
            handler_id = strategy(ctx)
            if handler_id is not None:
                logger.info(
                    "[ASSIGN] category=%s resolved to handler %s at step %s",
                    category.id, handler_id, step,
                )
                return Resolution(handler_id=handler_id, step=step)

        logger.warning(
            "[ASSIGN] category=%s has no routable handler; flagged for attention",
            category.id,
        )
        return Resolution(handler_id=None, step=STEP_UNASSIGNED, needs_attention=True)

    def escalation_target(
        self,
        db: Session,
        ctx: AssignmentContext,
        level: int,
    ) -> Tuple[Optional[int], Optional[EscalationRule]]:
        """
        Handler for escalation `level` in the ticket's domain/scope chain.
        Falls back to the super admin when the chain is exhausted.
        """
        domain_id, scope_id = resolve_domain_scope(ctx)
        rule = escalation_rule_for(db, domain_id, scope_id, level)
        if rule is not None:
            return rule.user_id, rule
        return self.directory.super_admin_id(db), None
