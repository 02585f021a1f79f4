# campus_helpdesk/backend/app/api/v1/tickets.py

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ...auth import Identity, get_current_identity
from ...db import get_db
from ...errors import TicketCommandError
from ...schemas.ticket import (
    CommentCreate,
    CommentRead,
    EscalateRequest,
    EscalationRead,
    ForwardRequest,
    RatingRequest,
    ReassignRequest,
    StatusChange,
    TatRequest,
    TicketCreate,
    TicketRead,
)
from ...services.tickets import TicketService

router = APIRouter(prefix="/tickets", tags=["tickets"])

# One service (and its status / directory caches) per process
ticket_service = TicketService()


def get_ticket_service() -> TicketService:
    return ticket_service


def _http_error(exc: TicketCommandError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail={"code": exc.code, "message": exc.message},
    )


def _read(db: Session, ticket):
    db.refresh(ticket)
    return ticket


@router.post(
    "/",
    response_model=TicketRead,
    status_code=status.HTTP_201_CREATED,
)
def create_ticket(
    payload: TicketCreate,
    db: Session = Depends(get_db),
    actor: Identity = Depends(get_current_identity),
    service: TicketService = Depends(get_ticket_service),
):
    try:
        ticket = service.create_ticket(db, actor, payload)
    except TicketCommandError as exc:
        raise _http_error(exc)
    return _read(db, ticket)


@router.get("/{ticket_id}", response_model=TicketRead)
def get_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    actor: Identity = Depends(get_current_identity),
    service: TicketService = Depends(get_ticket_service),
):
    try:
        return service.get_ticket(db, actor, ticket_id)
    except TicketCommandError as exc:
        raise _http_error(exc)


@router.post("/{ticket_id}/status", response_model=TicketRead)
def change_status(
    ticket_id: int,
    payload: StatusChange,
    db: Session = Depends(get_db),
    actor: Identity = Depends(get_current_identity),
    service: TicketService = Depends(get_ticket_service),
):
    try:
        ticket = service.change_status(db, actor, ticket_id, payload.status, reason=payload.reason)
    except TicketCommandError as exc:
        raise _http_error(exc)
    return _read(db, ticket)


@router.post(
    "/{ticket_id}/comments",
    response_model=CommentRead,
    status_code=status.HTTP_201_CREATED,
)
def add_comment(
    ticket_id: int,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    actor: Identity = Depends(get_current_identity),
    service: TicketService = Depends(get_ticket_service),
):
    try:
        return service.add_comment(
            db,
            actor,
            ticket_id,
            payload.body,
            visibility=payload.visibility,
            ask_question=payload.ask_question,
        )
    except TicketCommandError as exc:
        raise _http_error(exc)


@router.post(
    "/{ticket_id}/escalate",
    response_model=EscalationRead,
    status_code=status.HTTP_201_CREATED,
)
def escalate_ticket(
    ticket_id: int,
    payload: EscalateRequest,
    db: Session = Depends(get_db),
    actor: Identity = Depends(get_current_identity),
    service: TicketService = Depends(get_ticket_service),
):
    try:
        return service.escalate(db, actor, ticket_id, reason=payload.reason)
    except TicketCommandError as exc:
        raise _http_error(exc)


@router.post("/{ticket_id}/forward", response_model=TicketRead)
def forward_ticket(
    ticket_id: int,
    payload: ForwardRequest,
    db: Session = Depends(get_db),
    actor: Identity = Depends(get_current_identity),
    service: TicketService = Depends(get_ticket_service),
):
    try:
        ticket = service.forward(db, actor, ticket_id, payload.target, reason=payload.reason)
    except TicketCommandError as exc:
        raise _http_error(exc)
    return _read(db, ticket)


@router.post("/{ticket_id}/reassign", response_model=TicketRead)
def reassign_ticket(
    ticket_id: int,
    payload: ReassignRequest,
    db: Session = Depends(get_db),
    actor: Identity = Depends(get_current_identity),
    service: TicketService = Depends(get_ticket_service),
):
    try:
        ticket = service.reassign(db, actor, ticket_id, payload.target_handler_id)
    except TicketCommandError as exc:
        raise _http_error(exc)
    return _read(db, ticket)


@router.post("/{ticket_id}/tat", response_model=TicketRead)
def set_ticket_tat(
    ticket_id: int,
    payload: TatRequest,
    db: Session = Depends(get_db),
    actor: Identity = Depends(get_current_identity),
    service: TicketService = Depends(get_ticket_service),
):
    try:
        ticket = service.set_tat(
            db, actor, ticket_id, payload.tat_hours, mark_in_progress=payload.mark_in_progress
        )
    except TicketCommandError as exc:
        raise _http_error(exc)
    return _read(db, ticket)


@router.post("/{ticket_id}/rating", response_model=TicketRead)
def rate_ticket(
    ticket_id: int,
    payload: RatingRequest,
    db: Session = Depends(get_db),
    actor: Identity = Depends(get_current_identity),
    service: TicketService = Depends(get_ticket_service),
):
    try:
        ticket = service.rate_ticket(db, actor, ticket_id, payload.rating, payload.feedback)
    except TicketCommandError as exc:
        raise _http_error(exc)
    return _read(db, ticket)
