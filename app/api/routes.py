"""API routes for the ticket lifecycle."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.domain import Ticket
from app.models.enums import TicketStatus
from app.services.audit_log import TicketAuditLog
from app.services.business_calendar import d_day_label, utc_now
from app.services.directory import Actor, DatabaseDirectory
from app.services.lifecycle import TicketLifecycleEngine
from app.services.sweeper import OverdueSweeper
from app.services.transition_guard import TransitionGuard
from app.api.schemas import (
    TicketCreate,
    TicketResponse,
    TicketList,
    TransitionRequest,
    AuditEntryResponse,
    CommentCreate,
    CommentResponse,
    SweepResponse,
    ERROR_RESPONSES
)

router = APIRouter()


def get_engine(db: Session = Depends(get_db)) -> TicketLifecycleEngine:
    return TicketLifecycleEngine(db)


def get_current_actor(
    x_actor_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Actor:
    """Resolve the already-authenticated caller named by the X-Actor-Id header."""
    if not x_actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Actor-Id header is required")
    actor = DatabaseDirectory(db).get_actor(x_actor_id)
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown actor")
    return actor


def get_sweeper(request: Request) -> OverdueSweeper:
    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Overdue sweeper is not configured")
    return sweeper


def _ticket_response(ticket: Ticket, engine: TicketLifecycleEngine) -> TicketResponse:
    response = TicketResponse.model_validate(ticket)
    if ticket.status != TicketStatus.COMPLETED:
        response.d_day = d_day_label(ticket.due_date, engine.clock())
    return response


def _visible_ticket(ticket_id: str, actor: Actor, engine: TicketLifecycleEngine) -> Ticket:
    ticket = engine.get_ticket(ticket_id)
    staffing = engine.directory.get_staffing(ticket.project_id)
    if not TransitionGuard.can_view(actor, ticket, staffing):
        # Do not reveal tickets the caller cannot see
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


# Ticket endpoints
@router.post("/tickets", response_model=TicketResponse, status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
def create_ticket(
    ticket_data: TicketCreate,
    actor: Actor = Depends(get_current_actor),
    engine: TicketLifecycleEngine = Depends(get_engine),
):
    """Register a ticket. Customers start in WAITING, support/admin registrations in RECEIVED."""
    ticket = engine.create_ticket(
        actor,
        ticket_data.project_id,
        ticket_data.title,
        ticket_data.description,
        ticket_data.due_date,
        on_behalf_of=ticket_data.on_behalf_of,
        shortened_due_reason=ticket_data.shortened_due_reason,
        intake_method=ticket_data.intake_method,
        request_date=ticket_data.request_date,
    )
    return _ticket_response(ticket, engine)


@router.get("/tickets", response_model=TicketList)
def list_tickets(
    status_filter: Optional[TicketStatus] = Query(None, alias="status"),
    project_id: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    engine: TicketLifecycleEngine = Depends(get_engine),
):
    """List the tickets the caller can see, newest first."""
    tickets = engine.list_tickets(actor=actor, status=status_filter, project_id=project_id)
    items = [_ticket_response(t, engine) for t in tickets]
    return TicketList(items=items, total=len(items))


@router.get("/tickets/{ticket_id}", response_model=TicketResponse, responses=ERROR_RESPONSES)
def get_ticket(
    ticket_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: TicketLifecycleEngine = Depends(get_engine),
):
    return _ticket_response(_visible_ticket(ticket_id, actor, engine), engine)


@router.delete("/tickets/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT, responses=ERROR_RESPONSES)
def delete_ticket(
    ticket_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: TicketLifecycleEngine = Depends(get_engine),
):
    """Delete a ticket that is still in its initial state, with its history and comments."""
    engine.delete_ticket(ticket_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Transition endpoint
@router.post("/tickets/{ticket_id}/transitions", response_model=TicketResponse, responses=ERROR_RESPONSES)
def submit_transition(
    ticket_id: str,
    transition: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    engine: TicketLifecycleEngine = Depends(get_engine),
):
    """
    Apply a lifecycle event to a ticket.

    WILL REFUSE with no change if:
    - the caller's role does not allow the event (403)
    - the event is not defined for the ticket's status (409)
    - the payload breaks a deadline or required-field rule (422)
    """
    ticket = engine.submit_transition(ticket_id, transition.event, actor, transition.payload)
    return _ticket_response(ticket, engine)


# History endpoints
@router.get("/tickets/{ticket_id}/history", response_model=List[AuditEntryResponse], responses=ERROR_RESPONSES)
def list_history(
    ticket_id: str,
    order: str = Query("asc", pattern="^(asc|desc)$"),
    actor: Actor = Depends(get_current_actor),
    engine: TicketLifecycleEngine = Depends(get_engine),
):
    """Audit journal of a ticket, oldest first by default."""
    _visible_ticket(ticket_id, actor, engine)
    entries = engine.list_history(ticket_id, descending=(order == "desc"))
    responses = []
    for entry in entries:
        item = AuditEntryResponse.model_validate(entry)
        item.label = TicketAuditLog.action_label(entry)
        responses.append(item)
    return responses


# Comment endpoints
@router.post("/tickets/{ticket_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
def add_comment(
    ticket_id: str,
    comment_data: CommentCreate,
    actor: Actor = Depends(get_current_actor),
    engine: TicketLifecycleEngine = Depends(get_engine),
):
    return engine.add_comment(ticket_id, actor, comment_data.content)


@router.get("/tickets/{ticket_id}/comments", response_model=List[CommentResponse], responses=ERROR_RESPONSES)
def list_comments(
    ticket_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: TicketLifecycleEngine = Depends(get_engine),
):
    _visible_ticket(ticket_id, actor, engine)
    return engine.list_comments(ticket_id)


# Sweep endpoint
@router.post("/sweeps", response_model=SweepResponse)
def run_sweep(
    actor: Actor = Depends(get_current_actor),
    sweeper: OverdueSweeper = Depends(get_sweeper),
):
    """Run one overdue sweep immediately. Admin only."""
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can trigger a sweep")
    ran_at = utc_now()
    transitioned = sweeper.run_overdue_sweep(ran_at)
    return SweepResponse(transitioned=transitioned, ran_at=ran_at)
