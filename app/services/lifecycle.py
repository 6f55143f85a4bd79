"""
Ticket lifecycle engine.

This is the core enforcement mechanism - every ticket mutation MUST go through here.
A transition either fully applies (ticket fields, status and one audit entry in a
single commit) or is refused with no trace at all.
"""
import functools
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.audit import TicketAuditEntry
from app.models.domain import Ticket, TicketComment
from app.models.enums import (
    AuditEventKind,
    IntakeMethod,
    TicketStatus,
    TransitionEvent,
)
from app.services.audit_log import TicketAuditLog
from app.services.business_calendar import (
    default_due_date,
    is_overdue,
    plan_deadline_ceiling,
    postponement_floor,
    to_day,
    utc_now,
)
from app.services.directory import Actor, DatabaseDirectory, Directory
from app.services.errors import (
    InvalidStateForEvent,
    NotFound,
    StoreUnavailable,
    UnauthorizedTransition,
    ValidationFailure,
)
from app.services.locks import TicketLockRegistry, ticket_locks
from app.services.transition_guard import TransitionGuard

logger = logging.getLogger(__name__)

# event -> (statuses it may be issued from, resulting status)
TRANSITIONS: Dict[TransitionEvent, Tuple[frozenset, TicketStatus]] = {
    TransitionEvent.INTAKE: (
        frozenset({TicketStatus.WAITING}),
        TicketStatus.RECEIVED,
    ),
    TransitionEvent.REGISTER_PLAN: (
        frozenset({TicketStatus.RECEIVED, TicketStatus.IN_PROGRESS, TicketStatus.DELAYED}),
        TicketStatus.IN_PROGRESS,
    ),
    TransitionEvent.REQUEST_POSTPONEMENT: (
        frozenset({TicketStatus.IN_PROGRESS, TicketStatus.DELAYED}),
        TicketStatus.POSTPONE_REQUESTED,
    ),
    TransitionEvent.APPROVE_POSTPONEMENT: (
        frozenset({TicketStatus.POSTPONE_REQUESTED, TicketStatus.DELAYED}),
        TicketStatus.IN_PROGRESS,
    ),
    TransitionEvent.REJECT_POSTPONEMENT: (
        frozenset({TicketStatus.POSTPONE_REQUESTED, TicketStatus.DELAYED}),
        TicketStatus.IN_PROGRESS,
    ),
    TransitionEvent.REQUEST_COMPLETION: (
        frozenset({TicketStatus.IN_PROGRESS, TicketStatus.DELAYED}),
        TicketStatus.COMPLETION_REQUESTED,
    ),
    TransitionEvent.APPROVE_COMPLETION: (
        frozenset({TicketStatus.COMPLETION_REQUESTED}),
        TicketStatus.COMPLETED,
    ),
    TransitionEvent.REJECT_COMPLETION: (
        frozenset({TicketStatus.COMPLETION_REQUESTED}),
        TicketStatus.IN_PROGRESS,
    ),
    TransitionEvent.MARK_DELAYED: (
        frozenset({TicketStatus.IN_PROGRESS, TicketStatus.POSTPONE_REQUESTED}),
        TicketStatus.DELAYED,
    ),
}

# Events that act on a pending postponement; from DELAYED they need one to exist
POSTPONEMENT_EVENTS = frozenset({
    TransitionEvent.REQUEST_POSTPONEMENT,
    TransitionEvent.APPROVE_POSTPONEMENT,
    TransitionEvent.REJECT_POSTPONEMENT,
})

_CLEARED_POSTPONEMENT = {"postpone_date": None, "postpone_reason": None}

Changes = Dict[str, Any]


def allowed_sources(event: TransitionEvent) -> frozenset:
    return TRANSITIONS[event][0]


def store_errors(method):
    """Roll back and surface any store failure, read or write, as StoreUnavailable."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Store failure in %s, change rolled back: %s", method.__name__, exc)
            raise StoreUnavailable("The ticket store is unavailable; nothing was applied") from exc

    return wrapper


class TicketLifecycleEngine:
    """State machine over tickets: guard, validate, mutate, journal."""

    def __init__(
        self,
        db: Session,
        directory: Optional[Directory] = None,
        locks: Optional[TicketLockRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.directory = directory or DatabaseDirectory(db)
        self.locks = locks or ticket_locks
        self.clock = clock or utc_now
        self.audit_log = TicketAuditLog(db)

    # ------------------------------------------------------------------
    # Creation and deletion
    # ------------------------------------------------------------------

    @store_errors
    def create_ticket(
        self,
        requester: Actor,
        project_id: str,
        title: str,
        description: str,
        due_date: Optional[date] = None,
        *,
        on_behalf_of: Optional[str] = None,
        shortened_due_reason: Optional[str] = None,
        intake_method: Optional[IntakeMethod] = None,
        request_date: Optional[date] = None,
        at: Optional[datetime] = None,
    ) -> Ticket:
        """
        Register a new ticket.

        Customers create WAITING tickets for themselves. Support staff and admins
        register RECEIVED tickets, optionally on behalf of a customer.
        """
        staffing = self.directory.get_staffing(project_id)
        if staffing is None:
            raise NotFound(f"Project {project_id} not found", details={"project_id": project_id})

        if requester.is_system:
            raise UnauthorizedTransition("The system actor cannot register tickets")
        if requester.is_customer and requester.id not in staffing.customer_contact_ids:
            raise UnauthorizedTransition(
                f"{requester.name} is not a customer contact of project {project_id}"
            )
        if requester.is_support_side and requester.id not in staffing.support_staff_ids:
            raise UnauthorizedTransition(
                f"{requester.name} is not on the support staff of project {project_id}"
            )

        title = (title or "").strip()
        description = (description or "").strip()
        if not title or not description:
            raise ValidationFailure("Title and description are required")

        now = at or self.clock()
        today = to_day(now)
        default_due = default_due_date(today)
        due = to_day(due_date) if due_date is not None else default_due
        if due < today:
            raise ValidationFailure(
                f"Due date {due.isoformat()} is before the registration day {today.isoformat()}",
                details={"due_date": due.isoformat()},
            )
        shortened_due_reason = (shortened_due_reason or "").strip() or None
        if due < default_due and not shortened_due_reason:
            raise ValidationFailure(
                f"A reason is required for a due date earlier than {default_due.isoformat()}",
                details={"default_due_date": default_due.isoformat()},
            )

        if requester.is_customer:
            status = TicketStatus.WAITING
            requester_id = requester.id
            if on_behalf_of and on_behalf_of != requester.id:
                raise UnauthorizedTransition("Customers can only register tickets for themselves")
            intake_method = None
            request_date = None
        else:
            status = TicketStatus.RECEIVED
            requester_id = on_behalf_of or requester.id
            if on_behalf_of:
                customer = self.directory.get_actor(on_behalf_of)
                if (
                    customer is None
                    or not customer.is_customer
                    or customer.id not in staffing.customer_contact_ids
                ):
                    raise ValidationFailure(
                        f"{on_behalf_of} is not a customer contact of project {project_id}",
                        details={"on_behalf_of": on_behalf_of},
                    )
            request_date = to_day(request_date) if request_date is not None else today

        ticket = Ticket(
            id=f"T-{uuid4().hex[:8].upper()}",
            title=title,
            description=description,
            status=status,
            requester_id=requester_id,
            created_by_id=requester.id,
            assignee_id=staffing.project_manager_id,
            project_id=project_id,
            created_at=now,
            updated_at=now,
            original_due_date=due,
            due_date=due,
            shortened_due_reason=shortened_due_reason if due < default_due else None,
            intake_method=intake_method,
            request_date=request_date,
        )
        self.db.add(ticket)

        note = "Ticket registered."
        if requester_id != requester.id:
            note = f"Ticket registered on behalf of {self.directory.display_name(requester_id)}."
        self.audit_log.append(
            ticket_id=ticket.id,
            from_status=None,
            resulting_status=status,
            event_kind=AuditEventKind.CREATED,
            actor=requester,
            note=note,
            at=now,
        )
        self.db.commit()
        self.db.refresh(ticket)

        logger.info("Ticket %s created by %s in %s (due %s)", ticket.id, requester.id, status.value, due)
        return ticket

    @store_errors
    def delete_ticket(self, ticket_id: str, actor: Actor) -> None:
        """
        Delete a ticket together with its audit entries and comments.

        Only allowed for the creator (or an admin) while nothing beyond the
        registration has happened to the ticket.
        """
        with self.locks.hold(ticket_id):
            ticket = self._load_for_update(ticket_id)
            if not TransitionGuard.can_delete(actor, ticket):
                raise UnauthorizedTransition(
                    "Only the ticket's creator or an admin can delete it",
                    details={"ticket_id": ticket_id},
                )
            history = self.audit_log.list(ticket_id)
            if len(history) != 1 or history[0].resulting_status != ticket.status:
                raise InvalidStateForEvent(
                    "A ticket can only be deleted before any transition has been applied",
                    details={"ticket_id": ticket_id, "status": ticket.status.value},
                )
            self.db.delete(ticket)
            self.db.commit()
        self.locks.discard(ticket_id)
        logger.info("Ticket %s deleted by %s", ticket_id, actor.id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @store_errors
    def submit_transition(
        self,
        ticket_id: str,
        event: TransitionEvent,
        actor: Actor,
        payload: Optional[Mapping[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> Ticket:
        """
        Apply `event` to a ticket on behalf of `actor`.

        Checks run in order: ticket exists, guard, state table, payload rules.
        Raises NotFound, UnauthorizedTransition, InvalidStateForEvent,
        ValidationFailure or StoreUnavailable; on any of them nothing changes.
        """
        event = TransitionEvent(event)
        payload = dict(payload or {})

        with self.locks.hold(ticket_id):
            ticket = self._load_for_update(ticket_id)
            now = at or self.clock()
            staffing = self.directory.get_staffing(ticket.project_id)

            if not TransitionGuard.is_allowed(actor, ticket, staffing, event):
                reason = TransitionGuard.denial_reason(actor, ticket, staffing, event)
                logger.warning("Refused %s on %s for %s: %s", event.value, ticket_id, actor.id, reason)
                raise UnauthorizedTransition(
                    reason,
                    details={"ticket_id": ticket_id, "event": event.value, "actor_id": actor.id},
                )

            self._check_state(ticket, event)

            handler = self._handlers()[event]
            changes, note = handler(ticket, actor, payload, now)

            from_status = ticket.status
            target = TRANSITIONS[event][1]
            for field, value in changes.items():
                setattr(ticket, field, value)
            ticket.status = target
            ticket.updated_at = now

            self.audit_log.append(
                ticket_id=ticket.id,
                from_status=from_status,
                resulting_status=target,
                event_kind=AuditEventKind.for_event(event),
                actor=actor,
                note=note,
                at=now,
            )
            self.db.commit()

        if target == TicketStatus.COMPLETED:
            # Terminal: no further transitions will ask for this lock
            self.locks.discard(ticket_id)

        logger.info(
            "Ticket %s: %s -> %s via %s by %s",
            ticket_id, from_status.value, target.value, event.value, actor.id,
        )
        return ticket

    def _check_state(self, ticket: Ticket, event: TransitionEvent) -> None:
        sources = allowed_sources(event)
        if ticket.status not in sources:
            raise InvalidStateForEvent(
                f"{event.value} is not allowed while the ticket is {ticket.status.value}",
                details={
                    "ticket_id": ticket.id,
                    "status": ticket.status.value,
                    "allowed_from": sorted(s.value for s in sources),
                },
            )
        # A delayed ticket only reaches the postponement flow if a request was already pending
        if (
            event in POSTPONEMENT_EVENTS
            and ticket.status == TicketStatus.DELAYED
            and not ticket.has_pending_postponement
        ):
            raise InvalidStateForEvent(
                f"{event.value} is not allowed on a delayed ticket without a pending postponement",
                details={"ticket_id": ticket.id, "status": ticket.status.value},
            )

    def _handlers(self) -> Dict[TransitionEvent, Callable[..., Tuple[Changes, str]]]:
        return {
            TransitionEvent.INTAKE: self._intake,
            TransitionEvent.REGISTER_PLAN: self._register_plan,
            TransitionEvent.REQUEST_POSTPONEMENT: self._request_postponement,
            TransitionEvent.APPROVE_POSTPONEMENT: self._approve_postponement,
            TransitionEvent.REJECT_POSTPONEMENT: self._reject_postponement,
            TransitionEvent.REQUEST_COMPLETION: self._request_completion,
            TransitionEvent.APPROVE_COMPLETION: self._approve_completion,
            TransitionEvent.REJECT_COMPLETION: self._reject_completion,
            TransitionEvent.MARK_DELAYED: self._mark_delayed,
        }

    # Each handler validates the payload and returns (field changes, audit note)
    # without touching the ticket.

    def _intake(self, ticket, actor, payload, now) -> Tuple[Changes, str]:
        return {}, "Support team received the ticket and started review."

    def _register_plan(self, ticket, actor, payload, now) -> Tuple[Changes, str]:
        plan = _require_text(payload, "plan", "Plan description")
        expected = _require_date(payload, "expected_completion_date", "Expected completion date")

        ceiling = plan_deadline_ceiling(ticket.original_due_date)
        if expected > ceiling:
            raise ValidationFailure(
                f"Expected completion date {expected.isoformat()} exceeds the latest allowed "
                f"date {ceiling.isoformat()} (original due date + 3 business days)",
                details={"expected_completion_date": expected.isoformat(), "latest_allowed": ceiling.isoformat()},
            )
        created_day = to_day(ticket.created_at)
        if expected < created_day:
            raise ValidationFailure(
                f"Expected completion date {expected.isoformat()} is before the ticket was "
                f"registered ({created_day.isoformat()})",
                details={"expected_completion_date": expected.isoformat()},
            )

        delay_reason = _optional_text(payload, "delay_reason") if expected > ticket.due_date else None
        changes: Changes = {
            "plan": plan,
            "expected_completion_date": expected,
            "due_date": expected,
            "expected_completion_delay_reason": delay_reason,
        }
        if actor.is_support_side:
            changes["assignee_id"] = actor.id

        note = f"Plan registered: {plan} (due {expected.isoformat()})"
        if delay_reason:
            note += f" Delay reason: {delay_reason}"
        if ticket.has_pending_postponement:
            changes.update(_CLEARED_POSTPONEMENT)
            note += " Pending postponement request withdrawn."
        return changes, note

    def _request_postponement(self, ticket, actor, payload, now) -> Tuple[Changes, str]:
        reason = _require_text(payload, "reason", "Postponement reason")
        requested = _require_date(payload, "postpone_date", "Postponement date")

        # Strictly after the effective due date, and a business day past the planned date
        earliest = max(
            postponement_floor(ticket.due_date),
            postponement_floor(ticket.expected_completion_date or ticket.due_date),
        )
        if requested < earliest:
            raise ValidationFailure(
                f"Postponement date {requested.isoformat()} must be on or after {earliest.isoformat()}",
                details={"postpone_date": requested.isoformat(), "earliest_allowed": earliest.isoformat()},
            )

        changes = {"postpone_date": requested, "postpone_reason": reason}
        note = (
            f"Postponement requested: due {ticket.due_date.isoformat()} -> {requested.isoformat()}. "
            f"Reason: {reason}"
        )
        return changes, note

    def _approve_postponement(self, ticket, actor, payload, now) -> Tuple[Changes, str]:
        new_due = ticket.postpone_date
        changes = {
            "due_date": new_due,
            "expected_completion_date": new_due,
            "rejection_reason": None,
            "rejection_event": None,
            **_CLEARED_POSTPONEMENT,
        }
        return changes, f"Postponement approved: due date extended to {new_due.isoformat()}."

    def _reject_postponement(self, ticket, actor, payload, now) -> Tuple[Changes, str]:
        reason = _require_text(payload, "reason", "Rejection reason")
        changes = {
            "rejection_reason": reason,
            "rejection_event": TransitionEvent.REJECT_POSTPONEMENT,
            **_CLEARED_POSTPONEMENT,
        }
        return changes, (
            f"Postponement to {ticket.postpone_date.isoformat()} rejected. Reason: {reason}"
        )

    def _request_completion(self, ticket, actor, payload, now) -> Tuple[Changes, str]:
        note = "Completion reported; awaiting the requester's review."
        changes: Changes = {}
        if ticket.has_pending_postponement:
            changes.update(_CLEARED_POSTPONEMENT)
            note += " Pending postponement request withdrawn."
        return changes, note

    def _approve_completion(self, ticket, actor, payload, now) -> Tuple[Changes, str]:
        satisfaction = _require_satisfaction(payload)
        feedback = _optional_text(payload, "feedback")
        changes = {
            "satisfaction": satisfaction,
            "completion_feedback": feedback,
            "rejection_reason": None,
            "rejection_event": None,
        }
        return changes, (
            f"Completion approved. Satisfaction: {satisfaction}/5. Feedback: {feedback or 'none'}"
        )

    def _reject_completion(self, ticket, actor, payload, now) -> Tuple[Changes, str]:
        reason = _require_text(payload, "reason", "Rejection reason")
        changes = {
            "rejection_reason": reason,
            "rejection_event": TransitionEvent.REJECT_COMPLETION,
        }
        return changes, f"Completion rejected, rework requested. Reason: {reason}"

    def _mark_delayed(self, ticket, actor, payload, now) -> Tuple[Changes, str]:
        if not is_overdue(ticket.due_date, now):
            raise ValidationFailure(
                f"Ticket {ticket.id} is not overdue (due {ticket.due_date.isoformat()})",
                details={"due_date": ticket.due_date.isoformat()},
            )
        return {}, f"Due date {ticket.due_date.isoformat()} passed; ticket marked as delayed."

    # ------------------------------------------------------------------
    # Reads and comments
    # ------------------------------------------------------------------

    @store_errors
    def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.db.query(Ticket).filter(Ticket.id == ticket_id).first()
        if not ticket:
            raise NotFound(f"Ticket {ticket_id} not found", details={"ticket_id": ticket_id})
        return ticket

    @store_errors
    def list_tickets(
        self,
        actor: Optional[Actor] = None,
        status: Optional[TicketStatus] = None,
        project_id: Optional[str] = None,
    ) -> List[Ticket]:
        """Tickets newest first, limited to what `actor` may see when given."""
        query = self.db.query(Ticket)
        if status is not None:
            query = query.filter(Ticket.status == status)
        if project_id is not None:
            query = query.filter(Ticket.project_id == project_id)
        tickets = query.order_by(Ticket.created_at.desc()).all()

        if actor is None or actor.is_admin:
            return tickets
        staffing_cache = {}
        visible = []
        for ticket in tickets:
            if ticket.project_id not in staffing_cache:
                staffing_cache[ticket.project_id] = self.directory.get_staffing(ticket.project_id)
            if TransitionGuard.can_view(actor, ticket, staffing_cache[ticket.project_id]):
                visible.append(ticket)
        return visible

    @store_errors
    def list_history(self, ticket_id: str, descending: bool = False) -> List[TicketAuditEntry]:
        self.get_ticket(ticket_id)
        return self.audit_log.list(ticket_id, descending=descending)

    @store_errors
    def add_comment(self, ticket_id: str, actor: Actor, content: str) -> TicketComment:
        ticket = self.get_ticket(ticket_id)
        staffing = self.directory.get_staffing(ticket.project_id)
        if not TransitionGuard.can_comment(actor, ticket, staffing):
            raise UnauthorizedTransition(
                f"{actor.name} cannot comment on ticket {ticket_id}",
                details={"ticket_id": ticket_id},
            )
        content = (content or "").strip()
        if not content:
            raise ValidationFailure("Comment content is required")

        comment = TicketComment(
            ticket_id=ticket_id,
            author_id=actor.id,
            author_name=actor.name,
            content=content,
            created_at=self.clock(),
        )
        self.db.add(comment)
        self.db.commit()
        self.db.refresh(comment)
        return comment

    @store_errors
    def list_comments(self, ticket_id: str) -> List[TicketComment]:
        self.get_ticket(ticket_id)
        return (
            self.db.query(TicketComment)
            .filter(TicketComment.ticket_id == ticket_id)
            .order_by(TicketComment.created_at.asc(), TicketComment.id.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def _load_for_update(self, ticket_id: str) -> Ticket:
        # populate_existing discards any stale copy in the identity map
        ticket = (
            self.db.query(Ticket)
            .populate_existing()
            .filter(Ticket.id == ticket_id)
            .first()
        )
        if not ticket:
            raise NotFound(f"Ticket {ticket_id} not found", details={"ticket_id": ticket_id})
        return ticket


def _require_text(payload: Mapping[str, Any], key: str, label: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailure(f"{label} is required", details={"field": key})
    return value.strip()


def _optional_text(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailure(f"{key} must be text", details={"field": key})
    return value.strip() or None


def _require_date(payload: Mapping[str, Any], key: str, label: str) -> date:
    value = payload.get(key)
    if isinstance(value, (date, datetime)):
        return to_day(value)
    if isinstance(value, str) and value.strip():
        try:
            return to_day(datetime.fromisoformat(value.strip()))
        except ValueError:
            raise ValidationFailure(
                f"{label} is not a valid ISO date: {value!r}", details={"field": key}
            ) from None
    raise ValidationFailure(f"{label} is required", details={"field": key})


def _require_satisfaction(payload: Mapping[str, Any]) -> int:
    value = payload.get("satisfaction")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailure("Satisfaction score (1-5) is required", details={"field": "satisfaction"})
    if not 1 <= value <= 5:
        raise ValidationFailure(
            f"Satisfaction must be between 1 and 5, got {value}",
            details={"field": "satisfaction"},
        )
    return value
