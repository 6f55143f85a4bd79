"""
Authorization for ticket transitions.

Support-side roles drive a ticket forward (intake, planning, completion reports);
the requester - or an admin standing in - approves or rejects what support proposes.
Deadline breaches belong to the system actor alone.
"""
from typing import Optional

from app.models.domain import Ticket
from app.models.enums import TransitionEvent
from app.services.directory import Actor, ProjectStaffing

SUPPORT_DRIVEN_EVENTS = frozenset({
    TransitionEvent.INTAKE,
    TransitionEvent.REGISTER_PLAN,
    TransitionEvent.REQUEST_POSTPONEMENT,
    TransitionEvent.REQUEST_COMPLETION,
})

REQUESTER_DRIVEN_EVENTS = frozenset({
    TransitionEvent.APPROVE_POSTPONEMENT,
    TransitionEvent.REJECT_POSTPONEMENT,
    TransitionEvent.APPROVE_COMPLETION,
    TransitionEvent.REJECT_COMPLETION,
})

SYSTEM_EVENTS = frozenset({TransitionEvent.MARK_DELAYED})


class TransitionGuard:
    """Pure allow/deny decisions over (actor, ticket ownership, project staffing, event)."""

    @staticmethod
    def is_project_staff(actor: Actor, staffing: Optional[ProjectStaffing]) -> bool:
        return staffing is not None and actor.id in staffing.support_staff_ids

    @staticmethod
    def is_requester(actor: Actor, ticket: Ticket) -> bool:
        return actor.id == ticket.requester_id

    @classmethod
    def is_allowed(
        cls,
        actor: Actor,
        ticket: Ticket,
        staffing: Optional[ProjectStaffing],
        event: TransitionEvent,
    ) -> bool:
        if event in SYSTEM_EVENTS:
            return actor.is_system
        if actor.is_system:
            return False
        if actor.is_admin:
            return True
        if event in SUPPORT_DRIVEN_EVENTS:
            return actor.is_support_side and cls.is_project_staff(actor, staffing)
        if event in REQUESTER_DRIVEN_EVENTS:
            # Support never signs off on its own proposals, even on tickets it registered
            return actor.is_customer and cls.is_requester(actor, ticket)
        return False

    @classmethod
    def denial_reason(
        cls,
        actor: Actor,
        ticket: Ticket,
        staffing: Optional[ProjectStaffing],
        event: TransitionEvent,
    ) -> str:
        """Human-readable reason for a refusal; only meaningful when is_allowed() is False."""
        if event in SYSTEM_EVENTS:
            return f"{event.value} can only be issued by the overdue sweeper"
        if actor.is_system:
            return f"The system actor cannot issue {event.value}"
        if event in SUPPORT_DRIVEN_EVENTS:
            if not actor.is_support_side:
                return f"{event.value} requires a support team member or an admin"
            return f"{actor.name} is not on the support staff of project {ticket.project_id}"
        if not actor.is_customer:
            return f"{event.value} requires the requesting customer or an admin"
        return f"{event.value} requires the ticket's requester or an admin"

    @classmethod
    def can_view(cls, actor: Actor, ticket: Ticket, staffing: Optional[ProjectStaffing]) -> bool:
        if actor.is_admin or actor.is_system:
            return True
        if cls.is_requester(actor, ticket) or cls.is_project_staff(actor, staffing):
            return True
        return staffing is not None and actor.id in staffing.customer_contact_ids

    @classmethod
    def can_comment(cls, actor: Actor, ticket: Ticket, staffing: Optional[ProjectStaffing]) -> bool:
        return not actor.is_system and cls.can_view(actor, ticket, staffing)

    @staticmethod
    def can_delete(actor: Actor, ticket: Ticket) -> bool:
        return actor.is_admin or actor.id == ticket.created_by_id
