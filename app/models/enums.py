"""Enums for the ticket lifecycle - the valid values for statuses, roles and events."""
from enum import Enum


class TicketStatus(str, Enum):
    """The seven lifecycle states. WAITING is the only initial state, COMPLETED the only terminal one."""
    WAITING = "WAITING"
    RECEIVED = "RECEIVED"
    IN_PROGRESS = "IN_PROGRESS"
    DELAYED = "DELAYED"
    POSTPONE_REQUESTED = "POSTPONE_REQUESTED"
    COMPLETION_REQUESTED = "COMPLETION_REQUESTED"
    COMPLETED = "COMPLETED"


class UserRole(str, Enum):
    """Capability sets. SYSTEM is reserved for the overdue sweeper and never assigned to a user."""
    CUSTOMER = "CUSTOMER"
    SUPPORT = "SUPPORT"
    SUPPORT_LEAD = "SUPPORT_LEAD"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class TransitionEvent(str, Enum):
    """Named requests that move a ticket between statuses."""
    INTAKE = "INTAKE"
    REGISTER_PLAN = "REGISTER_PLAN"
    REQUEST_POSTPONEMENT = "REQUEST_POSTPONEMENT"
    APPROVE_POSTPONEMENT = "APPROVE_POSTPONEMENT"
    REJECT_POSTPONEMENT = "REJECT_POSTPONEMENT"
    REQUEST_COMPLETION = "REQUEST_COMPLETION"
    APPROVE_COMPLETION = "APPROVE_COMPLETION"
    REJECT_COMPLETION = "REJECT_COMPLETION"
    MARK_DELAYED = "MARK_DELAYED"


class AuditEventKind(str, Enum):
    """Structured tag stored on every audit entry."""
    CREATED = "CREATED"
    INTAKE = "INTAKE"
    REGISTER_PLAN = "REGISTER_PLAN"
    REQUEST_POSTPONEMENT = "REQUEST_POSTPONEMENT"
    APPROVE_POSTPONEMENT = "APPROVE_POSTPONEMENT"
    REJECT_POSTPONEMENT = "REJECT_POSTPONEMENT"
    REQUEST_COMPLETION = "REQUEST_COMPLETION"
    APPROVE_COMPLETION = "APPROVE_COMPLETION"
    REJECT_COMPLETION = "REJECT_COMPLETION"
    MARK_DELAYED = "MARK_DELAYED"

    @classmethod
    def for_event(cls, event: TransitionEvent) -> "AuditEventKind":
        return cls(event.value)


class IntakeMethod(str, Enum):
    """How support received a request registered on a customer's behalf."""
    PHONE = "PHONE"
    EMAIL = "EMAIL"
    DISCOVERY = "DISCOVERY"
    OTHER = "OTHER"
