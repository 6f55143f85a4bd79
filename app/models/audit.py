"""
Ticket audit journal model.

One entry per accepted transition, plus the creation entry. The journal is the
source of truth for what happened and why; the ticket row is only a projection.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, Enum as SQLEnum, event
from sqlalchemy.orm import relationship
from app.database import Base
from app.models.enums import TicketStatus, AuditEventKind
from app.services.business_calendar import utc_now


class TicketAuditEntry(Base):
    """
    Immutable audit entry.

    Invariants:
    - Once written, never edited
    - Deleted only by cascade when the whole ticket is deleted
    - Timestamps are non-decreasing per ticket
    """
    __tablename__ = "ticket_audit_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    ticket_id = Column(String, ForeignKey("tickets.id"), nullable=False, index=True)
    from_status = Column(SQLEnum(TicketStatus), nullable=True)  # None for the creation entry
    resulting_status = Column(SQLEnum(TicketStatus), nullable=False)
    event_kind = Column(SQLEnum(AuditEventKind), nullable=False, index=True)
    actor_id = Column(String, nullable=False)
    actor_name = Column(String, nullable=False)
    note = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)

    ticket = relationship("Ticket", back_populates="audit_entries")


class AuditEntryImmutableError(RuntimeError):
    """Raised when code tries to flush a change to an existing audit entry."""


@event.listens_for(TicketAuditEntry, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise AuditEntryImmutableError(
        f"Audit entry {target.id} for ticket {target.ticket_id} is append-only"
    )
