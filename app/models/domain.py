"""Domain models - the ticket aggregate and its discussion thread."""
from sqlalchemy import Column, String, Integer, Date, DateTime, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from app.database import Base
from app.models.enums import TicketStatus, TransitionEvent, IntakeMethod
from app.services.business_calendar import utc_now


class Ticket(Base):
    """
    A support request moving through WAITING → RECEIVED → IN_PROGRESS → ... → COMPLETED.

    Invariants enforced by the lifecycle engine:
    - due_date is never earlier than the creation day
    - postpone_date and postpone_reason are both set or both empty
    - satisfaction and completion_feedback only exist once status is COMPLETED
    - original_due_date never changes after creation
    """
    __tablename__ = "tickets"

    id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    status = Column(SQLEnum(TicketStatus), nullable=False, default=TicketStatus.WAITING, index=True)

    # Ownership used by transition guards
    requester_id = Column(String, nullable=False, index=True)
    created_by_id = Column(String, nullable=False)
    assignee_id = Column(String, nullable=True)
    project_id = Column(String, nullable=False, index=True)

    # Deadlines (day resolution)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    original_due_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    shortened_due_reason = Column(String, nullable=True)

    # Intake details, only for tickets registered by support on a customer's behalf
    intake_method = Column(SQLEnum(IntakeMethod), nullable=True)
    request_date = Column(Date, nullable=True)

    # Processing plan
    plan = Column(Text, nullable=True)
    expected_completion_date = Column(Date, nullable=True)
    expected_completion_delay_reason = Column(String, nullable=True)

    # Pending postponement request
    postpone_date = Column(Date, nullable=True)
    postpone_reason = Column(String, nullable=True)

    # Sticky rejection annotation and the event that produced it
    rejection_reason = Column(String, nullable=True)
    rejection_event = Column(SQLEnum(TransitionEvent), nullable=True)

    # Closure
    satisfaction = Column(Integer, nullable=True)
    completion_feedback = Column(Text, nullable=True)

    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    audit_entries = relationship(
        "TicketAuditEntry",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="[TicketAuditEntry.created_at, TicketAuditEntry.id]",
    )
    comments = relationship(
        "TicketComment",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketComment.created_at",
    )

    @property
    def has_pending_postponement(self) -> bool:
        return self.postpone_date is not None and self.postpone_reason is not None


class TicketComment(Base):
    """A discussion message on a ticket. Removed only together with its ticket."""
    __tablename__ = "ticket_comments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    ticket_id = Column(String, ForeignKey("tickets.id"), nullable=False, index=True)
    author_id = Column(String, nullable=False)
    author_name = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    ticket = relationship("Ticket", back_populates="comments")
