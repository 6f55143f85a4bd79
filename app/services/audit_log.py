"""Append-only per-ticket audit journal."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.audit import TicketAuditEntry
from app.models.enums import AuditEventKind, TicketStatus
from app.services.directory import Actor

ACTION_LABELS = {
    AuditEventKind.CREATED: "Registered",
    AuditEventKind.INTAKE: "Received",
    AuditEventKind.REGISTER_PLAN: "Plan registered",
    AuditEventKind.REQUEST_POSTPONEMENT: "Postponement requested",
    AuditEventKind.APPROVE_POSTPONEMENT: "Postponement approved",
    AuditEventKind.REJECT_POSTPONEMENT: "Postponement rejected",
    AuditEventKind.REQUEST_COMPLETION: "Completion requested",
    AuditEventKind.APPROVE_COMPLETION: "Completed",
    AuditEventKind.REJECT_COMPLETION: "Rework requested",
    AuditEventKind.MARK_DELAYED: "Delayed",
}


class TicketAuditLog:
    """
    Journal of lifecycle events for tickets.

    append() only stages the entry in the caller's unit of work; the engine commits
    it together with the ticket change so both land or neither does. There is no
    update or delete here - entries disappear only with their ticket.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        ticket_id: str,
        from_status: Optional[TicketStatus],
        resulting_status: TicketStatus,
        event_kind: AuditEventKind,
        actor: Actor,
        note: str,
        at: datetime,
    ) -> TicketAuditEntry:
        latest = self.latest(ticket_id)
        # Keep the journal non-decreasing even when a caller injects an earlier clock
        if latest is not None and at < latest.created_at:
            at = latest.created_at

        entry = TicketAuditEntry(
            ticket_id=ticket_id,
            from_status=from_status,
            resulting_status=resulting_status,
            event_kind=event_kind,
            actor_id=actor.id,
            actor_name=actor.name,
            note=note,
            created_at=at,
        )
        self.db.add(entry)
        return entry

    def list(self, ticket_id: str, descending: bool = False) -> List[TicketAuditEntry]:
        """Entries in replay order (oldest first) or display order (newest first)."""
        query = self.db.query(TicketAuditEntry).filter(TicketAuditEntry.ticket_id == ticket_id)
        if descending:
            query = query.order_by(TicketAuditEntry.created_at.desc(), TicketAuditEntry.id.desc())
        else:
            query = query.order_by(TicketAuditEntry.created_at.asc(), TicketAuditEntry.id.asc())
        return query.all()

    def latest(self, ticket_id: str) -> Optional[TicketAuditEntry]:
        return (
            self.db.query(TicketAuditEntry)
            .filter(TicketAuditEntry.ticket_id == ticket_id)
            .order_by(TicketAuditEntry.created_at.desc(), TicketAuditEntry.id.desc())
            .first()
        )

    def count(self, ticket_id: str) -> int:
        return self.db.query(TicketAuditEntry).filter(TicketAuditEntry.ticket_id == ticket_id).count()

    def replay(self, ticket_id: str) -> Optional[TicketStatus]:
        """Status reached by replaying the journal; None if the ticket has no entries."""
        status = None
        for entry in self.list(ticket_id):
            if entry.from_status is not None and entry.from_status != status:
                raise ValueError(
                    f"Audit journal for ticket {ticket_id} is broken at entry {entry.id}: "
                    f"expected from_status {status}, found {entry.from_status}"
                )
            status = entry.resulting_status
        return status

    @staticmethod
    def action_label(entry: TicketAuditEntry) -> str:
        return ACTION_LABELS.get(entry.event_kind, entry.resulting_status.value)
