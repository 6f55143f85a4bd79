"""
Tests for the ticket audit journal.

These tests prove:
- Every accepted transition appends exactly one entry, in order
- Refusals leave no entry behind
- Entries are immutable once written
- Replaying the journal reproduces the ticket's current status
"""
from datetime import date, datetime

import pytest

from app.models.audit import AuditEntryImmutableError, TicketAuditEntry
from app.models.enums import AuditEventKind, TicketStatus, TransitionEvent
from app.services.audit_log import TicketAuditLog
from app.services.directory import SYSTEM_ACTOR
from app.services.errors import InvalidStateForEvent, UnauthorizedTransition, ValidationFailure


class TestAuditAppend:
    """One entry per accepted transition, nothing for refusals."""

    def test_each_transition_appends_one_entry(self, lifecycle, actors, planned_ticket):
        history = lifecycle.list_history(planned_ticket.id)
        assert [h.event_kind for h in history] == [
            AuditEventKind.CREATED,
            AuditEventKind.INTAKE,
            AuditEventKind.REGISTER_PLAN,
        ]
        assert [h.from_status for h in history] == [None, TicketStatus.WAITING, TicketStatus.RECEIVED]
        assert history[-1].resulting_status == planned_ticket.status
        assert history[-1].actor_id == "sup-1"
        assert "Raise the export timeout and add paging" in history[-1].note

    def test_refusals_leave_no_entry(self, lifecycle, actors, planned_ticket):
        before = lifecycle.audit_log.count(planned_ticket.id)

        with pytest.raises(UnauthorizedTransition):
            lifecycle.submit_transition(planned_ticket.id, TransitionEvent.REQUEST_COMPLETION, actors["cust-1"])
        with pytest.raises(InvalidStateForEvent):
            lifecycle.submit_transition(planned_ticket.id, TransitionEvent.INTAKE, actors["sup-pm"])
        with pytest.raises(ValidationFailure):
            lifecycle.submit_transition(
                planned_ticket.id, TransitionEvent.REQUEST_POSTPONEMENT, actors["sup-1"], {"reason": "No date"}
            )

        assert lifecycle.audit_log.count(planned_ticket.id) == before

    def test_system_actor_recorded_for_delay(self, lifecycle, planned_ticket, clock):
        clock.now = datetime(2026, 10, 23, 0, 5)
        lifecycle.submit_transition(planned_ticket.id, TransitionEvent.MARK_DELAYED, SYSTEM_ACTOR)

        entry = lifecycle.audit_log.latest(planned_ticket.id)
        assert entry.event_kind == AuditEventKind.MARK_DELAYED
        assert entry.actor_id == "system"
        assert entry.actor_name == "System"
        assert entry.created_at == datetime(2026, 10, 23, 0, 5)

    def test_comments_are_not_journaled(self, lifecycle, actors, customer_ticket):
        lifecycle.add_comment(customer_ticket.id, actors["sup-1"], "Reproduced on staging")
        assert lifecycle.audit_log.count(customer_ticket.id) == 1


class TestAuditOrdering:

    def test_timestamps_never_decrease(self, lifecycle, actors, customer_ticket, clock):
        """INVARIANT: a clock that goes backwards cannot reorder the journal."""
        clock.now = datetime(2026, 10, 19, 8, 0)
        lifecycle.submit_transition(customer_ticket.id, TransitionEvent.INTAKE, actors["sup-pm"])

        history = lifecycle.list_history(customer_ticket.id)
        assert history[1].created_at == history[0].created_at
        assert [h.event_kind for h in history] == [AuditEventKind.CREATED, AuditEventKind.INTAKE]

    def test_descending_order_for_display(self, lifecycle, planned_ticket):
        ascending = lifecycle.list_history(planned_ticket.id)
        descending = lifecycle.list_history(planned_ticket.id, descending=True)
        assert [h.id for h in descending] == [h.id for h in reversed(ascending)]

    def test_action_labels(self, lifecycle, planned_ticket):
        labels = [TicketAuditLog.action_label(h) for h in lifecycle.list_history(planned_ticket.id)]
        assert labels == ["Registered", "Received", "Plan registered"]


class TestAuditImmutability:
    """Entries can be added, never edited."""

    def test_editing_an_entry_is_refused(self, db_session, lifecycle, customer_ticket):
        entry = lifecycle.list_history(customer_ticket.id)[0]
        entry.note = "Rewritten history"

        with pytest.raises(AuditEntryImmutableError):
            db_session.commit()
        db_session.rollback()

        db_session.expire_all()
        assert lifecycle.list_history(customer_ticket.id)[0].note == "Ticket registered."

    def test_engine_exposes_no_update_path(self):
        assert not hasattr(TicketAuditLog, "update")
        assert not hasattr(TicketAuditLog, "delete")


class TestReplay:

    def test_replay_matches_current_status(self, lifecycle, actors, planned_ticket):
        lifecycle.submit_transition(
            planned_ticket.id, TransitionEvent.REQUEST_POSTPONEMENT, actors["sup-1"],
            {"postpone_date": date(2026, 10, 27), "reason": "Vendor patch"},
        )
        lifecycle.submit_transition(planned_ticket.id, TransitionEvent.APPROVE_POSTPONEMENT, actors["cust-1"])
        lifecycle.submit_transition(planned_ticket.id, TransitionEvent.REQUEST_COMPLETION, actors["sup-1"])

        ticket = lifecycle.get_ticket(planned_ticket.id)
        assert lifecycle.audit_log.replay(ticket.id) == ticket.status == TicketStatus.COMPLETION_REQUESTED
        assert lifecycle.audit_log.count(ticket.id) == 6

    def test_replay_detects_broken_chain(self, db_session, lifecycle, customer_ticket):
        db_session.add(TicketAuditEntry(
            ticket_id=customer_ticket.id,
            from_status=TicketStatus.IN_PROGRESS,
            resulting_status=TicketStatus.COMPLETED,
            event_kind=AuditEventKind.APPROVE_COMPLETION,
            actor_id="cust-1",
            actor_name="Kim Customer",
            note="Inserted out of band",
            created_at=datetime(2026, 10, 20, 9, 0),
        ))
        db_session.commit()

        with pytest.raises(ValueError):
            lifecycle.audit_log.replay(customer_ticket.id)

    def test_replay_of_unknown_ticket_is_empty(self, lifecycle):
        assert lifecycle.audit_log.replay("T-NOPE") is None
