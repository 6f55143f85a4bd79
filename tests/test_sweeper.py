"""Tests for the overdue sweeper - the only source of DELAYED."""
from datetime import date, datetime
import threading

import pytest
from sqlalchemy.exc import OperationalError

from app.models.enums import AuditEventKind, TicketStatus, TransitionEvent
from app.services.directory import SYSTEM_ACTOR, DatabaseDirectory
from app.services.errors import StoreUnavailable


FRIDAY_EVENING = datetime(2026, 10, 23, 18, 0)  # planned_ticket due Thursday 2026-10-22
SATURDAY = datetime(2026, 10, 24, 6, 0)


def _delayed_entries(lifecycle, ticket_id):
    return [h for h in lifecycle.list_history(ticket_id) if h.event_kind == AuditEventKind.MARK_DELAYED]


class TestOverdueSweep:

    def test_nothing_overdue_is_a_no_op(self, lifecycle, sweeper, planned_ticket):
        entries_before = lifecycle.audit_log.count(planned_ticket.id)

        assert sweeper.run_overdue_sweep(datetime(2026, 10, 22, 23, 59)) == 0

        lifecycle.db.expire_all()
        assert lifecycle.get_ticket(planned_ticket.id).status == TicketStatus.IN_PROGRESS
        assert lifecycle.audit_log.count(planned_ticket.id) == entries_before

    def test_overdue_ticket_marked_delayed(self, lifecycle, sweeper, planned_ticket):
        assert sweeper.run_overdue_sweep(FRIDAY_EVENING) == 1

        lifecycle.db.expire_all()
        ticket = lifecycle.get_ticket(planned_ticket.id)
        assert ticket.status == TicketStatus.DELAYED
        entry = lifecycle.audit_log.latest(ticket.id)
        assert entry.event_kind == AuditEventKind.MARK_DELAYED
        assert entry.actor_id == SYSTEM_ACTOR.id
        assert entry.created_at == FRIDAY_EVENING

    def test_repeated_sweeps_write_one_delay_entry(self, lifecycle, sweeper, planned_ticket):
        """INVARIANT: a ticket past its due date receives exactly one DELAYED entry."""
        assert sweeper.run_overdue_sweep(FRIDAY_EVENING) == 1
        assert sweeper.run_overdue_sweep(SATURDAY) == 0

        lifecycle.db.expire_all()
        assert len(_delayed_entries(lifecycle, planned_ticket.id)) == 1

    def test_pending_postponement_is_still_delayed(self, lifecycle, actors, sweeper, planned_ticket):
        lifecycle.submit_transition(
            planned_ticket.id, TransitionEvent.REQUEST_POSTPONEMENT, actors["sup-1"],
            {"postpone_date": date(2026, 10, 28), "reason": "Waiting on hardware"},
        )
        assert sweeper.run_overdue_sweep(FRIDAY_EVENING) == 1

        lifecycle.db.expire_all()
        ticket = lifecycle.get_ticket(planned_ticket.id)
        assert ticket.status == TicketStatus.DELAYED
        assert ticket.postpone_date == date(2026, 10, 28)

    @pytest.mark.parametrize("status", [
        TicketStatus.WAITING,
        TicketStatus.RECEIVED,
        TicketStatus.COMPLETION_REQUESTED,
        TicketStatus.COMPLETED,
    ])
    def test_other_statuses_are_left_alone(self, db_session, lifecycle, sweeper, customer_ticket, status):
        customer_ticket.status = status
        db_session.commit()

        assert sweeper.run_overdue_sweep(datetime(2026, 11, 30, 9, 0)) == 0

        db_session.expire_all()
        assert lifecycle.get_ticket(customer_ticket.id).status == status

    def test_ticket_resolved_between_scan_and_transition_is_skipped(
        self, lifecycle, actors, sweeper, planned_ticket, monkeypatch
    ):
        """The engine re-checks the status under the lock; the sweep logs and moves on."""
        original_find = sweeper.find_overdue_ticket_ids

        def find_then_race(db, now):
            ids = original_find(db, now)
            lifecycle.submit_transition(planned_ticket.id, TransitionEvent.REQUEST_COMPLETION, actors["sup-1"])
            return ids

        monkeypatch.setattr(sweeper, "find_overdue_ticket_ids", find_then_race)
        assert sweeper.run_overdue_sweep(FRIDAY_EVENING) == 0

        lifecycle.db.expire_all()
        assert lifecycle.get_ticket(planned_ticket.id).status == TicketStatus.COMPLETION_REQUESTED
        assert _delayed_entries(lifecycle, planned_ticket.id) == []

    def test_one_failure_does_not_stop_the_sweep(self, lifecycle, actors, sweeper, planned_ticket, locks):
        second = lifecycle.create_ticket(actors["sup-1"], "proj-1", "Second", "Another overdue one")
        lifecycle.submit_transition(
            second.id, TransitionEvent.REGISTER_PLAN, actors["sup-1"],
            {"plan": "Quick fix", "expected_completion_date": date(2026, 10, 20)},
        )

        # Another request is holding the first ticket for longer than the lock timeout
        release = threading.Event()
        held = threading.Event()

        def hold_lock():
            with locks.hold(planned_ticket.id):
                held.set()
                release.wait(5)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        held.wait(5)
        try:
            assert sweeper.run_overdue_sweep(FRIDAY_EVENING) == 1
        finally:
            release.set()
            holder.join()

        lifecycle.db.expire_all()
        assert lifecycle.get_ticket(second.id).status == TicketStatus.DELAYED
        assert lifecycle.get_ticket(planned_ticket.id).status == TicketStatus.IN_PROGRESS

    def test_store_failure_on_one_ticket_does_not_stop_the_sweep(
        self, lifecycle, actors, sweeper, planned_ticket, monkeypatch
    ):
        first = lifecycle.create_ticket(
            actors["sup-1"], "proj-1", "Earlier", "Due before the planned ticket", on_behalf_of="cust-1",
        )
        lifecycle.submit_transition(
            first.id, TransitionEvent.REGISTER_PLAN, actors["sup-1"],
            {"plan": "Quick fix", "expected_completion_date": date(2026, 10, 20)},
        )

        original_get_staffing = DatabaseDirectory.get_staffing
        calls = []

        def flaky_get_staffing(directory, project_id):
            calls.append(project_id)
            if len(calls) == 1:
                raise OperationalError("SELECT", {}, Exception("connection lost"))
            return original_get_staffing(directory, project_id)

        monkeypatch.setattr(DatabaseDirectory, "get_staffing", flaky_get_staffing)
        assert sweeper.run_overdue_sweep(FRIDAY_EVENING) == 1
        monkeypatch.undo()

        lifecycle.db.expire_all()
        assert lifecycle.get_ticket(first.id).status == TicketStatus.IN_PROGRESS
        assert lifecycle.get_ticket(planned_ticket.id).status == TicketStatus.DELAYED

    def test_failed_scan_surfaces_as_store_unavailable(self, sweeper, planned_ticket, monkeypatch):
        def failing_scan(db, now):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(sweeper, "find_overdue_ticket_ids", failing_scan)
        with pytest.raises(StoreUnavailable):
            sweeper.run_overdue_sweep(FRIDAY_EVENING)


class TestSweepScheduling:

    def test_start_and_stop(self, sweeper):
        sweeper.start()
        try:
            assert sweeper.is_running
            job = sweeper.scheduler.get_job("overdue_sweep")
            assert job is not None
            assert job.max_instances == 1
        finally:
            sweeper.stop()
        assert not sweeper.is_running

    def test_scheduled_run_swallows_unexpected_errors(self, sweeper, monkeypatch):
        def boom(now=None):
            raise RuntimeError("database went away")

        monkeypatch.setattr(sweeper, "run_overdue_sweep", boom)
        sweeper._scheduled_run()
