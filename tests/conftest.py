"""Pytest configuration and shared fixtures."""
from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models.domain import Ticket, TicketComment
from app.models.audit import TicketAuditEntry
from app.models.directory import AppUser, Project
from app.models.enums import TransitionEvent, UserRole
from app.services.directory import Actor
from app.services.lifecycle import TicketLifecycleEngine
from app.services.locks import TicketLockRegistry
from app.services.sweeper import OverdueSweeper

# Monday. Default due date (+5 business days) is Monday 2026-10-26.
NOW = datetime(2026, 10, 19, 9, 0, 0)
DAY0 = NOW.date()
DEFAULT_DUE = date(2026, 10, 26)

USERS = [
    ("cust-1", "Kim Customer", UserRole.CUSTOMER),
    ("cust-2", "Lee Outsider", UserRole.CUSTOMER),
    ("sup-pm", "Park Manager", UserRole.SUPPORT),
    ("sup-1", "Choi Engineer", UserRole.SUPPORT),
    ("sup-other", "Jung Elsewhere", UserRole.SUPPORT),
    ("lead-1", "Han Lead", UserRole.SUPPORT_LEAD),
    ("admin-1", "Admin", UserRole.ADMIN),
]


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test, shared by every session the test opens."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    for user_id, name, role in USERS:
        session.add(AppUser(id=user_id, name=name, role=role))
    session.add(Project(
        id="proj-1",
        name="ERP maintenance",
        support_staff_ids=["sup-pm", "sup-1", "lead-1"],
        customer_contact_ids=["cust-1"],
    ))
    session.add(Project(
        id="proj-2",
        name="Unstaffed project",
        support_staff_ids=[],
        customer_contact_ids=["cust-2"],
    ))
    session.commit()

    yield session

    session.close()


@pytest.fixture
def actors():
    return {user_id: Actor(id=user_id, name=name, role=role) for user_id, name, role in USERS}


@pytest.fixture
def locks():
    return TicketLockRegistry(timeout_seconds=0.2)


@pytest.fixture
def clock():
    """Mutable fixed clock; tests move time with clock.now = ..."""

    class FixedClock:
        def __init__(self):
            self.now = NOW

        def __call__(self):
            return self.now

    return FixedClock()


@pytest.fixture
def lifecycle(db_session, locks, clock):
    return TicketLifecycleEngine(db_session, locks=locks, clock=clock)


@pytest.fixture
def sweeper(session_factory, locks, clock):
    return OverdueSweeper(session_factory, locks=locks, clock=clock, interval_seconds=60)


@pytest.fixture
def customer_ticket(lifecycle, actors):
    """A ticket registered by the customer, still WAITING, due on DEFAULT_DUE."""
    return lifecycle.create_ticket(
        actors["cust-1"],
        "proj-1",
        "Invoice export fails",
        "Exporting invoices to Excel fails with a timeout since Friday.",
    )


@pytest.fixture
def planned_ticket(lifecycle, actors, customer_ticket):
    """Customer ticket taken in and planned to finish on Thursday 2026-10-22."""
    lifecycle.submit_transition(customer_ticket.id, TransitionEvent.INTAKE, actors["sup-pm"])
    return lifecycle.submit_transition(
        customer_ticket.id,
        TransitionEvent.REGISTER_PLAN,
        actors["sup-1"],
        {"plan": "Raise the export timeout and add paging", "expected_completion_date": date(2026, 10, 22)},
    )
