"""
Shared pytest fixtures for the Lean Future-State Studio test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context with DB reset (autouse)
    - client: Flask test client (function-scoped)
    - workshop: A process with three steps in two lanes, a waste-walk
      session, two waste types and two accepted solution cards
    - fake_gateway: MagicMock standing in for LLMGateway
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from leanflow import create_app
from leanflow.ai.orchestrator import AgentOrchestrator
from leanflow.models import db as _db
from leanflow.models.process import (
    Process, ProcessStep, StepConnection, WasteType, WasteWalkSession,
)
from leanflow.models.solution import SolutionCard, SolutionStep


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Domain helpers ───────────────────────────────────────────────────────


def _make_process(name="Invoice Handling", steps=(("Receive", "AP"), ("Approve", "Finance"),
                                                  ("Pay", "AP"))):
    """Persist a process with ordered steps connected in sequence."""
    process = Process(name=name)
    _db.session.add(process)
    _db.session.flush()
    created = []
    for index, (step_name, lane) in enumerate(steps):
        step = ProcessStep(
            process_id=process.id, step_name=step_name, lane=lane, order_index=index,
            position_x=index * 200.0, position_y=0.0, lead_time_minutes=30,
            cycle_time_minutes=10,
        )
        _db.session.add(step)
        created.append(step)
    _db.session.flush()
    for src, dst in zip(created, created[1:]):
        _db.session.add(StepConnection(process_id=process.id, source_step_id=src.id,
                                       target_step_id=dst.id))
    _db.session.commit()
    return process, created


def _make_session(process, name="Waste walk #1"):
    ws = WasteWalkSession(process_id=process.id, name=name)
    _db.session.add(ws)
    _db.session.commit()
    return ws


def _make_solution(session_id, title, bucket="modify", status="accepted", step_ids=(),
                   effort_level="low"):
    card = SolutionCard(session_id=session_id, bucket=bucket, title=title,
                        description=f"{title} description", effort_level=effort_level,
                        status=status)
    for step_id in step_ids:
        card.steps.append(SolutionStep(step_id=step_id))
    _db.session.add(card)
    _db.session.commit()
    return card


def _make_waste_type(code, name, category=None):
    wt = WasteType(code=code, name=name, category=category)
    _db.session.add(wt)
    _db.session.commit()
    return wt


@pytest.fixture()
def workshop():
    process, steps = _make_process()
    ws = _make_session(process)
    waiting = _make_waste_type("W", "Waiting", "waiting")
    defects = _make_waste_type("D", "Defects", "defects")
    s1 = _make_solution(ws.id, "Auto-route invoices", step_ids=[steps[0].id])
    s2 = _make_solution(ws.id, "Remove double approval", bucket="eliminate",
                        step_ids=[steps[1].id])
    return SimpleNamespace(
        process=process, steps=steps, session=ws, solutions=[s1, s2],
        waiting=waiting, defects=defects,
    )


# ── Agent helpers ────────────────────────────────────────────────────────


@pytest.fixture()
def fake_gateway():
    return MagicMock(name="LLMGateway")


@pytest.fixture()
def orchestrator(fake_gateway):
    return AgentOrchestrator(gateway=fake_gateway)


@pytest.fixture()
def make_solution():
    """Factory fixture: ``make_solution(session_id, title, **kw)``."""
    return _make_solution


@pytest.fixture()
def make_process():
    """Factory fixture: ``make_process(name, steps)`` → (process, steps)."""
    return _make_process
