"""
Shared fixtures: an in-memory store, a controllable clock and a recording
event sink, wired into a CoreContext.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from shared.config import Config
from shared.context import CoreContext
from shared.events import EventFanout
from shared.ledger import WalletLedger
from shared.lifecycle import ProjectLifecycle
from shared.models import Actor, Role
from shared.payouts import PayoutService
from shared.store import MemoryStore

USER = Actor('user-1', Role.USER)
SUPERVISOR = Actor('sup-1', Role.SUPERVISOR)
DOER_A = Actor('doer-a', Role.DOER)
DOER_B = Actor('doer-b', Role.DOER)
ADMIN = Actor('admin-1', Role.ADMIN)


class TestSettings(Config):
    """Pricing used across the tests: 2 units per word."""
    __test__ = False
    PRICE_PER_WORD = Decimal('2')
    PRICE_PER_PAGE = Decimal('250')
    LEDGER_MAX_ATTEMPTS = 200


class FakeClock:

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return TestSettings()


@pytest.fixture
def events():
    """Every notification published during the test, in order."""
    return []


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ctx(store, events, settings, clock):
    fanout = EventFanout(sinks=[events.append], clock=clock)
    return CoreContext(store=store, fanout=fanout, settings=settings, clock=clock)


@pytest.fixture
def lifecycle(ctx):
    return ProjectLifecycle(ctx)


@pytest.fixture
def ledger(ctx):
    return WalletLedger(ctx)


@pytest.fixture
def payouts(ctx):
    return PayoutService(ctx)


@pytest.fixture
def make_paid_project(lifecycle, clock):
    """Factory driving a fresh project through intake, quoting and payment."""

    def make(word_count=2000, urgency_hours=20, complexity='medium', title='Essay on tides'):
        deadline = (clock() + timedelta(hours=urgency_hours)).isoformat()
        project = lifecycle.create_project(USER, {
            'title': title,
            'subject': 'Oceanography',
            'serviceType': 'new_project',
            'wordCount': word_count,
            'deadline': deadline,
        })
        project_id = project['projectId']
        lifecycle.submit(project_id, USER)
        lifecycle.start_analysis(project_id, SUPERVISOR)
        lifecycle.submit_quote(project_id, word_count, 0, urgency_hours, complexity, SUPERVISOR)
        lifecycle.request_payment(project_id, USER)
        lifecycle.confirm_payment(project_id, ADMIN, payment_reference='pay_123')
        return project_id

    return make


@pytest.fixture
def make_submitted_project(lifecycle, make_paid_project):
    """Factory for a project claimed by DOER_A and waiting for QC."""

    def make(**kwargs):
        project_id = make_paid_project(**kwargs)
        lifecycle.claim_project(project_id, DOER_A.actor_id, DOER_A)
        lifecycle.start_work(project_id, DOER_A)
        lifecycle.submit_for_qc(project_id, DOER_A.actor_id, ['s3://deliverables/draft-1.docx'], DOER_A)
        return project_id

    return make
