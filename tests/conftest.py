"""
Pytest fixtures for the reconciliation test suite.

Provides:
- Structured log capture
- A deterministic clock
- SQLite in-memory database sessions for kernel services
- Factories for records, expenses and approval policies

Environment Variables:
- DATABASE_URL: database to test against.  Defaults to an in-memory
  SQLite database; a PostgreSQL URL also works.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from recon_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from recon_kernel.domain.approval import (
    ApprovalPolicy,
    ApproverLevel,
    Expense,
    PolicyAction,
)
from recon_kernel.domain.clock import DeterministicClock
from recon_kernel.domain.conditions import PolicyCondition
from recon_kernel.domain.records import MatchableRecord
from recon_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

DEFAULT_TEST_DB_URL = "sqlite:///:memory:"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture recon_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            find_matches(source, pool)
            logs = captured_logs()
            assert any(r["message"] == "match_search_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("recon_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine():
    engine = init_engine_from_url(os.environ.get("DATABASE_URL", DEFAULT_TEST_DB_URL))
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine):
    session = get_session()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Factories
# =============================================================================


def make_record(
    record_id: str = "src-1",
    amount="100.00",
    on: date | None = date(2024, 3, 15),
    vendor: str = "Acme Office Supplies",
    description: str = "",
    currency: str = "USD",
    **kwargs,
) -> MatchableRecord:
    return MatchableRecord(
        record_id=record_id,
        date=on,
        amount=Decimal(amount) if amount is not None else None,
        currency=currency,
        vendor_text=vendor,
        description_text=description,
        **kwargs,
    )


def make_expense(
    expense_id: str = "exp-1",
    amount="250.00",
    category: str = "office",
    vendor: str = "Acme Office Supplies",
    **kwargs,
) -> Expense:
    return Expense(
        expense_id=expense_id,
        amount=Decimal(amount),
        category=category,
        vendor=vendor,
        **kwargs,
    )


def make_policy(
    policy_id: str = "two-level",
    priority: int = 10,
    action: PolicyAction = PolicyAction.REQUIRE_APPROVAL,
    approvers: tuple[ApproverLevel, ...] | None = None,
    conditions: tuple[PolicyCondition, ...] = (),
    **kwargs,
) -> ApprovalPolicy:
    if approvers is None:
        approvers = (
            ApproverLevel("mgr-1", 1, can_delegate=True),
            ApproverLevel("dir-1", 2),
        ) if action is PolicyAction.REQUIRE_APPROVAL else ()
    return ApprovalPolicy(
        policy_id=policy_id,
        priority=priority,
        action=action,
        conditions=conditions,
        approver_levels=approvers,
        **kwargs,
    )


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def expense_factory():
    return make_expense


@pytest.fixture
def policy_factory():
    return make_policy
