"""
End-to-end tests for ReconciliationOrchestrator on the default
configuration set.

Covers:
- Clean high-confidence matches auto-confirm and invalidate the pool cache
- Weak or text-less matches fall through to the approval workflow
- Small expenses resolve without a persisted request
- Every ranked result is recorded as a versioned row
- A confirmed candidate is consumed and never matched again
- Candidate pools are served from the cache between calls
"""

from datetime import date

import pytest

from recon_config import get_active_config
from recon_kernel.domain.approval import ApprovalStatus, ExpenseStatus
from recon_kernel.exceptions import MissingRecordFieldError
from recon_kernel.services.cache import TTLCache
from recon_kernel.services.match_result_service import SqlMatchResultStore
from recon_services.reconciliation_orchestrator import (
    ReconciliationOrchestrator,
    ReconciliationOutcomeKind,
    candidate_cache_key,
)
from tests.conftest import make_expense, make_record


class RecordingExpenses:
    def __init__(self):
        self.statuses = {}

    def mark_status(self, expense_id, status):
        self.statuses[expense_id] = status


class CountingCandidates:
    def __init__(self, records):
        self.records = list(records)
        self.calls = 0
        self.matched = []

    def list_available(self, currency):
        self.calls += 1
        return [r for r in self.records if r.currency == currency]

    def mark_matched(self, candidate_id, source_id):
        self.matched.append((candidate_id, source_id))


@pytest.fixture
def config():
    return get_active_config("acme")


@pytest.fixture
def expenses():
    return RecordingExpenses()


@pytest.fixture
def cache(deterministic_clock):
    return TTLCache(deterministic_clock, default_ttl_seconds=300)


@pytest.fixture
def orchestrator_factory(session, config, expenses, cache, deterministic_clock):
    def _build(candidates=None):
        return ReconciliationOrchestrator.from_session(
            session,
            config,
            candidates=candidates,
            expenses=expenses,
            clock=deterministic_clock,
            cache=cache,
        )
    return _build


class TestReconcile:

    def test_clean_match_auto_confirms(self, orchestrator_factory, expenses, cache, session):
        cache.set(candidate_cache_key("USD"), ())
        orchestrator = orchestrator_factory()
        source = make_record("rcpt-1")
        exact = make_record("bank-1")

        outcome = orchestrator.reconcile(source, make_expense(), "emp-1", candidate_pool=[exact])

        assert outcome.kind is ReconciliationOutcomeKind.AUTO_CONFIRMED
        assert outcome.best_match.candidate_id == "bank-1"
        assert outcome.best_match.overall_confidence == 100
        assert outcome.request is None
        assert expenses.statuses["exp-1"] is ExpenseStatus.VERIFIED
        assert cache.get(candidate_cache_key("USD")) is None
        assert SqlMatchResultStore(session).latest("rcpt-1", "bank-1").version == 1

    def test_weak_match_goes_to_approval(self, orchestrator_factory, expenses):
        orchestrator = orchestrator_factory()
        far_off = make_record("bank-9", amount="300.00", vendor="Globex Travel")

        outcome = orchestrator.reconcile(
            make_record("rcpt-1"), make_expense(amount="250.00"), "emp-1",
            candidate_pool=[far_off],
        )

        assert outcome.kind is ReconciliationOutcomeKind.SUBMITTED
        assert outcome.matches == ()
        assert outcome.request.status is ApprovalStatus.PENDING
        assert outcome.request.policy_id == "manager-approval"
        assert expenses.statuses["exp-1"] is ExpenseStatus.PENDING_REVIEW

    def test_textless_match_is_not_confirmed(self, orchestrator_factory):
        orchestrator = orchestrator_factory()
        source = make_record("rcpt-1", vendor="")
        candidate = make_record("bank-1", vendor="")

        outcome = orchestrator.reconcile(source, make_expense(), "emp-1", candidate_pool=[candidate])

        assert outcome.best_match.vacuous_text
        assert outcome.kind is ReconciliationOutcomeKind.SUBMITTED

    def test_small_expense_auto_resolves(self, orchestrator_factory, expenses):
        orchestrator = orchestrator_factory()

        outcome = orchestrator.reconcile(
            make_record("rcpt-1"), make_expense(amount="42.00"), "emp-1", candidate_pool=[],
        )

        assert outcome.kind is ReconciliationOutcomeKind.AUTO_RESOLVED
        assert outcome.auto_result.policy_id == "small-expenses"
        assert expenses.statuses["exp-1"] is ExpenseStatus.VERIFIED

    def test_rerun_records_new_versions(self, orchestrator_factory, session):
        orchestrator = orchestrator_factory()
        pool = [make_record("bank-1", amount="100.40", on=date(2024, 3, 16), vendor="Acme Office")]

        orchestrator.reconcile(make_record("rcpt-1"), make_expense(), "emp-1", candidate_pool=pool)
        orchestrator.reconcile(make_record("rcpt-1"), make_expense("exp-2"), "emp-1", candidate_pool=pool)

        history = SqlMatchResultStore(session).history("rcpt-1", "bank-1")
        assert [r.version for r in history] == [1, 2]

    def test_confirmed_candidate_not_matched_again(self, orchestrator_factory, session):
        candidates = CountingCandidates([make_record("bank-1")])
        orchestrator = orchestrator_factory(candidates)

        first = orchestrator.reconcile(make_record("rcpt-1"), make_expense("exp-1"), "emp-1")
        second = orchestrator.reconcile(make_record("rcpt-2"), make_expense("exp-2"), "emp-1")

        assert first.kind is ReconciliationOutcomeKind.AUTO_CONFIRMED
        assert candidates.matched == [("bank-1", "rcpt-1")]
        assert second.kind is ReconciliationOutcomeKind.SUBMITTED
        assert second.matches == ()
        assert SqlMatchResultStore(session).confirmed_among(["bank-1"]) == {"bank-1"}

    def test_confirmed_candidate_excluded_from_explicit_pool(self, orchestrator_factory):
        orchestrator = orchestrator_factory()
        pool = [make_record("bank-1")]

        orchestrator.reconcile(make_record("rcpt-1"), make_expense("exp-1"), "emp-1", candidate_pool=pool)
        again = orchestrator.reconcile(
            make_record("rcpt-2"), make_expense("exp-2"), "emp-1", candidate_pool=pool,
        )

        assert again.best_match is None
        assert again.kind is ReconciliationOutcomeKind.SUBMITTED

    def test_source_without_amount_rejected(self, orchestrator_factory):
        orchestrator = orchestrator_factory()

        with pytest.raises(MissingRecordFieldError):
            orchestrator.reconcile(
                make_record("rcpt-1", amount=None), make_expense(), "emp-1", candidate_pool=[],
            )

    def test_completion_logged(self, orchestrator_factory, captured_logs):
        orchestrator = orchestrator_factory()

        orchestrator.reconcile(
            make_record("rcpt-1"), make_expense(), "emp-1", candidate_pool=[make_record("bank-1")],
        )

        completed = [r for r in captured_logs() if r["message"] == "reconciliation_completed"]
        assert completed[0]["outcome"] == "auto_confirmed"
        assert completed[0]["best_candidate_id"] == "bank-1"


class TestCandidatePool:

    def test_requires_pool_or_repository(self, orchestrator_factory):
        orchestrator = orchestrator_factory()

        with pytest.raises(RuntimeError):
            orchestrator.reconcile(make_record("rcpt-1"), make_expense(), "emp-1")

    def test_pool_served_from_cache(self, orchestrator_factory):
        candidates = CountingCandidates([
            make_record("bank-9", amount="900.00", vendor="Globex Travel"),
        ])
        orchestrator = orchestrator_factory(candidates)

        orchestrator.reconcile(make_record("rcpt-1"), make_expense("exp-1"), "emp-1")
        orchestrator.reconcile(make_record("rcpt-2"), make_expense("exp-2"), "emp-1")

        assert candidates.calls == 1

    def test_cache_expires_with_clock(self, orchestrator_factory, deterministic_clock):
        candidates = CountingCandidates([])
        orchestrator = orchestrator_factory(candidates)

        orchestrator.reconcile(make_record("rcpt-1"), make_expense("exp-1"), "emp-1")
        deterministic_clock.advance(301)
        orchestrator.reconcile(make_record("rcpt-2"), make_expense("exp-2"), "emp-1")

        assert candidates.calls == 2

    def test_confirmation_refreshes_pool(self, orchestrator_factory):
        candidates = CountingCandidates([make_record("bank-1")])
        orchestrator = orchestrator_factory(candidates)

        first = orchestrator.reconcile(make_record("rcpt-1"), make_expense("exp-1"), "emp-1")
        orchestrator.reconcile(make_record("rcpt-2"), make_expense("exp-2"), "emp-1")

        assert first.kind is ReconciliationOutcomeKind.AUTO_CONFIRMED
        assert candidates.calls == 2
