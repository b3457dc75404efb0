"""
Tests for candidate search and match statistics.

Covers:
- Pre-filtering (status, currency, self)
- Threshold and ordering
- Missing-field handling for source vs candidates
- Sharded scoring equivalence
- summarize_matches
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from recon_engines.candidate_search import (
    find_matches,
    prefilter_candidates,
    summarize_matches,
)
from recon_kernel.domain.records import MatchMethod, RecordStatus
from recon_kernel.exceptions import MissingRecordFieldError
from tests.conftest import make_record


class TestPrefilter:

    def test_drops_unavailable_foreign_currency_and_self(self):
        source = make_record("src-1")
        pool = [
            make_record("src-1"),
            make_record("eur", currency="EUR"),
            make_record("matched", status=RecordStatus.MATCHED),
            make_record("ok"),
        ]
        assert [c.record_id for c in prefilter_candidates(source, pool)] == ["ok"]

    def test_excluded_ids_dropped(self):
        source = make_record("src-1")
        pool = [make_record("taken"), make_record("ok")]

        eligible = prefilter_candidates(source, pool, exclude_ids={"taken"})

        assert [c.record_id for c in eligible] == ["ok"]

    def test_skips_candidates_missing_fields_with_warning(self, captured_logs):
        source = make_record("src-1")
        pool = [make_record("no-amount", amount=None), make_record("ok")]

        eligible = prefilter_candidates(source, pool)

        assert [c.record_id for c in eligible] == ["ok"]
        warnings = [r for r in captured_logs() if r["message"] == "candidate_skipped_missing_field"]
        assert warnings[0]["candidate_id"] == "no-amount"
        assert warnings[0]["missing_field"] == "amount"


class TestFindMatches:

    def test_source_missing_date_raises(self):
        with pytest.raises(MissingRecordFieldError):
            find_matches(make_record("src-1", on=None), [make_record("c")])

    def test_empty_pool_returns_empty(self):
        assert find_matches(make_record("src-1"), []) == []

    def test_confirmed_candidates_never_ranked(self):
        pool = [make_record("bank-1"), make_record("bank-2")]

        results = find_matches(make_record("src-1"), pool, exclude_ids=frozenset({"bank-1"}))

        assert [r.candidate_id for r in results] == ["bank-2"]

    def test_filters_below_threshold(self):
        source = make_record("src-1", amount="100.00")
        pool = [
            make_record("close", amount="100.00"),
            make_record("far", amount="500.00", vendor="Unrelated", on=date(2023, 1, 1)),
        ]
        results = find_matches(source, pool, threshold=70)
        assert [r.candidate_id for r in results] == ["close"]

    def test_ranked_by_confidence_then_date_then_id(self):
        source = make_record("src-1", on=date(2024, 3, 15))
        pool = [
            make_record("b-later", on=date(2024, 3, 16)),
            make_record("a-later", on=date(2024, 3, 14)),
            make_record("exact", on=date(2024, 3, 15)),
        ]
        results = find_matches(source, pool)

        # both one-day candidates tie on confidence; earlier date first
        assert [r.candidate_id for r in results] == ["exact", "a-later", "b-later"]
        assert results[0].method == MatchMethod.EXACT

    def test_same_confidence_same_date_ordered_by_id(self):
        source = make_record("src-1")
        pool = [make_record("zz"), make_record("aa"), make_record("mm")]
        results = find_matches(source, pool)
        assert [r.candidate_id for r in results] == ["aa", "mm", "zz"]

    def test_logs_search_summary(self, captured_logs):
        find_matches(make_record("src-1"), [make_record("c1"), make_record("c2", currency="GBP")])

        summary = next(r for r in captured_logs() if r["message"] == "match_search_completed")
        assert summary["pool_size"] == 2
        assert summary["eligible_count"] == 1
        assert summary["result_count"] == 1

    def test_sharded_search_matches_sequential(self):
        source = make_record("src-1", amount="500.00", on=date(2024, 6, 1))
        pool = [
            make_record(
                f"c-{i:03d}",
                amount=str(Decimal("500.00") + Decimal(i % 17) / 4),
                on=date(2024, 6, 1) + timedelta(days=i % 5),
                vendor="Acme Office Supplies" if i % 3 else "Acme Office",
            )
            for i in range(300)
        ]
        sequential = find_matches(source, pool, threshold=0)
        sharded = find_matches(source, pool, threshold=0, max_workers=4)
        assert sharded == sequential
        assert len(sequential) == 300


class TestSummarizeMatches:

    def test_empty(self):
        stats = summarize_matches([])
        assert stats.total_matches == 0
        assert stats.average_confidence == Decimal("0")

    def test_counts_and_rates(self):
        source = make_record("src-1", amount="100.00")
        results = find_matches(
            source,
            [
                make_record("exact"),
                make_record("off", amount="105.00"),
            ],
            threshold=0,
        )
        stats = summarize_matches(results)

        assert stats.total_matches == 2
        assert stats.high_confidence_matches == 1
        assert stats.method_distribution == {"exact": 1, "fuzzy": 1}
        assert stats.discrepancy_rate == Decimal("50.00")
        assert stats.average_confidence == Decimal("90.50")
