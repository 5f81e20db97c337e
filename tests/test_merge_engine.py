"""
Tests for duplicate detection and merging of ledger transactions.

Duplicate heuristic under test: same account, equal amount, dates within
``date_window_days`` (2), and description similarity of at least
``similarity_threshold`` (0.8). Confidence is
``100 * (0.7 * similarity + 0.3 * (1 - gap / (window + 1)))``.
"""

import threading
from datetime import date, datetime

import pytest

from conftest import ACCOUNT, OTHER_ACCOUNT, make_txn
from ledger_recon.config import DuplicateConfig
from ledger_recon.events import EventType
from ledger_recon.merge.engine import MergeEngine
from ledger_recon.utils.exceptions import (
    AlreadyMergedError,
    CrossAccountError,
    InvalidInputError,
    NotFoundError,
    NotMergedError,
    SelfMergeError,
)


@pytest.fixture
def coffee(ledger):
    """Two 42.00 coffee purchases a day apart, plus an unrelated third."""
    ledger.add(make_txn("A", "42.00", date(2024, 3, 1), "Coffee Shop", created_at=datetime(2024, 3, 1, 8)))
    ledger.add(make_txn("B", "42.00", date(2024, 3, 2), "Coffee Shop", created_at=datetime(2024, 3, 2, 8)))
    ledger.add(make_txn("C", "15.00", date(2024, 3, 9), "Bakery", created_at=datetime(2024, 3, 9, 8)))
    return ledger


class TestFindDuplicates:
    """Duplicate candidate detection."""

    def test_same_amount_close_dates_flagged(self, merge_engine, coffee):
        candidates = merge_engine.find_duplicates("A")

        assert [c.transaction.id for c in candidates] == ["B"]
        assert candidates[0].similarity == 1.0
        assert candidates[0].date_gap == 1
        assert candidates[0].confidence == 90.0

    def test_detection_is_symmetric(self, merge_engine, coffee):
        forward = merge_engine.find_duplicates("A")[0]
        backward = merge_engine.find_duplicates("B")[0]

        assert backward.transaction.id == "A"
        assert backward.confidence == forward.confidence

    def test_different_amount_not_flagged(self, merge_engine, ledger):
        ledger.add(make_txn("x", "42.00", date(2024, 3, 1), "Coffee Shop"))
        ledger.add(make_txn("y", "42.01", date(2024, 3, 1), "Coffee Shop"))
        assert merge_engine.find_duplicates("x") == []

    def test_outside_window_not_flagged(self, merge_engine, ledger):
        ledger.add(make_txn("x", "42.00", date(2024, 3, 1), "Coffee Shop"))
        ledger.add(make_txn("y", "42.00", date(2024, 3, 4), "Coffee Shop"))
        assert merge_engine.find_duplicates("x") == []

    def test_dissimilar_description_not_flagged(self, merge_engine, ledger):
        ledger.add(make_txn("x", "42.00", date(2024, 3, 1), "Coffee Shop"))
        ledger.add(make_txn("y", "42.00", date(2024, 3, 1), "Hardware Store"))
        assert merge_engine.find_duplicates("x") == []

    def test_near_identical_description_flagged(self, merge_engine, ledger):
        """Store numbers and case do not prevent detection."""
        ledger.add(make_txn("x", "42.00", date(2024, 3, 1), "Coffee Shop"))
        ledger.add(make_txn("y", "42.00", date(2024, 3, 1), "COFFEE SHOP #12"))
        assert [c.transaction.id for c in merge_engine.find_duplicates("x")] == ["y"]

    def test_other_account_not_flagged(self, merge_engine, ledger):
        ledger.add(make_txn("x", "42.00", date(2024, 3, 1), "Coffee Shop"))
        ledger.add(make_txn("y", "42.00", date(2024, 3, 1), "Coffee Shop", account_id=OTHER_ACCOUNT))
        assert merge_engine.find_duplicates("x") == []

    def test_token_similarity_ignores_word_order(self, ledger, events):
        ledger.add(make_txn("x", "42.00", date(2024, 3, 1), "Coffee Shop Downtown"))
        ledger.add(make_txn("y", "42.00", date(2024, 3, 1), "Downtown Coffee Shop"))
        engine = MergeEngine(ledger, DuplicateConfig(similarity_method="token"), events=events)

        assert [c.transaction.id for c in engine.find_duplicates("x")] == ["y"]

    def test_unknown_transaction(self, merge_engine):
        with pytest.raises(NotFoundError):
            merge_engine.find_duplicates("missing")

    def test_mark_not_duplicate_is_symmetric(self, merge_engine, coffee, recorder):
        merge_engine.mark_not_duplicate("A", "B")

        assert merge_engine.find_duplicates("A") == []
        assert merge_engine.find_duplicates("B") == []
        assert merge_engine.find_duplicate_groups(ACCOUNT) == []
        assert recorder.of_type(EventType.MARKED_NOT_DUPLICATE)

    def test_mark_not_duplicate_with_itself(self, merge_engine, coffee):
        with pytest.raises(InvalidInputError):
            merge_engine.mark_not_duplicate("A", "A")


class TestDuplicateGroups:
    """Grouping and primary suggestion."""

    def test_group_with_verified_primary(self, merge_engine, ledger):
        """A verified transaction is preferred over an earlier unverified import."""
        ledger.add(make_txn("imp", "60.00", date(2024, 3, 1), "Gas Station",
                            created_at=datetime(2024, 3, 1, 8), is_verified=False))
        ledger.add(make_txn("man", "60.00", date(2024, 3, 1), "Gas Station",
                            created_at=datetime(2024, 3, 1, 9)))
        ledger.add(make_txn("eml", "60.00", date(2024, 3, 2), "Gas Station",
                            created_at=datetime(2024, 3, 1, 10)))

        groups = merge_engine.find_duplicate_groups(ACCOUNT)

        assert len(groups) == 1
        group = groups[0]
        assert group.primary_id == "man"
        assert sorted(group.duplicate_ids) == ["eml", "imp"]
        assert group.confidence == 90.0

    def test_earliest_created_primary_when_all_verified(self, merge_engine, coffee):
        groups = merge_engine.find_duplicate_groups(ACCOUNT)
        assert [g.primary_id for g in groups] == ["A"]
        assert groups[0].duplicate_ids == ["B"]

    def test_groups_limited_to_date_range(self, merge_engine, coffee):
        assert merge_engine.find_duplicate_groups(ACCOUNT, date(2024, 3, 5), date(2024, 3, 31)) == []

    def test_member_must_duplicate_every_member(self, merge_engine, ledger, coffee):
        """B duplicates both A and X, but A and X are marked distinct: X stays out."""
        ledger.add(make_txn("X", "42.00", date(2024, 3, 2), "Coffee Shop",
                            created_at=datetime(2024, 3, 2, 9)))
        merge_engine.mark_not_duplicate("A", "X")

        groups = merge_engine.find_duplicate_groups(ACCOUNT)

        assert len(groups) == 1
        assert [t.id for t in groups[0].transactions] == ["A", "B"]
        assert set(groups[0].pair_confidences) == {("A", "B")}

    def test_daily_purchases_not_chained(self, ledger, events):
        """A run of identical daily purchases splits into pairs inside the window."""
        for day in range(10):
            ledger.add(make_txn(f"c{day}", "5.00", date(2024, 3, 1 + day), "Corner Coffee",
                                created_at=datetime(2024, 3, 1 + day, 8)))
        config = DuplicateConfig(date_window_days=1, auto_merge_confidence=85)
        engine = MergeEngine(ledger, config, events=events)

        groups = engine.find_duplicate_groups(ACCOUNT)

        assert [[t.id for t in g.transactions] for g in groups] == [
            ["c0", "c1"], ["c2", "c3"], ["c4", "c5"], ["c6", "c7"], ["c8", "c9"]
        ]
        for group in groups:
            dates = [t.date for t in group.transactions]
            assert (max(dates) - min(dates)).days <= config.date_window_days

        engine.auto_merge(ACCOUNT)

        for txn in ledger.list_for_account(ACCOUNT, include_merged=True):
            if txn.is_merged:
                target = ledger.get_by_id(txn.merged_into_id)
                assert abs((target.date - txn.date).days) <= config.date_window_days
        assert len(ledger.list_for_account(ACCOUNT)) == 5


class TestMerge:
    """Merging, unmerging and merge-chain prevention."""

    def test_merge_sets_fields(self, merge_engine, ledger, coffee):
        merged = merge_engine.merge("A", "B")

        assert merged.is_merged
        assert merged.merged_into_id == "B"
        assert merged.merged_at is not None
        assert ledger.get_by_id("A").merged_at == merged.merged_at
        assert ledger.get_by_id("A").is_merged

    def test_second_merge_of_same_source_fails(self, merge_engine, coffee):
        merge_engine.merge("A", "B")
        with pytest.raises(AlreadyMergedError):
            merge_engine.merge("A", "C")

    def test_merge_into_merged_target_fails(self, merge_engine, coffee):
        merge_engine.merge("A", "B")
        with pytest.raises(AlreadyMergedError):
            merge_engine.merge("C", "A")

    def test_children_follow_their_target(self, merge_engine, ledger, coffee):
        """Merging a target elsewhere re-points its merged transactions."""
        merge_engine.merge("A", "B")
        merge_engine.merge("B", "C")

        assert ledger.get_by_id("A").merged_into_id == "C"
        for txn in ledger.list_for_account(ACCOUNT, include_merged=True):
            if txn.is_merged:
                assert not ledger.get_by_id(txn.merged_into_id).is_merged

    def test_merged_hidden_from_default_listing(self, merge_engine, ledger, coffee):
        merge_engine.merge("A", "B")

        assert "A" not in [t.id for t in ledger.list_for_account(ACCOUNT)]
        assert "A" in [t.id for t in ledger.list_for_account(ACCOUNT, include_merged=True)]
        assert merge_engine.find_duplicates("A") == []

    def test_get_merged_lists_folded_records(self, merge_engine, ledger, coffee):
        ledger.add(make_txn("D", "42.00", date(2024, 3, 2), "Coffee Shop"))
        merge_engine.merge("A", "B")
        merge_engine.merge("D", "B")

        assert [t.id for t in merge_engine.get_merged("B")] == ["A", "D"]
        assert merge_engine.get_merged("C") == []
        with pytest.raises(NotFoundError):
            merge_engine.get_merged("missing")

    def test_get_merged_after_unmerge(self, merge_engine, coffee):
        merge_engine.merge("A", "B")
        merge_engine.unmerge("A")
        assert merge_engine.get_merged("B") == []

    def test_self_merge_rejected(self, merge_engine, coffee):
        with pytest.raises(SelfMergeError):
            merge_engine.merge("A", "A")

    def test_cross_account_rejected(self, merge_engine, ledger, coffee):
        ledger.add(make_txn("S", "42.00", date(2024, 3, 1), "Coffee Shop", account_id=OTHER_ACCOUNT))
        with pytest.raises(CrossAccountError):
            merge_engine.merge("A", "S")
        assert not ledger.get_by_id("A").is_merged

    def test_merge_unknown(self, merge_engine, coffee):
        with pytest.raises(NotFoundError):
            merge_engine.merge("A", "missing")

    def test_unmerge(self, merge_engine, ledger, coffee, recorder):
        merge_engine.merge("A", "B")
        restored = merge_engine.unmerge("A")

        assert not restored.is_merged
        assert restored.merged_into_id is None
        assert restored.merged_at is None
        assert [c.transaction.id for c in merge_engine.find_duplicates("A")] == ["B"]
        assert recorder.of_type(EventType.TRANSACTION_UNMERGED)

    def test_unmerge_not_merged(self, merge_engine, coffee):
        with pytest.raises(NotMergedError):
            merge_engine.unmerge("A")

    def test_merge_publishes_event(self, merge_engine, coffee, recorder):
        merge_engine.merge("A", "B")

        event = recorder.of_type(EventType.TRANSACTIONS_MERGED)[0]
        assert event.payload["source_id"] == "A"
        assert event.payload["target_id"] == "B"

    def test_concurrent_merges_of_one_source(self, merge_engine, ledger, coffee):
        """Only one of several racing merges of the same source succeeds."""
        for i in range(4):
            ledger.add(make_txn(f"T{i}", "42.00", date(2024, 3, 1), "Coffee Shop"))
        barrier = threading.Barrier(4)
        results: list[str] = []

        def worker(target_id):
            barrier.wait()
            try:
                merge_engine.merge("A", target_id)
                results.append("ok")
            except AlreadyMergedError:
                results.append("rejected")

        threads = [threading.Thread(target=worker, args=(f"T{i}",)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == ["ok", "rejected", "rejected", "rejected"]


class TestMergeMany:
    """Batch and automatic merges."""

    def test_merge_many(self, merge_engine, ledger, coffee):
        ledger.add(make_txn("D", "42.00", date(2024, 3, 2), "Coffee Shop"))
        merged = merge_engine.merge_many("A", ["B", "D"])

        assert [t.id for t in merged] == ["B", "D"]
        assert all(t.merged_into_id == "A" for t in merged)

    def test_merge_many_is_all_or_nothing(self, merge_engine, ledger, coffee):
        ledger.add(make_txn("D", "42.00", date(2024, 3, 2), "Coffee Shop"))
        merge_engine.merge("D", "C")

        with pytest.raises(AlreadyMergedError):
            merge_engine.merge_many("A", ["B", "D"])
        assert not ledger.get_by_id("B").is_merged

    def test_merge_many_validates_ids(self, merge_engine, coffee):
        with pytest.raises(InvalidInputError):
            merge_engine.merge_many("A", [])
        with pytest.raises(InvalidInputError):
            merge_engine.merge_many("A", ["B", "B"])
        with pytest.raises(SelfMergeError):
            merge_engine.merge_many("A", ["A", "B"])

    def test_auto_merge_respects_confidence(self, merge_engine, ledger, coffee):
        """Pairs two days apart score 80 and stay for review."""
        ledger.add(make_txn("P", "80.00", date(2024, 3, 10), "Pharmacy"))
        ledger.add(make_txn("Q", "80.00", date(2024, 3, 12), "Pharmacy"))

        merged = merge_engine.auto_merge(ACCOUNT)

        assert [g.primary_id for g in merged] == ["A"]
        assert ledger.get_by_id("B").merged_into_id == "A"
        assert not ledger.get_by_id("Q").is_merged
