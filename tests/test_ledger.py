"""
测试担保账本

覆盖：
- 提交校验（金额、评语长度、自我担保、标签截断）
- 作者删除与越权删除
- 排行榜聚合与标签排序
- 并发提交不丢失
"""

import sys
from pathlib import Path

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from concurrent.futures import ThreadPoolExecutor

import pytest

from molt_analytics.config import LedgerConfig
from molt_analytics.database import Database
from molt_analytics.errors import NotFoundOrUnauthorized, SelfReferenceError, ValidationError
from molt_analytics.ledger import ReputationLedger, count_tags, normalize_tags, sum_totals

REVIEW = "Reliable and quick to help."


@pytest.fixture
def db(tmp_path):
    return Database(str(tmp_path / "test_analytics.db"))


@pytest.fixture
def ledger(db):
    return ReputationLedger(db, LedgerConfig())


def vouch(ledger, voucher, vouchee, amount=10, review=REVIEW, tags=None):
    return ledger.append({"from": voucher, "to": vouchee, "amount": amount, "review": review, "tags": tags})


class TestValidation:
    """提交校验"""

    def test_review_length_bounds(self, ledger):
        with pytest.raises(ValidationError):
            vouch(ledger, "alice", "bob", review="x" * 9)
        with pytest.raises(ValidationError):
            vouch(ledger, "alice", "bob", review="x" * 501)

        assert vouch(ledger, "alice", "bob", review="x" * 10).review == "x" * 10
        assert vouch(ledger, "alice", "bob", review="x" * 500).review == "x" * 500

    @pytest.mark.parametrize("amount", [0, -5, 1.5, "10", None, True, 2 ** 63])
    def test_amount_must_be_positive_integer(self, ledger, amount):
        with pytest.raises(ValidationError):
            vouch(ledger, "alice", "bob", amount=amount)

    def test_minimum_amount_accepted(self, ledger):
        assert vouch(ledger, "alice", "bob", amount=1).amount == 1

    def test_self_reference_case_insensitive(self, ledger):
        with pytest.raises(SelfReferenceError):
            vouch(ledger, "Alice", "alice")

    def test_missing_names(self, ledger):
        with pytest.raises(ValidationError):
            vouch(ledger, "", "bob")
        with pytest.raises(ValidationError):
            vouch(ledger, "alice", None)

    def test_nothing_written_on_rejection(self, ledger):
        with pytest.raises(ValidationError):
            vouch(ledger, "alice", "bob", review="short")
        assert ledger.query() == []

    def test_tags_normalized_and_truncated(self, ledger):
        event = vouch(ledger, "alice", "bob", tags=["Fast", " helpful ", "fast", "a", "b", "c", "d"])
        assert event.tags == ["fast", "helpful", "a", "b", "c"]

    def test_normalize_tags_inputs(self):
        assert normalize_tags(None) == []
        assert normalize_tags("Trading, research,,") == ["trading", "research"]
        with pytest.raises(ValidationError):
            normalize_tags(42)


class TestAppendAndQuery:
    """写入与查询"""

    def test_assigns_unique_ids_and_timestamps(self, ledger):
        first = vouch(ledger, "alice", "bob")
        second = vouch(ledger, "alice", "bob")
        assert first.id != second.id
        assert second.timestamp > first.timestamp

    def test_query_newest_first_and_filters(self, ledger):
        a = vouch(ledger, "alice", "bob")
        b = vouch(ledger, "carol", "bob")
        c = vouch(ledger, "alice", "dave")

        assert [e.id for e in ledger.query()] == [c.id, b.id, a.id]
        assert [e.id for e in ledger.query(vouchee="bob")] == [b.id, a.id]
        assert [e.id for e in ledger.query(voucher="alice")] == [c.id, a.id]
        assert [e.id for e in ledger.query(vouchee="bob", voucher="alice")] == [a.id]

    def test_concurrent_appends_not_lost(self, ledger):
        def submit(i):
            return vouch(ledger, f"agent{i}", "target", amount=i + 1).id

        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(submit, range(40)))

        assert len(set(ids)) == 40
        events = ledger.query(vouchee="target")
        assert len(events) == 40
        assert sum(e.amount for e in events) == sum(range(1, 41))


class TestRemove:
    """删除"""

    def test_author_can_remove(self, ledger):
        event = vouch(ledger, "Alice", "bob")
        ledger.remove(event.id, "alice")
        assert ledger.query() == []

    def test_wrong_author_cannot_remove(self, ledger):
        event = vouch(ledger, "alice", "bob")
        with pytest.raises(NotFoundOrUnauthorized):
            ledger.remove(event.id, "mallory")
        assert [e.id for e in ledger.query()] == [event.id]

    def test_unknown_id(self, ledger):
        with pytest.raises(NotFoundOrUnauthorized):
            ledger.remove("v_0_deadbeef", "alice")

    def test_removed_vouch_leaves_leaderboard(self, ledger):
        keep = vouch(ledger, "alice", "bob", amount=5)
        drop = vouch(ledger, "carol", "bob", amount=7)
        ledger.remove(drop.id, "carol")

        board = ledger.leaderboard()
        assert board[0].total == keep.amount
        assert board[0].vouch_count == 1


class TestLeaderboard:
    """排行榜"""

    def test_empty(self, ledger):
        assert ledger.leaderboard() == []

    def test_totals_ignore_query_filter(self, ledger):
        vouch(ledger, "alice", "X", amount=10)
        vouch(ledger, "bob", "X", amount=15)
        vouch(ledger, "alice", "Y", amount=50)

        filtered = ledger.query(voucher="alice")
        assert sum_totals(filtered) == {"X": 10, "Y": 50}

        board = {entry.name: entry for entry in ledger.leaderboard()}
        assert board["X"].total == 25
        assert board["X"].vouch_count == 2
        assert board["Y"].total == 50

    def test_ranked_by_total_then_name(self, ledger):
        vouch(ledger, "a", "zed", amount=10)
        vouch(ledger, "a", "amy", amount=10)
        vouch(ledger, "a", "max", amount=30)
        assert [e.name for e in ledger.leaderboard()] == ["max", "amy", "zed"]

    def test_top_tags_by_frequency_then_first_seen(self, ledger):
        vouch(ledger, "a", "bob", tags=["fast", "helpful"])
        vouch(ledger, "b", "bob", tags=["social", "helpful"])
        vouch(ledger, "c", "bob", tags=["research", "fast", "creative"])

        entry = ledger.leaderboard()[0]
        assert [(t.tag, t.count) for t in entry.top_tags] == [
            ("fast", 2), ("helpful", 2), ("social", 1)
        ]

    def test_count_tags(self, ledger):
        vouch(ledger, "a", "bob", tags=["x", "y"])
        vouch(ledger, "b", "bob", tags=["y"])
        assert count_tags(ledger.query()) == {"y": 2, "x": 1}
