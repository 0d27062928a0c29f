"""
测试趋势计算

覆盖：
- 最新视图（空库、筛选、排序、稳定性）
- rising 榜单（历史不足、窗口边界、严格增长过滤、排序截断）
"""

import sys
from pathlib import Path

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from molt_analytics.config import TrendsConfig
from molt_analytics.database import Database
from molt_analytics.trends import INSUFFICIENT_HISTORY, TrendEngine, build_agent_card


@pytest.fixture
def db(tmp_path):
    return Database(str(tmp_path / "test_analytics.db"))


@pytest.fixture
def engine(db):
    return TrendEngine(db, TrendsConfig())


def add_batch(db, ts, currencies, **fields):
    db.append_batch("agent", ts, [
        dict({"name": name, "currency": currency}, **fields.get(name, {}))
        for name, currency in currencies.items()
    ])


class TestLatest:
    """最新视图"""

    def test_empty_store(self, engine):
        """无数据是正常状态，不是错误"""
        view = engine.latest("agent")
        assert view.timestamp is None
        assert view.records == []

        timestamp, cards = engine.agent_cards()
        assert timestamp is None
        assert cards == []
        assert engine.neighborhoods() == []

    def test_uses_latest_batch_only(self, db, engine):
        add_batch(db, 100, {"A": 1, "B": 2, "Old": 3})
        add_batch(db, 200, {"A": 5, "B": 4})

        view = engine.latest("agent")
        assert view.timestamp == 200
        assert [r["name"] for r in view.records] == ["A", "B"]

    def test_sort_by_currency_ties_by_name(self, db, engine):
        add_batch(db, 100, {"carol": 10, "bob": 30, "alice": 10, "dave": 5})
        names = [r["name"] for r in engine.latest("agent", sort="currency").records]
        assert names == ["bob", "alice", "carol", "dave"]

    def test_sort_by_name(self, db, engine):
        add_batch(db, 100, {"carol": 10, "bob": 30, "alice": 10})
        names = [r["name"] for r in engine.latest("agent", sort="name").records]
        assert names == ["alice", "bob", "carol"]

    def test_sort_newest_founding_first(self, db, engine):
        add_batch(db, 100, {"a": 10, "b": 50, "c": 20, "d": 20}, c={"founding_member": True}, d={"founding_member": True})
        names = [r["name"] for r in engine.latest("agent", sort="newest").records]
        assert names == ["c", "d", "b", "a"]

    def test_unknown_sort_falls_back_to_currency(self, db, engine):
        add_batch(db, 100, {"a": 1, "b": 2})
        names = [r["name"] for r in engine.latest("agent", sort="bogus").records]
        assert names == ["b", "a"]

    def test_neighborhood_filter(self, db, engine):
        add_batch(db, 100, {"a": 1, "b": 2, "c": 3}, a={"neighborhood": "harbor"}, c={"neighborhood": "harbor"})
        timestamp, cards = engine.agent_cards(neighborhood="harbor")
        assert timestamp == 100
        assert [c.name for c in cards] == ["c", "a"]

    def test_projection_is_idempotent(self, db, engine):
        """存储不变时两次投影输出完全一致"""
        add_batch(db, 100, {"x": 3, "y": 3, "z": 1, "w": 3})
        first = engine.latest("agent", sort="currency").model_dump_json()
        second = engine.latest("agent", sort="currency").model_dump_json()
        assert first == second


class TestAgentCard:
    """agent 卡片字段提取"""

    def test_card_from_raw_payload(self):
        record = {
            "name": "Skarlun", "currency": 5, "trust_tier": 2, "vote_weight": 1.5,
            "neighborhood": "harbor", "wallet_verified": True, "founding_member": False,
            "raw": {"soul": "s" * 200, "skills": ["trading"], "site": {"url": "https://example.org"}},
        }
        card = build_agent_card(record, soul_chars=150)
        assert len(card.soul) == 150
        assert card.skills == ["trading"]
        assert card.site == "https://example.org"

    def test_card_defaults(self):
        record = {
            "name": "Skarlun", "currency": 0, "trust_tier": 0, "vote_weight": 0.0,
            "neighborhood": None, "wallet_verified": False, "founding_member": False, "raw": {},
        }
        card = build_agent_card(record)
        assert card.soul == ""
        assert card.skills == []
        assert card.site == "https://skarlun.moltcities.org"


class TestRising:
    """rising 榜单"""

    def test_insufficient_history(self, db, engine):
        """少于两个时间戳：空列表 + 原因"""
        report = engine.rising()
        assert report.entries == []
        assert report.reason == INSUFFICIENT_HISTORY

        add_batch(db, 100, {"A": 1})
        report = engine.rising()
        assert report.entries == []
        assert not report.sufficient

    def test_two_snapshot_example(self, db, engine):
        """A 50→80 入榜；B 90→90 零增长被排除"""
        add_batch(db, 100, {"A": 50, "B": 90})
        add_batch(db, 200, {"A": 80, "B": 90})

        report = engine.rising(window_size=24)
        assert [e.model_dump() for e in report.entries] == [
            {"name": "A", "previous": 50, "current": 80, "gain": 30}
        ]
        assert (report.period_from, report.period_to) == (100, 200)

    def test_negative_gain_excluded(self, db, engine):
        add_batch(db, 100, {"A": 50, "B": 90})
        add_batch(db, 200, {"A": 40, "B": 91})
        assert [e.name for e in engine.rising().entries] == ["B"]

    def test_window_uses_oldest_inside_window(self, db, engine):
        """比较的是窗口内最早的时间戳，而不是全表最早"""
        add_batch(db, 100, {"A": 0})
        add_batch(db, 200, {"A": 10})
        add_batch(db, 300, {"A": 15})

        report = engine.rising(window_size=2)
        assert (report.period_from, report.period_to) == (200, 300)
        assert report.entries[0].gain == 5

        report = engine.rising(window_size=24)
        assert (report.period_from, report.period_to) == (100, 300)
        assert report.entries[0].gain == 15

    def test_inner_join_on_name(self, db, engine):
        """只出现在一端的 agent 不参与比较"""
        add_batch(db, 100, {"A": 1, "Gone": 1})
        add_batch(db, 200, {"A": 2, "New": 500})
        assert [e.name for e in engine.rising().entries] == ["A"]

    def test_sorted_by_gain_then_name_and_truncated(self, db, engine):
        add_batch(db, 100, {"a": 0, "b": 0, "c": 0, "d": 0})
        add_batch(db, 200, {"a": 5, "b": 10, "c": 5, "d": 1})

        report = engine.rising(top_n=3)
        assert [(e.name, e.gain) for e in report.entries] == [("b", 10), ("a", 5), ("c", 5)]

    def test_rising_requires_agent_kind(self, engine):
        with pytest.raises(ValueError):
            engine.rising(kind="job")

    def test_explicit_zero_limits(self, db, engine):
        """显式传入 0 不回退到默认值"""
        add_batch(db, 100, {"A": 0})
        add_batch(db, 200, {"A": 10})

        assert engine.rising(top_n=0).entries == []
        assert engine.rising(window_size=0).reason == INSUFFICIENT_HISTORY
        assert engine.agent_history("A", limit=0) == []


class TestStats:
    """平台汇总"""

    def test_stats_empty(self, engine):
        assert engine.stats() == {"timestamp": None, "platform": None, "jobs": None}

    def test_stats_latest_rows(self, db, engine):
        db.append_batch("platform", 100, [{"agent_count": 1, "total_currency": 10}])
        db.append_batch("platform", 200, [{"agent_count": 2, "total_currency": 30, "founding_remaining": 7}])
        db.append_batch("job", 200, [{"open_count": 3, "completed_count": 4, "total_paid_lamports": 99}])

        stats = engine.stats()
        assert stats["timestamp"] == 200
        assert stats["platform"]["agent_count"] == 2
        assert stats["platform"]["founding_remaining"] == 7
        assert stats["jobs"]["open_count"] == 3
