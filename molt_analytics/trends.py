"""
趋势计算

基于快照时序表计算：
- 最新视图：取最新时间戳的整批记录，筛选后排序
- rising 榜单：窗口内最新与最早两次快照的 currency 增量

所有操作只读，可以与采集写入并发执行。
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .config import TrendsConfig, get_config
from .database import Database, get_db
from .models import AgentCard, LatestView, RisingEntry, RisingReport

logger = logging.getLogger(__name__)

INSUFFICIENT_HISTORY = "insufficient history"

SortKey = Callable[[Dict[str, Any]], Tuple]

# 所有排序最后都按名称升序打破平局，保证输出稳定
SORT_KEYS: Dict[str, SortKey] = {
    "currency": lambda r: (-r.get("currency", 0), r.get("name", "")),
    "name": lambda r: (r.get("name", ""),),
    "newest": lambda r: (
        -int(bool(r.get("founding_member"))),
        -r.get("currency", 0),
        r.get("name", ""),
    ),
}
DEFAULT_SORT = "currency"


def sort_records(records: List[Dict[str, Any]], sort: Optional[str] = None) -> List[Dict[str, Any]]:
    """按排序键排序，未知的排序键回退到 currency"""
    key = SORT_KEYS.get(sort or DEFAULT_SORT, SORT_KEYS[DEFAULT_SORT])
    return sorted(records, key=key)


def build_agent_card(record: Mapping[str, Any], soul_chars: int = 150) -> AgentCard:
    """由 agent 快照记录生成卡片，soul/skills/site 从原始文档中提取"""
    raw = record.get("raw") or {}
    soul = raw.get("soul")
    site = raw.get("site")
    site_url = site.get("url") if isinstance(site, dict) else None
    skills = raw.get("skills")

    return AgentCard(
        name=record["name"],
        currency=record["currency"],
        trust_tier=record["trust_tier"],
        vote_weight=record["vote_weight"],
        neighborhood=record.get("neighborhood"),
        wallet_verified=record["wallet_verified"],
        founding_member=record["founding_member"],
        soul=soul[:soul_chars] if isinstance(soul, str) else "",
        skills=skills if isinstance(skills, list) else [],
        site=site_url or f"https://{record['name'].lower()}.moltcities.org",
    )


class TrendEngine:
    """快照派生视图"""

    def __init__(self, db: Optional[Database] = None, config: Optional[TrendsConfig] = None):
        self.db = db or get_db()
        self.config = config or get_config().trends

    def latest(
        self,
        kind: str = "agent",
        filters: Optional[Mapping[str, Any]] = None,
        sort: Optional[str] = None
    ) -> LatestView:
        """
        最新快照视图

        没有任何快照时返回 timestamp=None 的空视图（不是错误）。
        """
        ts = self.db.latest_timestamp(kind)
        if ts is None:
            return LatestView()

        records = self.db.records_at(kind, ts, filters)
        if kind == "agent":
            records = sort_records(records, sort)
        return LatestView(timestamp=ts, records=records)

    def agent_cards(self, neighborhood: Optional[str] = None, sort: Optional[str] = None) -> Tuple[Optional[int], List[AgentCard]]:
        """最新一批 agent 卡片"""
        filters = {"neighborhood": neighborhood} if neighborhood else None
        view = self.latest("agent", filters, sort)
        cards = [build_agent_card(r, self.config.soul_preview_chars) for r in view.records]
        return view.timestamp, cards

    def neighborhoods(self) -> List[Dict[str, Any]]:
        """最新快照中各社区的 agent 数量"""
        ts = self.db.latest_timestamp("agent")
        if ts is None:
            return []
        return self.db.neighborhood_counts(ts)

    def rising(
        self,
        kind: str = "agent",
        window_size: Optional[int] = None,
        top_n: Optional[int] = None,
        metric: str = "currency"
    ) -> RisingReport:
        """
        rising 榜单

        1. 取最近 window_size 个不同时间戳（倒序）
        2. 不足两个时返回 "insufficient history"
        3. 比较窗口内最新 (T_latest) 与窗口内最早 (T_earliest) 两批记录
        4. 按名称内连接，只保留严格增长的条目
        5. 增量倒序、名称升序，截取前 top_n

        注意 T_earliest 是窗口内最早的时间戳，不是全表最早，也不是严格的
        "N 小时前"；采集间隔不规律时回看跨度会随之变化。
        """
        if kind != "agent":
            raise ValueError(f"rising needs named records, got kind '{kind}'")
        if window_size is None:
            window_size = self.config.rising_window
        if top_n is None:
            top_n = self.config.rising_top_n

        timestamps = self.db.distinct_timestamps(kind, window_size, order="desc")
        if len(timestamps) < 2:
            return RisingReport(reason=INSUFFICIENT_HISTORY)

        latest_ts = timestamps[0]
        earliest_ts = timestamps[-1]

        previous = {r["name"]: r[metric] for r in self.db.records_at(kind, earliest_ts)}
        entries = []
        for record in self.db.records_at(kind, latest_ts):
            name = record["name"]
            if name not in previous:
                continue
            current = record[metric]
            if current > previous[name]:
                entries.append(RisingEntry(
                    name=name,
                    previous=previous[name],
                    current=current,
                    gain=current - previous[name],
                ))

        entries.sort(key=lambda e: (-e.gain, e.name))
        logger.debug(f"Rising {earliest_ts}->{latest_ts}: {len(entries)} gainers")

        return RisingReport(
            entries=entries[:top_n],
            period_from=earliest_ts,
            period_to=latest_ts,
        )

    def stats(self) -> Dict[str, Any]:
        """最新平台与 jobs 汇总"""
        platform = self.latest("platform")
        jobs = self.latest("job")
        timestamps = [ts for ts in (platform.timestamp, jobs.timestamp) if ts is not None]
        return {
            "timestamp": max(timestamps) if timestamps else None,
            "platform": platform.records[0] if platform.records else None,
            "jobs": jobs.records[0] if jobs.records else None,
        }

    def agent_history(self, name: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """单个 agent 在窗口内的指标序列"""
        if limit is None:
            limit = self.config.rising_window
        return self.db.entity_history(name, limit)
