"""
担保（vouch）账本

只追加的担保记录，作者本人可以删除自己的记录。
排行榜每次读取时基于全部记录重新计算；账本规模较大时应改为
在 append/remove 时维护按被担保人分组的增量计数。
"""

import logging
import secrets
import sqlite3
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .config import LedgerConfig, get_config
from .database import Database, get_db
from .errors import NotFoundOrUnauthorized, SelfReferenceError, ValidationError, WriteError
from .models import LeaderboardEntry, TagCount, VouchCreate, VouchEvent

logger = logging.getLogger(__name__)

# SQLite INTEGER 上限
MAX_AMOUNT = 2 ** 63 - 1


def normalize_tags(tags: Any, max_tags: int = 5) -> List[str]:
    """
    规范化标签：去空白、转小写、去重（保持顺序）

    超过 max_tags 的部分直接丢弃，不报错。
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    if not isinstance(tags, (list, tuple, set)):
        raise ValidationError("tags must be a list of strings")

    result: List[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        tag = tag.strip().lower()
        if tag and tag not in result:
            result.append(tag)
    return result[:max_tags]


def count_tags(events: Iterable[VouchEvent]) -> Dict[str, int]:
    """统计标签出现次数；次数相同按首次出现顺序"""
    counts: Dict[str, int] = {}
    for event in events:
        for tag in event.tags:
            counts[tag] = counts.get(tag, 0) + 1
    return dict(sorted(counts.items(), key=lambda item: -item[1]))


def sum_totals(events: Iterable[VouchEvent]) -> Dict[str, int]:
    """按被担保人汇总担保额"""
    totals: Dict[str, int] = {}
    for event in events:
        totals[event.to] = totals.get(event.to, 0) + event.amount
    return totals


class ReputationLedger:
    """
    担保账本

    append/remove 在同一个实例内由锁串行化，数据库层再用
    BEGIN IMMEDIATE 保证跨进程的读-改-写不会丢更新。
    """

    def __init__(self, db: Optional[Database] = None, config: Optional[LedgerConfig] = None):
        self.db = db or get_db()
        self.config = config or get_config().ledger
        self._lock = threading.Lock()
        self._last_ms = 0

    # =========================================================================
    # 写入
    # =========================================================================

    def validate(self, submission: VouchCreate) -> Dict[str, Any]:
        """
        校验担保提交

        Raises:
            ValidationError: 字段缺失、金额不是 >=1 的整数、评语长度不合法
            SelfReferenceError: 给自己担保（大小写不敏感）
        """
        voucher = (submission.from_ or "").strip()
        vouchee = (submission.to or "").strip()
        if not voucher or not vouchee:
            raise ValidationError("from and to are required")

        amount = submission.amount
        if isinstance(amount, bool) or not isinstance(amount, int) or not 1 <= amount <= MAX_AMOUNT:
            raise ValidationError(f"amount must be an integer between 1 and {MAX_AMOUNT}")

        review = (submission.review or "").strip()
        if not self.config.review_min <= len(review) <= self.config.review_max:
            raise ValidationError(
                f"review must be {self.config.review_min}-{self.config.review_max} characters"
            )

        if voucher.lower() == vouchee.lower():
            raise SelfReferenceError("cannot vouch for yourself")

        return {
            "from": voucher,
            "to": vouchee,
            "amount": amount,
            "review": review,
            "tags": normalize_tags(submission.tags, self.config.max_tags),
        }

    def _next_timestamp_ms(self) -> int:
        # 调用方持有 self._lock；同一毫秒内的提交依次顺延，保证单调
        now_ms = int(time.time() * 1000)
        self._last_ms = max(now_ms, self._last_ms + 1)
        return self._last_ms

    def append(self, submission: Union[VouchCreate, Mapping[str, Any]]) -> VouchEvent:
        """
        写入一条担保

        Returns:
            带有 id 和 timestamp 的担保记录
        """
        if not isinstance(submission, VouchCreate):
            submission = VouchCreate.model_validate(submission)
        fields = self.validate(submission)

        with self._lock:
            for attempt in range(3):
                created_ms = self._next_timestamp_ms()
                event = VouchEvent(
                    id=f"v_{created_ms}_{secrets.token_hex(4)}",
                    timestamp=datetime.fromtimestamp(created_ms / 1000, tz=timezone.utc)
                    .isoformat(timespec="milliseconds").replace("+00:00", "Z"),
                    **fields,
                )
                try:
                    self.db.insert_vouch(event.model_dump(by_alias=True))
                    break
                except sqlite3.IntegrityError:
                    # id 撞车，换一个随机后缀重试
                    logger.warning(f"Vouch id collision on attempt {attempt + 1}: {event.id}")
                except sqlite3.Error as e:
                    raise WriteError(f"Failed to store vouch: {e}") from e
            else:
                raise WriteError("Could not allocate a unique vouch id")

        logger.info(f"Vouch {event.id}: {event.from_} -> {event.to} ({event.amount})")
        return event

    def remove(self, vouch_id: str, requester: str):
        """
        删除担保（仅作者本人）

        Raises:
            NotFoundOrUnauthorized: 记录不存在或请求者不是作者，两者不做区分
        """
        with self._lock:
            try:
                removed = self.db.delete_vouch_by_author(vouch_id, (requester or "").strip())
            except sqlite3.Error as e:
                raise WriteError(f"Failed to remove vouch: {e}") from e
        if not removed:
            raise NotFoundOrUnauthorized("Vouch not found or not yours")
        logger.info(f"Vouch {vouch_id} removed by {requester}")

    # =========================================================================
    # 读取
    # =========================================================================

    def query(self, vouchee: Optional[str] = None, voucher: Optional[str] = None) -> List[VouchEvent]:
        """按被担保人/担保人筛选，时间倒序"""
        rows = self.db.list_vouches(to_agent=vouchee, from_agent=voucher)
        return [VouchEvent.model_validate(row) for row in rows]

    def leaderboard(self) -> List[LeaderboardEntry]:
        """
        排行榜：基于全部记录（忽略任何查询筛选）

        total 倒序，相同 total 按名称升序；每人取出现次数最多的 top_tags 个标签。
        """
        # 按时间正序遍历，标签平局时先出现的排前面
        events = list(reversed(self.query()))

        grouped: Dict[str, List[VouchEvent]] = {}
        for event in events:
            grouped.setdefault(event.to, []).append(event)

        board = []
        for name, received in grouped.items():
            tags = count_tags(received)
            board.append(LeaderboardEntry(
                name=name,
                total=sum(e.amount for e in received),
                vouch_count=len(received),
                top_tags=[
                    TagCount(tag=tag, count=count)
                    for tag, count in list(tags.items())[:self.config.top_tags]
                ],
            ))

        board.sort(key=lambda entry: (-entry.total, entry.name))
        return board
