"""
数据库操作抽象层

封装所有 SQLite 操作：
- 快照时序表（platform / agent / job）：只追加，按时间戳整批写入
- 担保账本表（vouches）
"""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from .config import get_config
from .errors import WriteError

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class KindSpec(NamedTuple):
    """快照类型与数据表的映射"""
    table: str
    # (记录字段名, 列名)
    fields: Tuple[Tuple[str, str], ...]
    bool_fields: Tuple[str, ...] = ()
    # 上游缺失时的默认值
    defaults: Mapping[str, Any] = {}


KINDS: Dict[str, KindSpec] = {
    "platform": KindSpec(
        table="platform_stats",
        fields=(
            ("agent_count", "agent_count"),
            ("founding_remaining", "founding_remaining"),
            ("total_currency", "total_currency"),
        ),
        defaults={"agent_count": 0, "total_currency": 0},
    ),
    "agent": KindSpec(
        table="agent_snapshots",
        fields=(
            ("name", "agent_name"),
            ("currency", "currency"),
            ("trust_tier", "trust_tier"),
            ("vote_weight", "vote_weight"),
            ("neighborhood", "neighborhood"),
            ("wallet_verified", "wallet_verified"),
            ("founding_member", "founding_member"),
        ),
        bool_fields=("wallet_verified", "founding_member"),
        defaults={"currency": 0, "trust_tier": 0, "vote_weight": 0.0},
    ),
    "job": KindSpec(
        table="job_snapshots",
        fields=(
            ("open_count", "open_count"),
            ("completed_count", "completed_count"),
            ("total_paid_lamports", "total_paid_lamports"),
        ),
        defaults={"open_count": 0, "completed_count": 0, "total_paid_lamports": 0},
    ),
}


def get_kind(kind: str) -> KindSpec:
    """根据名称获取快照类型，未知类型抛 ValueError"""
    spec = KINDS.get(kind)
    if spec is None:
        raise ValueError(f"Unknown snapshot kind: {kind}")
    return spec


def _row_to_record(spec: KindSpec, row: sqlite3.Row) -> Dict[str, Any]:
    record: Dict[str, Any] = {"timestamp": row["timestamp"]}
    for key, column in spec.fields:
        value = row[column]
        if key in spec.bool_fields:
            value = bool(value)
        record[key] = value
    raw_json = row["raw_json"]
    record["raw"] = json.loads(raw_json) if raw_json else {}
    return record


class Database:
    """数据库操作类"""

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[int] = None):
        """
        初始化数据库

        Args:
            db_path: 数据库文件路径，不指定则从配置加载
            timeout: 获取写锁的等待秒数
        """
        if db_path is None:
            config = get_config()
            db_path = config.database.path
            timeout = timeout or config.database.timeout

        self.db_path = Path(db_path)
        self.timeout = timeout or 30

        # 确保目录存在
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_schema()

    @contextmanager
    def get_conn(self, immediate: bool = False):
        """
        获取数据库连接（上下文管理器）

        正常退出时提交，异常时回滚。immediate=True 时在进入前
        先拿到写锁（BEGIN IMMEDIATE），用于读-改-写操作。

        使用方式：
            with db.get_conn() as conn:
                cursor = conn.execute("SELECT ...")
        """
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self):
        """建表（幂等）"""
        script = SCHEMA_PATH.read_text(encoding="utf-8")
        with self.get_conn() as conn:
            conn.executescript(script)

    # =========================================================================
    # 快照写入
    # =========================================================================

    def append_batch(self, kind: str, timestamp: int, records: Sequence[Mapping[str, Any]]) -> int:
        """
        写入一个快照批次

        Returns:
            写入的行数

        Raises:
            WriteError: 存储不可用或违反唯一约束，整批回滚
        """
        return self.append_batches(timestamp, {kind: records})[kind]

    def append_batches(
        self,
        timestamp: int,
        batches: Mapping[str, Sequence[Mapping[str, Any]]]
    ) -> Dict[str, int]:
        """
        在同一事务中写入多个类型的批次（共享同一时间戳）

        要么全部可见，要么全部不可见。
        """
        specs = {kind: get_kind(kind) for kind in batches}
        written: Dict[str, int] = {}

        try:
            with self.get_conn(immediate=True) as conn:
                for kind, records in batches.items():
                    spec = specs[kind]
                    # 已提交的批次不可追加或改写
                    exists = conn.execute(
                        f"SELECT 1 FROM {spec.table} WHERE timestamp = ? LIMIT 1", (timestamp,)
                    ).fetchone()
                    if exists:
                        raise sqlite3.IntegrityError(f"{kind} batch at {timestamp} already exists")

                    columns = ["timestamp"] + [column for _, column in spec.fields] + ["raw_json"]
                    placeholders = ", ".join("?" for _ in columns)
                    sql = f"INSERT INTO {spec.table} ({', '.join(columns)}) VALUES ({placeholders})"

                    rows = []
                    for record in records:
                        values: List[Any] = [timestamp]
                        for key, _ in spec.fields:
                            value = record.get(key)
                            if value is None:
                                value = spec.defaults.get(key)
                            if key in spec.bool_fields:
                                value = 1 if value else 0
                            values.append(value)
                        values.append(json.dumps(record.get("raw") or {}, ensure_ascii=False))
                        rows.append(values)

                    conn.executemany(sql, rows)
                    written[kind] = len(rows)
        except sqlite3.Error as e:
            raise WriteError(f"Failed to append {', '.join(batches)} batch at {timestamp}: {e}") from e

        return written

    # =========================================================================
    # 快照读取
    # =========================================================================

    def latest_timestamp(self, kind: str) -> Optional[int]:
        """获取某类型最新的快照时间戳，无数据时返回 None"""
        spec = get_kind(kind)
        with self.get_conn() as conn:
            row = conn.execute(f"SELECT MAX(timestamp) AS ts FROM {spec.table}").fetchone()
            return row["ts"] if row else None

    def records_at(
        self,
        kind: str,
        timestamp: int,
        filters: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        获取某个时间戳下的全部记录

        Args:
            kind: 快照类型
            timestamp: 精确时间戳
            filters: 等值过滤条件，如 {"neighborhood": "downtown"}
        """
        spec = get_kind(kind)
        columns = dict(spec.fields)

        where = ["timestamp = ?"]
        params: List[Any] = [timestamp]
        for key, value in (filters or {}).items():
            column = columns.get(key)
            if column is None:
                raise ValueError(f"Cannot filter {kind} records by '{key}'")
            if value is None:
                where.append(f"{column} IS NULL")
            else:
                where.append(f"{column} = ?")
                params.append(value)

        with self.get_conn() as conn:
            cursor = conn.execute(
                f"SELECT * FROM {spec.table} WHERE {' AND '.join(where)} ORDER BY id",
                params
            )
            return [_row_to_record(spec, row) for row in cursor.fetchall()]

    def distinct_timestamps(self, kind: str, limit: int, order: str = "desc") -> List[int]:
        """获取最近 limit 个不同的时间戳"""
        spec = get_kind(kind)
        direction = "ASC" if order.lower() == "asc" else "DESC"
        with self.get_conn() as conn:
            cursor = conn.execute(f"""
                SELECT DISTINCT timestamp FROM {spec.table}
                ORDER BY timestamp {direction}
                LIMIT ?
            """, (limit,))
            return [row["timestamp"] for row in cursor.fetchall()]

    def neighborhood_counts(self, timestamp: int) -> List[Dict[str, Any]]:
        """统计某次快照中各社区的 agent 数量"""
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT neighborhood, COUNT(*) AS count
                FROM agent_snapshots
                WHERE timestamp = ? AND neighborhood IS NOT NULL
                GROUP BY neighborhood
                ORDER BY count DESC, neighborhood ASC
            """, (timestamp,))
            return [dict(row) for row in cursor.fetchall()]

    def entity_history(self, name: str, limit: int = 168) -> List[Dict[str, Any]]:
        """
        查询单个 agent 的历史指标（时间正序）

        Returns:
            [{timestamp, currency, trust_tier, vote_weight}, ...]
        """
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT timestamp, currency, trust_tier, vote_weight
                FROM agent_snapshots
                WHERE agent_name = ?
                ORDER BY timestamp DESC
                LIMIT ?
            """, (name, limit))
            rows = [dict(row) for row in cursor.fetchall()]
        rows.reverse()
        return rows

    # =========================================================================
    # 担保账本
    # =========================================================================

    def insert_vouch(self, vouch: Mapping[str, Any]):
        """写入一条担保记录"""
        with self.get_conn(immediate=True) as conn:
            conn.execute("""
                INSERT INTO vouches (id, from_agent, to_agent, amount, review, tags, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                vouch["id"], vouch["from"], vouch["to"], vouch["amount"],
                vouch["review"], json.dumps(list(vouch["tags"]), ensure_ascii=False),
                vouch["timestamp"],
            ))

    def delete_vouch_by_author(self, vouch_id: str, requester: str) -> bool:
        """
        删除担保记录（仅作者本人，大小写不敏感）

        读取与删除在同一个写事务中完成。

        Returns:
            是否删除成功
        """
        with self.get_conn(immediate=True) as conn:
            row = conn.execute(
                "SELECT from_agent FROM vouches WHERE id = ?", (vouch_id,)
            ).fetchone()
            if row is None or row["from_agent"].lower() != requester.lower():
                return False
            cursor = conn.execute("DELETE FROM vouches WHERE id = ?", (vouch_id,))
            return cursor.rowcount > 0

    def list_vouches(
        self,
        to_agent: Optional[str] = None,
        from_agent: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """查询担保记录（时间倒序）"""
        where = []
        params: List[Any] = []
        if to_agent:
            where.append("to_agent = ?")
            params.append(to_agent)
        if from_agent:
            where.append("from_agent = ?")
            params.append(from_agent)
        clause = f"WHERE {' AND '.join(where)}" if where else ""

        with self.get_conn() as conn:
            cursor = conn.execute(f"""
                SELECT id, from_agent, to_agent, amount, review, tags, created_at
                FROM vouches
                {clause}
                ORDER BY created_at DESC, seq DESC
            """, params)
            return [
                {
                    "id": row["id"],
                    "from": row["from_agent"],
                    "to": row["to_agent"],
                    "amount": row["amount"],
                    "review": row["review"],
                    "tags": json.loads(row["tags"] or "[]"),
                    "timestamp": row["created_at"],
                }
                for row in cursor.fetchall()
            ]


# 全局数据库实例（延迟加载）
_db: Optional[Database] = None


def get_db() -> Database:
    """获取全局数据库实例"""
    global _db
    if _db is None:
        _db = Database()
    return _db


def reset_db():
    """重置数据库实例（主要用于测试）"""
    global _db
    _db = None
