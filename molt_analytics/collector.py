"""
小时采集任务

每次运行拉取两组上游资源（agents 目录、jobs），规范化后按时间戳整批写入。
两组相互独立：一组失败只记录日志，不影响另一组。

已知限制：上游 /agents 单次最多返回 agents_limit 条且分页不可用，
这里每组资源每次运行只请求一次。
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field

from .config import UpstreamConfig, get_config
from .database import Database, get_db
from .errors import UpstreamFetchError, UpstreamParseError, WriteError
from .models import AgentSnapshot, JobSnapshot, PlatformSnapshot

logger = logging.getLogger(__name__)

DIRECTORY_GROUP = "directory"
JOBS_GROUP = "jobs"


class GroupResult(BaseModel):
    """单组资源的采集结果"""
    group: str
    ok: bool
    count: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None


class CollectionReport(BaseModel):
    """一次采集运行的结果"""
    timestamp: int
    groups: List[GroupResult] = Field(default_factory=list)

    @property
    def storage_failed(self) -> bool:
        """是否有任一组写入失败（视为本次运行失败）"""
        return any(g.error_type == WriteError.__name__ for g in self.groups)


# =============================================================================
# 上游请求
# =============================================================================

async def fetch_json(client: httpx.AsyncClient, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    GET 上游 JSON 文档

    Raises:
        UpstreamFetchError: 网络错误、超时、非 2xx
        UpstreamParseError: 响应不是 JSON 对象
    """
    try:
        response = await client.get(url, params=params)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise UpstreamFetchError(f"GET {url} failed: {e}") from e

    try:
        payload = response.json()
    except ValueError as e:
        raise UpstreamParseError(f"GET {url} returned invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise UpstreamParseError(f"GET {url} returned {type(payload).__name__}, expected object")
    return payload


# =============================================================================
# 规范化
# =============================================================================

def _as_int(value: Any) -> int:
    """缺失或无法解析的数值按 0 处理"""
    if value is None or isinstance(value, bool):
        return int(bool(value))
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return float(bool(value))
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def normalize_agent(agent: Dict[str, Any]) -> Optional[AgentSnapshot]:
    """
    把上游 agent 文档转换为快照记录

    没有可用名称的条目返回 None。
    """
    name = agent.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    site = agent.get("site")
    neighborhood = site.get("neighborhood") if isinstance(site, dict) else None

    return AgentSnapshot(
        name=name,
        currency=max(_as_int(agent.get("currency")), 0),
        trust_tier=_as_int(agent.get("trust_tier")),
        vote_weight=_as_float(agent.get("vote_weight")),
        neighborhood=neighborhood or None,
        wallet_verified=bool(agent.get("has_wallet")),
        founding_member=bool(agent.get("is_founding")),
        raw=agent,
    )


def normalize_directory(payload: Dict[str, Any]) -> Tuple[PlatformSnapshot, List[AgentSnapshot]]:
    """
    解析 agents 目录响应

    同一响应中重复的名称只保留第一条。
    """
    agents_raw = payload.get("agents") or []
    if not isinstance(agents_raw, list):
        raise UpstreamParseError("'agents' is not a list")

    agents: List[AgentSnapshot] = []
    seen = set()
    skipped = 0
    for item in agents_raw:
        snapshot = normalize_agent(item) if isinstance(item, dict) else None
        if snapshot is None or snapshot.name in seen:
            skipped += 1
            continue
        seen.add(snapshot.name)
        agents.append(snapshot)

    if skipped:
        logger.warning(f"Skipped {skipped} unusable or duplicate agent entries")

    founding_remaining = payload.get("founding_remaining")
    platform = PlatformSnapshot(
        agent_count=len(agents),
        founding_remaining=_as_int(founding_remaining) if founding_remaining is not None else None,
        total_currency=sum(a.currency for a in agents),
        raw=payload,
    )
    return platform, agents


def normalize_jobs(payload: Dict[str, Any]) -> JobSnapshot:
    """解析 jobs 响应，按 status 统计数量"""
    jobs = payload.get("jobs") or []
    if not isinstance(jobs, list):
        raise UpstreamParseError("'jobs' is not a list")

    statuses = [job.get("status") for job in jobs if isinstance(job, dict)]
    open_count = statuses.count("open")
    completed_count = statuses.count("completed")

    return JobSnapshot(
        open_count=open_count,
        completed_count=completed_count,
        total_paid_lamports=_as_int(payload.get("total_paid_lamports")),
        raw={"open": open_count, "completed": completed_count},
    )


# =============================================================================
# 分组采集
# =============================================================================

async def collect_directory(
    client: httpx.AsyncClient,
    db: Database,
    upstream: UpstreamConfig,
    timestamp: int
) -> int:
    """采集 agents 目录：平台汇总与 agent 快照在同一事务中写入"""
    payload = await fetch_json(
        client,
        f"{upstream.base_url}/agents",
        params={"limit": upstream.agents_limit}
    )
    platform, agents = normalize_directory(payload)

    db.append_batches(timestamp, {
        "platform": [platform.model_dump()],
        "agent": [a.model_dump() for a in agents],
    })
    logger.info(f"  Directory: {len(agents)} agent snapshots saved")
    return len(agents)


async def collect_jobs(
    client: httpx.AsyncClient,
    db: Database,
    upstream: UpstreamConfig,
    timestamp: int
) -> int:
    """采集 jobs 统计"""
    payload = await fetch_json(client, f"{upstream.base_url}/jobs")
    jobs = normalize_jobs(payload)

    db.append_batch("job", timestamp, [jobs.model_dump()])
    logger.info(f"  Jobs: {jobs.open_count} open, {jobs.completed_count} completed")
    return 1


async def _run_group(group: str, coro) -> GroupResult:
    """执行一组采集，捕获该组的所有业务异常"""
    try:
        count = await coro
        return GroupResult(group=group, ok=True, count=count)
    except (UpstreamFetchError, UpstreamParseError, WriteError) as e:
        logger.warning(f"  {group} collection failed: {e}")
        return GroupResult(group=group, ok=False, error=str(e), error_type=type(e).__name__)
    except Exception as e:
        # 意外错误也只影响本组
        logger.error(f"  {group} collection error: {e}", exc_info=True)
        return GroupResult(group=group, ok=False, error=str(e), error_type=type(e).__name__)


async def collect_once(
    db: Optional[Database] = None,
    upstream: Optional[UpstreamConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timestamp: Optional[int] = None
) -> CollectionReport:
    """
    执行一次采集（由外部调度器每小时调用）

    Args:
        db: 数据库实例，默认全局实例
        upstream: 上游配置，默认读取全局配置
        transport: 自定义 httpx transport（测试用）
        timestamp: 本次批次的时间戳，默认当前 Unix 秒

    Returns:
        每组资源的结果汇总
    """
    db = db or get_db()
    upstream = upstream or get_config().upstream
    timestamp = timestamp if timestamp is not None else int(time.time())

    logger.info(f"Starting collection at {timestamp}...")

    async with httpx.AsyncClient(
        timeout=upstream.timeout,
        headers={"User-Agent": upstream.user_agent},
        transport=transport,
    ) as client:
        results = await asyncio.gather(
            _run_group(DIRECTORY_GROUP, collect_directory(client, db, upstream, timestamp)),
            _run_group(JOBS_GROUP, collect_jobs(client, db, upstream, timestamp)),
        )

    report = CollectionReport(timestamp=timestamp, groups=list(results))
    failed = [g.group for g in report.groups if not g.ok]
    if failed:
        logger.warning(f"Collection finished with failures: {', '.join(failed)}")
    else:
        logger.info("Collection complete")
    return report
