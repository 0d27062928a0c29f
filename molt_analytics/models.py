"""
数据模型定义

包括：
- 快照记录（写入时序表的规范化结构）
- 担保账本记录与请求模型
- Pydantic 响应模型（API 输出使用 camelCase 字段名）
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# 快照记录
# =============================================================================

class AgentSnapshot(BaseModel):
    """单个 agent 在某次快照中的指标"""
    name: str
    currency: int = Field(0, ge=0)
    trust_tier: int = 0
    vote_weight: float = 0.0
    neighborhood: Optional[str] = None
    wallet_verified: bool = False
    founding_member: bool = False
    # 上游原始文档，原样保留
    raw: Dict[str, Any] = Field(default_factory=dict)


class PlatformSnapshot(BaseModel):
    """平台级汇总（每个时间戳一行）"""
    agent_count: int = 0
    founding_remaining: Optional[int] = None
    total_currency: int = 0
    raw: Dict[str, Any] = Field(default_factory=dict)


class JobSnapshot(BaseModel):
    """Jobs 汇总（每个时间戳一行）"""
    open_count: int = 0
    completed_count: int = 0
    total_paid_lamports: int = 0
    raw: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# 趋势计算结果
# =============================================================================

class LatestView(BaseModel):
    """最新快照视图；无数据时 timestamp 为 None"""
    timestamp: Optional[int] = None
    records: List[Dict[str, Any]] = Field(default_factory=list)


class RisingEntry(BaseModel):
    """rising 榜单条目"""
    name: str
    previous: int
    current: int
    gain: int


class RisingReport(BaseModel):
    """rising 计算结果"""
    entries: List[RisingEntry] = Field(default_factory=list)
    period_from: Optional[int] = None
    period_to: Optional[int] = None
    reason: Optional[str] = None

    @property
    def sufficient(self) -> bool:
        return self.reason is None


# =============================================================================
# 担保账本
# =============================================================================

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VouchEvent(BaseModel):
    """一条担保记录（创建后不可修改，只能由作者删除）"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_: str = Field(alias="from")
    to: str
    amount: int
    review: str
    tags: List[str] = Field(default_factory=list)
    timestamp: str


class VouchCreate(BaseModel):
    """POST /api/vouches 请求；字段校验在账本中完成"""
    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[str] = Field(None, alias="from")
    to: Optional[str] = None
    amount: Any = None
    review: Optional[str] = None
    tags: Any = None


class VouchDelete(BaseModel):
    """DELETE /api/vouches 请求"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_: str = Field(alias="from")


class TagCount(_CamelModel):
    tag: str
    count: int


class LeaderboardEntry(_CamelModel):
    """排行榜条目"""
    name: str
    total: int
    vouch_count: int
    top_tags: List[TagCount] = Field(default_factory=list)


# =============================================================================
# API 响应模型
# =============================================================================

class AgentCard(_CamelModel):
    """agent 卡片（GET /api/agents）"""
    name: str
    currency: int
    trust_tier: int
    vote_weight: float
    neighborhood: Optional[str] = None
    wallet_verified: bool = False
    founding_member: bool = False
    soul: str = ""
    skills: List[Any] = Field(default_factory=list)
    site: str


class AgentsResponse(_CamelModel):
    agents: List[AgentCard] = Field(default_factory=list)
    timestamp: Optional[int] = None
    total: int = 0


class NeighborhoodCount(_CamelModel):
    neighborhood: str
    count: int


class NeighborhoodsResponse(_CamelModel):
    neighborhoods: List[NeighborhoodCount] = Field(default_factory=list)


class Period(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: int = Field(alias="from")
    to: int


class RisingResponse(_CamelModel):
    """GET /api/rising；历史不足时只有 message 没有 period"""
    rising: List[RisingEntry] = Field(default_factory=list)
    period: Optional[Period] = None
    message: Optional[str] = None


class HistoryPoint(_CamelModel):
    timestamp: int
    currency: int
    trust_tier: int
    vote_weight: float


class AgentHistoryResponse(_CamelModel):
    name: str
    data: List[HistoryPoint] = Field(default_factory=list)


class StatsResponse(_CamelModel):
    """GET /api/stats：最新平台与 jobs 汇总"""
    timestamp: Optional[int] = None
    platform: Optional[PlatformSnapshot] = None
    jobs: Optional[JobSnapshot] = None


class VouchesResponse(_CamelModel):
    """GET /api/vouches"""
    vouches: List[VouchEvent] = Field(default_factory=list)
    totals: Dict[str, int] = Field(default_factory=dict)
    tag_counts: Dict[str, int] = Field(default_factory=dict)
    leaderboard: List[LeaderboardEntry] = Field(default_factory=list)
    count: int = 0
