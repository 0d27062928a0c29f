"""
Agent 快照 API

提供最新 agents 列表、社区统计、rising 榜单、平台汇总和单个 agent 历史。
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...models import (
    AgentHistoryResponse, AgentsResponse, HistoryPoint, NeighborhoodCount,
    NeighborhoodsResponse, Period, RisingResponse, StatsResponse
)
from ...trends import TrendEngine
from ..dependencies import get_trends

router = APIRouter(prefix="/api", tags=["agents"])


@router.get("/agents", response_model=AgentsResponse)
async def list_agents(
    neighborhood: Optional[str] = Query(None, description="按社区筛选"),
    sort: str = Query("currency", description="排序：currency, name, newest"),
    trends: TrendEngine = Depends(get_trends)
):
    """
    获取最新快照中的 agents

    尚无快照时返回空列表，timestamp 为 null。
    """
    timestamp, cards = trends.agent_cards(neighborhood=neighborhood, sort=sort)
    return AgentsResponse(agents=cards, timestamp=timestamp, total=len(cards))


@router.get("/neighborhoods", response_model=NeighborhoodsResponse)
async def list_neighborhoods(trends: TrendEngine = Depends(get_trends)):
    """最新快照中各社区的 agent 数量（倒序）"""
    return NeighborhoodsResponse(
        neighborhoods=[NeighborhoodCount(**row) for row in trends.neighborhoods()]
    )


@router.get("/rising", response_model=RisingResponse, response_model_exclude_none=True)
async def get_rising(trends: TrendEngine = Depends(get_trends)):
    """
    currency 增长最多的 agents

    比较最近 24 个快照时间戳中最新与最早的两批数据。
    """
    report = trends.rising()
    if not report.sufficient:
        return RisingResponse(rising=[], message=report.reason)
    return RisingResponse(
        rising=report.entries,
        period=Period(**{"from": report.period_from, "to": report.period_to})
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(trends: TrendEngine = Depends(get_trends)):
    """最新平台汇总与 jobs 统计"""
    return StatsResponse(**trends.stats())


@router.get("/agents/{name}/history", response_model=AgentHistoryResponse)
async def get_agent_history(
    name: str,
    limit: int = Query(24, ge=1, le=720, description="返回的快照数量"),
    trends: TrendEngine = Depends(get_trends)
):
    """单个 agent 的指标历史（时间正序）"""
    points = [HistoryPoint(**row) for row in trends.agent_history(name, limit)]
    return AgentHistoryResponse(name=name, data=points)
