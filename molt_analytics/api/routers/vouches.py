"""
担保 API

查询、提交、删除担保记录；查询结果附带实时计算的排行榜。
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ...ledger import ReputationLedger, count_tags, sum_totals
from ...models import VouchCreate, VouchDelete, VouchesResponse
from ..dependencies import get_ledger


router = APIRouter(prefix="/api/vouches", tags=["vouches"])


@router.get("", response_model=VouchesResponse)
async def list_vouches(
    agent: Optional[str] = Query(None, description="被担保人"),
    voucher: Optional[str] = Query(None, alias="from", description="担保人"),
    ledger: ReputationLedger = Depends(get_ledger)
):
    """
    查询担保记录

    totals / tagCounts 基于筛选后的记录；leaderboard 始终基于全部记录。
    """
    events = ledger.query(vouchee=agent, voucher=voucher)
    return VouchesResponse(
        vouches=events,
        totals=sum_totals(events),
        tag_counts=count_tags(reversed(events)),
        leaderboard=ledger.leaderboard(),
        count=len(events)
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_vouch(data: VouchCreate, ledger: ReputationLedger = Depends(get_ledger)):
    """提交担保；校验失败返回 400"""
    event = ledger.append(data)
    return {"success": True, "vouch": event.model_dump(by_alias=True)}


@router.delete("")
async def delete_vouch(data: VouchDelete, ledger: ReputationLedger = Depends(get_ledger)):
    """删除自己提交的担保；记录不存在或不是作者均返回 404"""
    ledger.remove(data.id, data.from_)
    return {"success": True}
