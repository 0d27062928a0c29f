"""
依赖注入模块

提供 FastAPI 依赖项。
"""

from typing import Dict

from fastapi import Depends

from ..database import Database, get_db
from ..ledger import ReputationLedger
from ..trends import TrendEngine

# 每个数据库文件共用一个账本实例，使写锁在请求之间生效
_ledgers: Dict[str, ReputationLedger] = {}


async def get_database() -> Database:
    """获取数据库实例"""
    return get_db()


async def get_trends(db: Database = Depends(get_database)) -> TrendEngine:
    """获取趋势计算实例"""
    return TrendEngine(db)


async def get_ledger(db: Database = Depends(get_database)) -> ReputationLedger:
    """获取担保账本实例"""
    key = str(db.db_path.resolve())
    ledger = _ledgers.get(key)
    if ledger is None:
        ledger = _ledgers[key] = ReputationLedger(db)
    return ledger
