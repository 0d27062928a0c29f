"""
MoltCities Analytics - 平台快照与担保排行服务

负责：
- 每小时拉取 agents 目录和 jobs 统计，按时间戳整批写入
- 基于最新快照提供 agents 列表、社区统计
- 比较窗口内两次快照，计算 rising 榜单
- 维护担保（vouch）账本并实时计算排行榜
"""

__version__ = "1.0.0"
