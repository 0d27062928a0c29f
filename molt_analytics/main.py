"""
主程序入口

子命令：
1. collect：执行一次采集（由 cron 每小时调用）
2. serve：启动 REST API 服务
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn

from . import __version__
from .collector import collect_once
from .config import get_config


def setup_logging():
    """配置日志"""
    config = get_config()

    # 日志格式
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # 获取日志级别
    level = getattr(logging, config.logging.level.upper(), logging.INFO)

    # 配置根日志
    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    # 如果配置了文件日志
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(log_path), encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    # 降低第三方库日志级别
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def run_collect() -> int:
    """
    执行一次采集

    Returns:
        进程退出码：存储写入失败时为 1，上游失败只记日志，返回 0
    """
    logger = logging.getLogger(__name__)
    report = asyncio.run(collect_once())

    for group in report.groups:
        if group.ok:
            logger.info(f"[{group.group}] ok ({group.count})")
        else:
            logger.warning(f"[{group.group}] {group.error_type}: {group.error}")

    if report.storage_failed:
        logger.error("Collection run failed: storage unavailable")
        return 1
    return 0


def run_server():
    """运行 API 服务器"""
    config = get_config()
    uvicorn.run(
        "molt_analytics.api.app:create_app",
        factory=True,
        host=config.api.host,
        port=config.api.port,
        log_level="info",
        access_log=False  # 我们用自己的日志
    )


def cli(argv: Optional[List[str]] = None):
    """命令行入口"""
    parser = argparse.ArgumentParser(prog="molt-analytics", description="MoltCities Analytics")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("collect", help="执行一次快照采集")
    sub.add_parser("serve", help="启动 API 服务")
    args = parser.parse_args(argv)

    setup_logging()
    logger = logging.getLogger(__name__)
    config = get_config()
    logger.info(f"MoltCities Analytics v{__version__} ({args.command})")
    logger.info(f"Database: {config.database.path}")

    try:
        if args.command == "collect":
            sys.exit(run_collect())
        run_server()
    except KeyboardInterrupt:
        print("\nShutdown requested, exiting...")
        sys.exit(0)


if __name__ == "__main__":
    cli()
