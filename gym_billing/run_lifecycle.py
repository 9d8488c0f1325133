"""
每日订阅生命周期任务入口（由外部调度器调用，如 cron）

运行：
  python -m gym_billing.run_lifecycle              # 按今天处理
  python -m gym_billing.run_lifecycle 2026-03-31   # 补跑指定日期
"""

import asyncio
import sys
from datetime import date
from typing import Optional

from loguru import logger

from gym_billing.config import settings, validate_settings
from gym_billing.database import init_db, close_db
from gym_billing.services.lifecycle_job import lifecycle_job
from gym_billing.utils.logging_setup import setup_logger


async def run_lifecycle(today: Optional[date] = None) -> dict:
    validate_settings()
    setup_logger()
    logger.info(f"🚀 {settings.app_name} 生命周期任务启动 ({settings.environment})")

    await init_db()
    try:
        return await lifecycle_job.run(today=today)
    finally:
        await close_db()


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    today = date.fromisoformat(argv[0]) if argv else None
    summary = asyncio.run(run_lifecycle(today))
    return 1 if summary['errors'] else 0


if __name__ == '__main__':
    sys.exit(main())
