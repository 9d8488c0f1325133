"""
日志配置模块
控制台 + 轮转文件 + 独立错误日志
"""

import os
import sys
from loguru import logger

from gym_billing.config import settings


def error_log_path(log_file: str) -> str:
    """错误日志路径: app.log -> app.error.log，无扩展名时追加 .error.log"""
    root, ext = os.path.splitext(log_file)
    return f"{root}.error{ext or '.log'}"


def setup_logger(current=None):
    """配置日志系统"""
    current = current or settings

    # 移除默认配置
    logger.remove()

    # 控制台输出（开发环境）
    if current.environment == "development":
        logger.add(
            sys.stdout,
            level=current.log_level,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {name}:{function} | {message}",
        )

    log_dir = os.path.dirname(current.log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    # 主日志文件
    logger.add(
        current.log_file,
        level=current.log_level,
        rotation="50 MB",
        retention="7 days",
        compression="gz",
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )

    # 错误日志文件
    logger.add(
        error_log_path(current.log_file),
        level="ERROR",
        rotation="10 MB",
        retention="30 days",
        compression="gz",
        enqueue=True,
        filter=lambda record: record["level"].name in ["ERROR", "CRITICAL"]
    )

    return logger
