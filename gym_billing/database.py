"""
Gym Billing Core - 数据库连接管理

异步SQLAlchemy引擎、会话工厂与初始化
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import declarative_base
import os
from sqlalchemy import text
from loguru import logger

from gym_billing.config import settings


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """创建异步引擎 - SQLite需要额外的连接参数"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,  # SQLite多线程支持
            "timeout": 20,               # 连接超时20秒
        }
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,  # 连接前检查
        connect_args=connect_args,
    )


engine = create_engine_for_url(settings.database_url, echo=settings.debug)

# 创建会话工厂
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# 创建基础模型
Base = declarative_base()


def _ensure_sqlite_directory(target: AsyncEngine) -> None:
    """SQLite数据库文件所在目录不存在时创建"""
    url = target.url
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    directory = os.path.dirname(url.database)
    if directory:
        os.makedirs(directory, exist_ok=True)


async def init_db(target: AsyncEngine = None):
    """初始化数据库 - 创建所有表"""
    # 导入所有模型以确保表被注册
    from gym_billing.models import subscription, wallet, invoice, points, webhook  # noqa: F401

    target = target or engine
    _ensure_sqlite_directory(target)
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("✅ 数据库初始化成功")
    return True


async def close_db(target: AsyncEngine = None):
    """关闭数据库连接"""
    await (target or engine).dispose()
    logger.info("✅ 数据库连接已关闭")


async def check_db_connection(session_factory: async_sessionmaker = None) -> bool:
    """检查数据库连接"""
    try:
        async with (session_factory or AsyncSessionLocal)() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1
    except Exception as e:
        logger.error(f"数据库连接检查失败: {e}")
        return False
