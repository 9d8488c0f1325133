"""
仓储基类 - ORM行与领域实体之间的映射，以及基于 version 的比较交换更新
"""

from typing import Any, Dict, Type

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from gym_billing.core.exceptions import ConcurrentModification


class BaseRepository:
    """仓储基类，生命周期与调用方的会话（事务）一致"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def compare_and_swap(
        self,
        model: Type,
        key: Dict[str, Any],
        expected_version: int,
        values: Dict[str, Any],
    ) -> int:
        """
        仅当行的 version 仍等于 expected_version 时更新，并将 version 加1

        Returns:
            新的 version

        Raises:
            ConcurrentModification: 行已被其他事务修改（或不存在）
        """
        conditions = [getattr(model, column) == value for column, value in key.items()]
        stmt = (
            update(model)
            .where(*conditions, model.version == expected_version)
            .values(version=expected_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            logger.warning(f"乐观锁冲突: {model.__tablename__} {key} 期望版本 {expected_version}")
            raise ConcurrentModification(
                f"{model.__tablename__} {key} was modified concurrently",
                details={'table': model.__tablename__, 'key': key, 'expected_version': expected_version},
            )
        return expected_version + 1
