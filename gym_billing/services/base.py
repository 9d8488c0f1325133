"""
服务基类 - 事务边界、乐观锁冲突重试、提交后分发副作用

每个业务操作在一个事务内完成；ConcurrentModification 时丢弃整个事务，
重新加载后重试（CONFLICT_RETRY_ATTEMPTS 次），仍冲突才返回给调用方。
"""

from typing import Awaitable, Callable, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gym_billing.config import settings
from gym_billing.core.effects import Effect, EffectDispatcher, LoggingEffectDispatcher
from gym_billing.core.exceptions import BillingError, ConcurrentModification
from gym_billing.core.service_result import ServiceResult, ErrorCode
from gym_billing.database import AsyncSessionLocal
from gym_billing.repositories.invoices import InvoiceRepository
from gym_billing.repositories.points import PointsRepository
from gym_billing.repositories.subscriptions import SubscriptionRepository
from gym_billing.repositories.wallets import WalletRepository


class UnitOfWork:
    """单个事务内的仓储集合与待分发副作用"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.subscriptions = SubscriptionRepository(session)
        self.wallets = WalletRepository(session)
        self.invoices = InvoiceRepository(session)
        self.points = PointsRepository(session)
        self.effects: List[Effect] = []

    def emit(self, effects: List[Effect]) -> None:
        self.effects.extend(effects)

    async def notification_locale(self, member_id: str, subscription_id: Optional[str] = None) -> str:
        """通知语言: 关联订阅的语言，其次会员最近订阅的语言，最后默认语言"""
        if subscription_id:
            return (await self.subscriptions.get(subscription_id)).locale
        return await self.subscriptions.member_locale(member_id) or settings.default_locale


Work = Callable[[UnitOfWork], Awaitable[ServiceResult]]


class BaseService:
    """事务性服务基类"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        dispatcher: Optional[EffectDispatcher] = None,
        retry_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.dispatcher = dispatcher or LoggingEffectDispatcher()
        self.retry_attempts = settings.conflict_retry_attempts if retry_attempts is None else retry_attempts

    async def run(self, operation: str, work: Work) -> ServiceResult:
        """
        在事务中执行 work

        work 返回失败结果时回滚；成功时提交，然后分发副作用
        """
        attempts = self.retry_attempts + 1
        for attempt in range(1, attempts + 1):
            async with self.session_factory() as session:
                uow = UnitOfWork(session)
                try:
                    result = await work(uow)
                    if result.is_failure():
                        await session.rollback()
                        return result
                    await session.commit()
                except ConcurrentModification as e:
                    await session.rollback()
                    if attempt < attempts:
                        logger.warning(f"{operation} 乐观锁冲突，重新加载后重试 ({attempt}/{attempts - 1}): {e.message}")
                        continue
                    logger.error(f"{operation} 重试后仍然冲突: {e.message}")
                    return ServiceResult.from_exception(e)
                except BillingError as e:
                    await session.rollback()
                    logger.info(f"{operation} 被拒绝: [{e.error_code.name}] {e.message}")
                    return ServiceResult.from_exception(e)
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error(f"{operation} 数据库错误: {e}")
                    return ServiceResult.from_exception(e, ErrorCode.DATABASE_ERROR)

            await self._dispatch(operation, uow.effects, result)
            return result

    async def read(self, operation: str, work: Work) -> ServiceResult:
        """只读操作，不重试"""
        async with self.session_factory() as session:
            try:
                return await work(UnitOfWork(session))
            except BillingError as e:
                return ServiceResult.from_exception(e)
            except SQLAlchemyError as e:
                logger.error(f"{operation} 数据库错误: {e}")
                return ServiceResult.from_exception(e, ErrorCode.DATABASE_ERROR)

    async def _dispatch(self, operation: str, effects: List[Effect], result: ServiceResult) -> None:
        """事务已提交，分发失败不影响结果，只记录警告"""
        if not effects:
            return
        try:
            await self.dispatcher.dispatch(list(effects))
        except Exception as e:
            logger.error(f"{operation} 副作用分发失败: {e}")
            result.warnings.append(f"Effect dispatch failed: {e}")
        result.metadata.setdefault('effects', [type(effect).__name__ for effect in effects])
