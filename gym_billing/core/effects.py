"""
后续副作用 - 状态机不直接执行通知/发票，而是返回副作用列表

调用方在事务提交后按顺序分发，自行决定重试策略
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Protocol, Union, Dict, Any
from loguru import logger


@dataclass(frozen=True)
class InvoiceIssued:
    """发票已开具"""
    invoice_id: str
    invoice_number: str
    member_id: str
    subscription_id: Optional[str]
    total_amount: Decimal
    currency: str


@dataclass(frozen=True)
class NotificationRequested:
    """请求发送通知 - template为模板键，由通知服务本地化"""
    member_id: str
    template: str
    locale: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SubscriptionStatusChanged:
    """订阅状态变更 - 供审计日志消费"""
    subscription_id: str
    from_status: str
    to_status: str


Effect = Union[InvoiceIssued, NotificationRequested, SubscriptionStatusChanged]


class EffectDispatcher(Protocol):
    """副作用分发器接口（通知、审计等外部协作方）"""

    async def dispatch(self, effects: List[Effect]) -> None:
        ...


class LoggingEffectDispatcher:
    """默认分发器 - 仅记录日志"""

    async def dispatch(self, effects: List[Effect]) -> None:
        for effect in effects:
            logger.info(f"分发副作用: {type(effect).__name__} {effect}")


class CollectingEffectDispatcher:
    """收集分发的副作用，用于批处理或测试"""

    def __init__(self):
        self.dispatched: List[Effect] = []

    async def dispatch(self, effects: List[Effect]) -> None:
        self.dispatched.extend(effects)

    def of_type(self, effect_type) -> List[Effect]:
        return [e for e in self.dispatched if isinstance(e, effect_type)]
