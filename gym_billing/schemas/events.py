"""
输入事件数据模式

每种请求一个类型，按 type 字段区分，入口处统一校验；
同时接受 snake_case 与 camelCase 字段名（前端/网关传入 camelCase）
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union, Literal, Any, Dict, Annotated

from pydantic import BaseModel, Field, ConfigDict, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from gym_billing.core.exceptions import ValidationError


class EventModel(BaseModel):
    """事件基类"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
        str_strip_whitespace=True,
    )


class EnrollmentRequest(EventModel):
    """会员报名订阅计划"""
    type: Literal["enrollment"] = "enrollment"
    member_id: str = Field(..., min_length=1)
    plan_id: str = Field(..., min_length=1)
    start_date: date
    auto_renew: bool = False
    locale: Optional[str] = None
    referred_by_member_id: Optional[str] = None

    @field_validator('referred_by_member_id')
    @classmethod
    def referrer_not_self(cls, v, info):
        if v is not None and v == info.data.get('member_id'):
            raise ValueError('member cannot refer themselves')
        return v


class FreezeRequest(EventModel):
    """冻结请求"""
    type: Literal["freeze"] = "freeze"
    subscription_id: str = Field(..., min_length=1)
    days: int = Field(..., gt=0)
    package_id: Optional[str] = None  # 不指定时使用计划默认冻结规则


class PaymentWebhook(EventModel):
    """支付网关回调"""
    type: Literal["payment_webhook"] = "payment_webhook"
    invoice_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    reference: str = Field(..., min_length=1)
    paid_at: Optional[datetime] = None


class WalletAdjustment(EventModel):
    """管理员钱包调整"""
    type: Literal["wallet_adjustment"] = "wallet_adjustment"
    member_id: str = Field(..., min_length=1)
    delta: Decimal
    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator('delta')
    @classmethod
    def delta_not_zero(cls, v):
        if v == 0:
            raise ValueError('delta cannot be zero')
        return v


BillingEvent = Annotated[
    Union[EnrollmentRequest, FreezeRequest, PaymentWebhook, WalletAdjustment],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(BillingEvent)


def parse_event(payload: Dict[str, Any]) -> BillingEvent:
    """
    校验并解析输入事件

    Raises:
        ValidationError: 未知类型或字段校验失败，details.errors 为字段错误列表
    """
    try:
        return _event_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid event payload: {e.error_count()} error(s)",
            details={'errors': [
                {'loc': [str(part) for part in err['loc']], 'msg': err['msg']}
                for err in e.errors(include_url=False)
            ]},
        ) from e
