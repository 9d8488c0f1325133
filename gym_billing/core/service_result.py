"""
计费操作结果

状态变更、冻结预留、钱包扣款和开票都返回 ServiceResult。
业务规则拒绝作为 ErrorDetail 携带在结果里，是否转成异常由调用方决定。
"""

from typing import Generic, TypeVar, Optional, Any, Dict, List, Callable
from dataclasses import dataclass, field as dc_field
from enum import Enum

T = TypeVar('T')


class ErrorCode(Enum):
    """错误代码"""
    SUCCESS = 1000
    UNKNOWN_ERROR = 1001
    VALIDATION_ERROR = 1002
    NOT_FOUND = 1003

    # 业务规则
    INVALID_TRANSITION = 3001
    INSUFFICIENT_FREEZE_DAYS = 3002
    INSUFFICIENT_BALANCE = 3003
    ALREADY_PAID = 3004
    CLASS_ALLOWANCE_EXHAUSTED = 3005
    DUPLICATE_INVOICE = 3006

    # 持久化
    CONCURRENT_MODIFICATION = 4001
    DATABASE_ERROR = 4002


@dataclass
class ErrorDetail:
    code: ErrorCode
    message: str
    field: Optional[str] = None
    context: Dict[str, Any] = dc_field(default_factory=dict)  # 字段名 field 会遮蔽 dataclasses.field

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code.name,
            'message': self.message,
            'field': self.field,
            'context': self.context,
        }


@dataclass
class ServiceResult(Generic[T]):
    """
    操作结果

    ```python
    result = reserve(balance, days=7)
    if result.is_failure():
        return result
    balance = result.data

    # 在事务中需要回滚时
    balance = reserve(balance, days=7).get_data_or_raise()
    ```
    """
    succeeded: bool
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None
    warnings: List[str] = dc_field(default_factory=list)
    metadata: Dict[str, Any] = dc_field(default_factory=dict)

    @classmethod
    def success(cls, data: T = None, warnings: List[str] = None, metadata: Dict[str, Any] = None) -> 'ServiceResult[T]':
        return cls(True, data, None, list(warnings or []), dict(metadata or {}))

    @classmethod
    def failure(cls, error: ErrorDetail, warnings: List[str] = None, metadata: Dict[str, Any] = None) -> 'ServiceResult[T]':
        return cls(False, None, error, list(warnings or []), dict(metadata or {}))

    @classmethod
    def from_exception(cls, exception: Exception, code: Optional[ErrorCode] = None) -> 'ServiceResult[T]':
        """业务异常沿用自身的错误代码和上下文"""
        context = {'exception_type': type(exception).__name__}
        if isinstance(getattr(exception, 'details', None), dict):
            context.update(exception.details)
        return cls.failure(ErrorDetail(
            code=code or getattr(exception, 'error_code', ErrorCode.UNKNOWN_ERROR),
            message=getattr(exception, 'message', str(exception)),
            context=context,
        ))

    def is_success(self) -> bool:
        return self.succeeded

    def is_failure(self) -> bool:
        return not self.succeeded

    @property
    def error_code(self) -> ErrorCode:
        return self.error.code if self.error else ErrorCode.SUCCESS

    def get_data_or_raise(self) -> T:
        """失败时抛出与错误代码对应的 BillingError"""
        if self.succeeded:
            return self.data
        from gym_billing.core.exceptions import exception_for_code
        raise exception_for_code(self.error.code, self.error.message, self.error.context)

    def map(self, func: Callable[[T], Any]) -> 'ServiceResult':
        """转换成功数据，保留警告和元数据"""
        if self.is_failure():
            return self
        return ServiceResult.success(func(self.data), self.warnings, self.metadata)

    def flat_map(self, func: Callable[[T], 'ServiceResult']) -> 'ServiceResult':
        """串联下一步操作；失败时短路"""
        if self.is_failure():
            return self
        return func(self.data)

    def or_else(self, default: T) -> T:
        return self.data if self.succeeded else default

    def to_dict(self) -> Dict[str, Any]:
        payload = {'success': self.succeeded, 'warnings': self.warnings, 'metadata': self.metadata}
        if self.succeeded:
            payload['data'] = self.data
        else:
            payload['error'] = self.error.to_dict() if self.error else None
        return payload


def failure(message: str, code: ErrorCode = ErrorCode.UNKNOWN_ERROR, field: Optional[str] = None,
            context: Optional[Dict[str, Any]] = None, **kwargs) -> ServiceResult:
    """构造失败结果的简写"""
    return ServiceResult.failure(
        ErrorDetail(code=code, message=message, field=field, context=context or {}),
        **kwargs
    )
