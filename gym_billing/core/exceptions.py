"""
自定义异常类 - 会员计费核心的业务错误分类
"""

from typing import Optional, Any

from gym_billing.core.service_result import ErrorCode


class BillingError(Exception):
    """计费系统基础异常"""

    error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None, details: Optional[Any] = None):
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class ValidationError(BillingError):
    """数据验证异常"""
    error_code = ErrorCode.VALIDATION_ERROR


class NotFoundError(BillingError):
    """资源不存在"""
    error_code = ErrorCode.NOT_FOUND


class InvalidTransition(BillingError):
    """当前状态不允许该状态变更 - 直接返回给调用方，不重试"""
    error_code = ErrorCode.INVALID_TRANSITION


class InsufficientFreezeDays(BillingError):
    """冻结天数余额不足"""
    error_code = ErrorCode.INSUFFICIENT_FREEZE_DAYS


class InsufficientBalance(BillingError):
    """钱包余额不足"""
    error_code = ErrorCode.INSUFFICIENT_BALANCE


class AlreadyPaidError(BillingError):
    """发票已支付 - 调用方按幂等成功处理"""
    error_code = ErrorCode.ALREADY_PAID


class ConcurrentModification(BillingError):
    """乐观锁冲突 - 调用方应重新加载并重试一次"""
    error_code = ErrorCode.CONCURRENT_MODIFICATION


class ClassAllowanceExhausted(BillingError):
    """课程次数已用完"""
    error_code = ErrorCode.CLASS_ALLOWANCE_EXHAUSTED


class DuplicateInvoiceError(BillingError):
    """订阅已有未支付发票"""
    error_code = ErrorCode.DUPLICATE_INVOICE


_EXCEPTIONS_BY_CODE = {
    cls.error_code: cls
    for cls in (
        ValidationError,
        NotFoundError,
        InvalidTransition,
        InsufficientFreezeDays,
        InsufficientBalance,
        AlreadyPaidError,
        ConcurrentModification,
        ClassAllowanceExhausted,
        DuplicateInvoiceError,
    )
}


def exception_for_code(code: ErrorCode, message: str, details: Optional[Any] = None) -> BillingError:
    """根据错误代码还原对应的异常类型"""
    exc_class = _EXCEPTIONS_BY_CODE.get(code, BillingError)
    return exc_class(message, error_code=code, details=details)
