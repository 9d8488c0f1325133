"""
ServiceResult 与 ErrorDetail 测试
"""

import pytest

from gym_billing.core.exceptions import InsufficientBalance, NotFoundError
from gym_billing.core.service_result import ServiceResult, ErrorCode, ErrorDetail, failure


class TestErrorDetail:
    """错误详情测试"""

    def test_defaults(self):
        detail = ErrorDetail(code=ErrorCode.VALIDATION_ERROR, message="x")

        assert detail.field is None
        assert detail.context == {}

    def test_context_not_shared_between_instances(self):
        first = ErrorDetail(code=ErrorCode.NOT_FOUND, message="a")
        second = ErrorDetail(code=ErrorCode.NOT_FOUND, message="b")

        first.context['id'] = "sub-1"

        assert second.context == {}

    def test_to_dict(self):
        detail = ErrorDetail(code=ErrorCode.INSUFFICIENT_BALANCE, message="short", field="amount",
                             context={'balance': "200.00"})

        assert detail.to_dict() == {
            'code': "INSUFFICIENT_BALANCE",
            'message': "short",
            'field': "amount",
            'context': {'balance': "200.00"},
        }


class TestServiceResult:
    """操作结果测试"""

    def test_success_defaults(self):
        result = ServiceResult.success(5)

        assert result.is_success()
        assert result.error_code == ErrorCode.SUCCESS
        assert result.warnings == []
        assert result.metadata == {}

    def test_map_keeps_warnings_and_metadata(self):
        result = ServiceResult.success(2, warnings=["late"], metadata={'source': "wallet"}).map(lambda x: x * 10)

        assert result.data == 20
        assert result.warnings == ["late"]
        assert result.metadata == {'source': "wallet"}

    def test_map_and_flat_map_short_circuit_on_failure(self):
        failed = failure("missing", ErrorCode.NOT_FOUND)
        calls = []

        assert failed.map(calls.append) is failed
        assert failed.flat_map(lambda x: ServiceResult.success(calls.append(x))) is failed
        assert calls == []

    def test_flat_map_chains_next_step(self):
        result = ServiceResult.success(3).flat_map(
            lambda x: failure("too small", ErrorCode.VALIDATION_ERROR) if x < 5 else ServiceResult.success(x)
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_or_else(self):
        assert ServiceResult.success("data").or_else("default") == "data"
        assert failure("boom").or_else("default") == "default"

    def test_to_dict(self):
        assert ServiceResult.success(1).to_dict() == {
            'success': True, 'warnings': [], 'metadata': {}, 'data': 1,
        }
        payload = failure("missing", ErrorCode.NOT_FOUND, field="id").to_dict()
        assert payload['success'] is False
        assert payload['error']['code'] == "NOT_FOUND"
        assert payload['error']['field'] == "id"

    def test_from_exception_uses_business_error_code(self):
        result = ServiceResult.from_exception(InsufficientBalance("short", details={'needed': "500.00"}))

        assert result.error_code == ErrorCode.INSUFFICIENT_BALANCE
        assert result.error.context['needed'] == "500.00"
        assert result.error.context['exception_type'] == "InsufficientBalance"

    def test_from_exception_with_explicit_code(self):
        result = ServiceResult.from_exception(RuntimeError("disk full"), ErrorCode.DATABASE_ERROR)

        assert result.error_code == ErrorCode.DATABASE_ERROR
        assert result.error.message == "disk full"

    def test_get_data_or_raise(self):
        assert ServiceResult.success("ok").get_data_or_raise() == "ok"
        with pytest.raises(NotFoundError):
            failure("missing", ErrorCode.NOT_FOUND).get_data_or_raise()
