"""
冻结天数余额测试
"""

from gym_billing.core import freeze_balance as tracker
from gym_billing.core.service_result import ErrorCode


class TestFreezeBalance:

    def test_reserve_then_release_restores_balance(self, freeze_balance):
        """预留后全部归还，余额恢复"""
        reserved = tracker.reserve(freeze_balance, 6).get_data_or_raise()
        released = tracker.release(reserved, 6).get_data_or_raise()

        assert reserved.remaining == 4
        assert released.used_freeze_days == 0
        assert released.remaining == freeze_balance.remaining

    def test_reserve_exact_remaining(self, freeze_balance):
        result = tracker.reserve(freeze_balance, 10)

        assert result.is_success()
        assert result.data.remaining == 0
        assert tracker.reserve(result.data, 1).error_code == ErrorCode.INSUFFICIENT_FREEZE_DAYS

    def test_reserve_non_positive_days(self, freeze_balance):
        assert tracker.reserve(freeze_balance, 0).error_code == ErrorCode.VALIDATION_ERROR
        assert tracker.reserve(freeze_balance, -2).error_code == ErrorCode.VALIDATION_ERROR

    def test_release_more_than_used(self, freeze_balance):
        reserved = tracker.reserve(freeze_balance, 3).data

        result = tracker.release(reserved, 4)

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_grant_adds_days(self, freeze_balance):
        granted = tracker.grant(freeze_balance, 5).data

        assert granted.total_freeze_days == 15
        assert granted.remaining == 15
        assert tracker.grant(freeze_balance, 0).is_failure()

    def test_insufficient_days_context(self, freeze_balance):
        result = tracker.reserve(freeze_balance, 15)

        assert result.error.context == {'requested': 15, 'remaining': 10}
