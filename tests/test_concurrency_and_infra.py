"""
乐观锁、事务重试与基础设施测试
"""

import sys

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from loguru import logger

from gym_billing.config import Settings, validate_settings
from gym_billing.core import freeze_balance as tracker
from gym_billing.core.entities import MembershipPlan
from gym_billing.core.exceptions import ConcurrentModification, InvalidTransition
from gym_billing.core.service_result import ServiceResult, ErrorCode, failure
from gym_billing.database import check_db_connection
from gym_billing.repositories.subscriptions import SubscriptionRepository
from gym_billing.run_lifecycle import main
from gym_billing.schemas.events import EnrollmentRequest
from gym_billing.services.base import BaseService
from gym_billing.services.subscription_service import SubscriptionService
from gym_billing.utils.logging_setup import error_log_path, setup_logger


class FailingDispatcher:
    """模拟通知服务不可用"""

    async def dispatch(self, effects):
        raise RuntimeError("notification gateway down")


class TestOptimisticLocking:
    """乐观锁测试"""

    @pytest.mark.asyncio
    async def test_stale_freeze_balance_write_is_rejected(self, session_factory, enroll_active):
        """两个事务同时预留最后的冻结天数，只有一个成功"""
        subscription = await enroll_active()

        async with session_factory() as first, session_factory() as second:
            first_repo = SubscriptionRepository(first)
            second_repo = SubscriptionRepository(second)
            first_balance = await first_repo.get_balance(subscription.id)
            second_balance = await second_repo.get_balance(subscription.id)

            await first_repo.save_balance(tracker.reserve(first_balance, 10).data)
            await first.commit()

            stale = tracker.reserve(second_balance, 10).data
            with pytest.raises(ConcurrentModification):
                await second_repo.save_balance(stale)
            await second.rollback()

            reloaded = await second_repo.get_balance(subscription.id)
            assert reloaded.used_freeze_days == 10
            assert tracker.reserve(reloaded, 1).error_code == ErrorCode.INSUFFICIENT_FREEZE_DAYS

    @pytest.mark.asyncio
    async def test_stale_subscription_save_is_rejected(self, session_factory, enroll_active):
        subscription = await enroll_active()

        async with session_factory() as session:
            repo = SubscriptionRepository(session)
            await repo.save(subscription)
            with pytest.raises(ConcurrentModification):
                await repo.save(subscription)


class TestBaseService:
    """事务边界与重试测试"""

    @pytest.mark.asyncio
    async def test_conflict_is_retried_once(self, session_factory):
        service = BaseService(session_factory, retry_attempts=1)
        calls = []

        async def work(uow):
            calls.append(1)
            if len(calls) == 1:
                raise ConcurrentModification("version changed")
            return ServiceResult.success("done")

        result = await service.run("测试操作", work)

        assert result.data == "done"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_repeated_conflict_is_reported(self, session_factory):
        service = BaseService(session_factory, retry_attempts=1)
        calls = []

        async def work(uow):
            calls.append(1)
            raise ConcurrentModification("version changed")

        result = await service.run("测试操作", work)

        assert result.error_code == ErrorCode.CONCURRENT_MODIFICATION
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_business_errors_are_not_retried(self, session_factory):
        service = BaseService(session_factory, retry_attempts=3)
        calls = []

        async def work(uow):
            calls.append(1)
            raise InvalidTransition("subscription is cancelled")

        result = await service.run("测试操作", work)

        assert result.error_code == ErrorCode.INVALID_TRANSITION
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_failed_result_rolls_back(self, session_factory):
        service = BaseService(session_factory)

        async def work(uow):
            await uow.subscriptions.add_plan(MembershipPlan(
                id="plan-rollback", name="Rollback", price=Decimal("10"), duration_days=30,
            ))
            return failure("rejected after write", ErrorCode.VALIDATION_ERROR)

        async def lookup(uow):
            return ServiceResult.success(await uow.subscriptions.get_plan("plan-rollback"))

        assert (await service.run("测试操作", work)).is_failure()
        assert (await service.read("查询计划", lookup)).error_code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_dispatch_failure_keeps_committed_result(self, session_factory, seeded):
        """副作用分发失败不回滚已提交的事务，只附加警告"""
        service = SubscriptionService(session_factory, FailingDispatcher())

        result = await service.enroll(
            EnrollmentRequest(member_id="member-1", plan_id="plan-monthly", start_date=date(2026, 3, 1)),
            today=date(2026, 3, 1),
        )

        assert result.is_success()
        assert any("Effect dispatch failed" in w for w in result.warnings)
        stored = await service.get_subscription(result.data['subscription'].id, today=date(2026, 3, 1))
        assert stored.is_success()

    @pytest.mark.asyncio
    async def test_effects_listed_in_metadata(self, subscription_service):
        result = await subscription_service.enroll(
            EnrollmentRequest(member_id="member-1", plan_id="plan-monthly", start_date=date(2026, 3, 1)),
            today=date(2026, 3, 1),
        )

        assert result.metadata['effects'] == ["InvoiceIssued", "NotificationRequested"]


class TestInfrastructure:
    """配置与数据库测试"""

    def test_production_rejects_debug_and_sqlite(self):
        current = Settings(environment="production", debug=True, database_url="sqlite+aiosqlite:///./x.db")

        with pytest.raises(ValueError) as exc_info:
            validate_settings(current)

        assert "DEBUG" in str(exc_info.value)
        assert "DATABASE_URL" in str(exc_info.value)

    def test_default_locale_must_be_supported(self):
        current = Settings(default_locale="fr", supported_locales=["ar", "en"])

        with pytest.raises(ValueError):
            validate_settings(current)

    def test_development_settings_are_valid(self):
        assert validate_settings(Settings(environment="development")) is True

    @pytest.mark.parametrize("log_file, expected", [
        ("logs/gym-billing.log", "logs/gym-billing.error.log"),
        ("logs/gym-billing", "logs/gym-billing.error.log"),
        ("archive.log/billing.txt", "archive.log/billing.error.txt"),
    ])
    def test_error_log_path(self, log_file, expected):
        assert error_log_path(log_file) == expected

    def test_errors_go_to_separate_file(self, tmp_path):
        log_file = tmp_path / "billing"
        setup_logger(Settings(environment="production", log_file=str(log_file)))
        try:
            logger.error("ledger mismatch")
            logger.complete()
        finally:
            logger.remove()
            logger.add(sys.stderr)

        assert "ledger mismatch" in (tmp_path / "billing.error.log").read_text()
        assert "ledger mismatch" in log_file.read_text()

    @pytest.mark.asyncio
    async def test_check_db_connection(self, session_factory):
        assert await check_db_connection(session_factory) is True


class TestRunLifecycle:
    """定时任务入口测试"""

    def test_main_runs_job_for_given_date(self):
        with patch('gym_billing.run_lifecycle.init_db', new=AsyncMock()) as init_db, \
                patch('gym_billing.run_lifecycle.close_db', new=AsyncMock()) as close_db, \
                patch('gym_billing.run_lifecycle.setup_logger'), \
                patch('gym_billing.run_lifecycle.lifecycle_job') as job:
            job.run = AsyncMock(return_value={'errors': 0})

            exit_code = main(["2026-03-31"])

        assert exit_code == 0
        job.run.assert_awaited_once_with(today=date(2026, 3, 31))
        init_db.assert_awaited_once()
        close_db.assert_awaited_once()

    def test_main_reports_failures(self):
        with patch('gym_billing.run_lifecycle.init_db', new=AsyncMock()), \
                patch('gym_billing.run_lifecycle.close_db', new=AsyncMock()) as close_db, \
                patch('gym_billing.run_lifecycle.setup_logger'), \
                patch('gym_billing.run_lifecycle.lifecycle_job') as job:
            job.run = AsyncMock(return_value={'errors': 2})

            assert main([]) == 1

        close_db.assert_awaited_once()
