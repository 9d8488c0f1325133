"""
测试配置和共享fixtures
每个测试使用独立的临时SQLite数据库，服务实例绑定测试会话工厂
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gym_billing.core.effects import CollectingEffectDispatcher
from gym_billing.core.entities import MembershipPlan, Subscription, SubscriptionStatus
from gym_billing.core.freeze_balance import FreezeBalance, FreezePackage
from gym_billing.core.wallet_ledger import WalletBalance
from gym_billing.database import create_engine_for_url, init_db
from gym_billing.repositories.subscriptions import SubscriptionRepository
from gym_billing.schemas.events import EnrollmentRequest
from gym_billing.services.invoice_service import InvoiceService
from gym_billing.services.lifecycle_job import LifecycleJob
from gym_billing.services.points_service import PointsService
from gym_billing.services.subscription_service import SubscriptionService
from gym_billing.services.wallet_service import WalletService


@pytest.fixture
async def test_engine(tmp_path):
    """创建测试数据库引擎"""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'gym_billing_test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def dispatcher():
    """收集提交后分发的副作用"""
    return CollectingEffectDispatcher()


@pytest.fixture
def sample_plan():
    """示例会员计划: 30天 500 SAR，可冻结10天"""
    return MembershipPlan(
        id="plan-monthly",
        name="Monthly Gold",
        price=Decimal("500.00"),
        duration_days=30,
        currency="SAR",
        freeze_days_allowed=10,
        max_classes=12,
    )


@pytest.fixture
def sample_package():
    """不顺延合同的冻结套餐"""
    return FreezePackage(
        id="pkg-travel",
        name="Travel freeze",
        freeze_days=14,
        price=Decimal("0"),
        extends_contract=False,
    )


@pytest.fixture
async def seeded(session_factory, sample_plan, sample_package):
    """写入会员计划与冻结套餐"""
    async with session_factory() as session:
        repo = SubscriptionRepository(session)
        await repo.add_plan(sample_plan)
        await repo.add_plan(MembershipPlan(
            id="plan-trial",
            name="Free Trial",
            price=Decimal("0"),
            duration_days=7,
        ))
        await repo.add_plan(MembershipPlan(
            id="plan-joining",
            name="Quarterly",
            price=Decimal("1200.00"),
            duration_days=90,
            administration_fee=Decimal("50.00"),
            join_fee=Decimal("100.00"),
            tax_rate=Decimal("0.15"),
            freeze_days_allowed=20,
        ))
        await repo.add_package(sample_package)
        await session.commit()
    return sample_plan


@pytest.fixture
def subscription_service(session_factory, dispatcher, seeded):
    return SubscriptionService(session_factory, dispatcher)


@pytest.fixture
def invoice_service(session_factory, dispatcher, seeded):
    return InvoiceService(session_factory, dispatcher)


@pytest.fixture
def wallet_service(session_factory, dispatcher, seeded):
    return WalletService(session_factory, dispatcher)


@pytest.fixture
def points_service(session_factory, dispatcher, seeded):
    return PointsService(session_factory, dispatcher)


@pytest.fixture
def lifecycle_job(session_factory, dispatcher, seeded):
    return LifecycleJob(session_factory, dispatcher, advance_days=3)


@pytest.fixture
def active_subscription():
    """内存中的ACTIVE订阅，用于纯函数测试"""
    return Subscription(
        id="sub-1",
        member_id="member-1",
        plan_id="plan-monthly",
        status=SubscriptionStatus.ACTIVE,
        start_date=date(2026, 3, 1),
        end_date=date(2026, 3, 31),
        classes_remaining=12,
    )


@pytest.fixture
def freeze_balance():
    return FreezeBalance(subscription_id="sub-1", total_freeze_days=10)


@pytest.fixture
def empty_wallet():
    return WalletBalance(member_id="member-1", balance=Decimal("0.00"), currency="SAR")


@pytest.fixture
def now():
    return datetime(2026, 3, 1, 10, 0, 0)


@pytest.fixture
def enroll_active(subscription_service, wallet_service):
    """充值后报名，钱包自动支付后返回已激活的订阅"""
    async def _enroll(member_id="member-1", plan_id="plan-monthly", start_date=date(2026, 3, 1),
                      amount=Decimal("500.00"), today=date(2026, 3, 1), **kwargs):
        credited = await wallet_service.credit(member_id, amount, reference=f"topup-{member_id}-{start_date}")
        assert credited.is_success()
        result = await subscription_service.enroll(
            EnrollmentRequest(member_id=member_id, plan_id=plan_id, start_date=start_date, **kwargs),
            today=today,
        )
        assert result.is_success(), result.error
        assert result.data['subscription'].status == SubscriptionStatus.ACTIVE
        return result.data['subscription']

    return _enroll
