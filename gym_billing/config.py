"""
Gym Billing Core - 配置管理

统一管理应用配置，支持环境变量和默认值
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List


class Settings(BaseSettings):
    """应用配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # 应用基础配置
    app_name: str = Field(default="Gym Billing Core", alias="APP_NAME")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # 数据库配置
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/gym_billing.db",
        alias="DATABASE_URL"
    )

    # 日志配置
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: str = Field(default="logs/gym-billing.log", alias="LOG_FILE")

    # 计费配置
    default_currency: str = Field(default="SAR", alias="DEFAULT_CURRENCY")
    invoice_number_prefix: str = Field(default="INV", alias="INVOICE_NUMBER_PREFIX")
    billing_advance_days: int = Field(default=3, alias="BILLING_ADVANCE_DAYS")  # 续费发票提前天数

    # 通知语言
    default_locale: str = Field(default="ar", alias="DEFAULT_LOCALE")
    supported_locales: List[str] = Field(default=["ar", "en"], alias="SUPPORTED_LOCALES")

    # 乐观锁冲突后的重试次数（重新加载后重试）
    conflict_retry_attempts: int = Field(default=1, alias="CONFLICT_RETRY_ATTEMPTS")

    # 积分配置
    loyalty_points_per_unit: int = Field(default=1, alias="LOYALTY_POINTS_PER_UNIT")  # 每支付1单位货币获得积分, 0为关闭
    referral_reward_points: int = Field(default=100, alias="REFERRAL_REWARD_POINTS")


# 创建全局配置实例
settings = Settings()


def validate_settings(current: Settings = None):
    """验证关键配置"""
    current = current or settings
    errors = []

    if current.environment == "production":
        if current.debug:
            errors.append("生产环境不应启用DEBUG模式")
        if current.database_url.startswith("sqlite"):
            errors.append("生产环境必须使用支持行级锁的数据库 (DATABASE_URL)")

    if current.default_locale not in current.supported_locales:
        errors.append(f"DEFAULT_LOCALE {current.default_locale} 不在 SUPPORTED_LOCALES 中")

    if current.conflict_retry_attempts < 0:
        errors.append("CONFLICT_RETRY_ATTEMPTS 不能为负数")

    if errors:
        raise ValueError(f"配置验证失败: {'; '.join(errors)}")

    return True


# 在导入时验证配置
if settings.environment == "production":
    validate_settings()
