"""
金额工具 - 按币种最小单位四舍五入（ROUND_HALF_UP）
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

# 币种最小单位位数，未列出的币种按2位处理
CURRENCY_MINOR_UNITS = {
    'SAR': 2,
    'AED': 2,
    'USD': 2,
    'EGP': 2,
    'KWD': 3,
    'BHD': 3,
    'OMR': 3,
    'JPY': 0,
}

Number = Union[Decimal, int, str]


def minor_units(currency: str) -> int:
    return CURRENCY_MINOR_UNITS.get(currency.upper(), 2)


def to_decimal(value: Number) -> Decimal:
    """转换为Decimal，float先转字符串避免精度误差"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(amount: Number, currency: str) -> Decimal:
    """按币种最小单位四舍五入"""
    exponent = Decimal(1).scaleb(-minor_units(currency))
    return to_decimal(amount).quantize(exponent, rounding=ROUND_HALF_UP)
