"""
Gym Billing Core 工具模块
"""

from .logging_setup import setup_logger
from .money import round_money, minor_units, to_decimal

__all__ = [
    'setup_logger',
    'round_money',
    'minor_units',
    'to_decimal',
]
