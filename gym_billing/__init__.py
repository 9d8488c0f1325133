"""
Gym Billing Core - 会员订阅与计费核心

订阅状态机、冻结余额、钱包自动支付、发票开具与支付关联
"""

__version__ = "1.0.0"
