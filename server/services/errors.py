# services/errors.py

"""
交易核心的错误分类

服务层只抛这些类型；API 层按 status_code 映射成 HTTP 状态码
"""


class TradeError(Exception):
    status_code = 500


class ValidationError(TradeError):
    """输入格式或取值范围不合法"""

    status_code = 400


class ForbiddenError(TradeError):
    """归属或角色不符"""

    status_code = 403


class NotFoundError(TradeError):
    """引用的交易 / 物品 / 用户不存在"""

    status_code = 404


class ConflictError(TradeError):
    """非法状态跳转、物品不可用、重复评分、并发竞争失败"""

    status_code = 409


class InternalError(TradeError):
    """存储或事务失败，事务已整体回滚"""

    status_code = 500
