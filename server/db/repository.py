# db/repository.py - MySQL 仓储

"""
把 db/ 下的 SQL 函数组装成引擎使用的仓储接口

 引擎只依赖 transaction() 返回的 session
 一个 session 对应一个 MySQL 事务
 状态跳转前用 for_update=True 加锁重读
"""

import logging
from contextlib import contextmanager

import pymysql

from db import listings as listing_db
from db import ratings as rating_db
from db import trades as trade_db
from db import users as user_db
from db.mysql import get_cursor
from models.listing import Listing
from models.rating import Rating
from models.trade import Trade
from models.user import User
from services.errors import ConflictError, InternalError, TradeError

logger = logging.getLogger(__name__)

# MySQL 唯一索引冲突
ER_DUP_ENTRY = 1062


class MySQLSession:
    """
    事务内的读写操作，所有方法返回不可变快照
    """

    def __init__(self, cursor):
        self.cursor = cursor

    # ---------- trades ----------

    def get_trade(self, trade_id, for_update=False):
        row = trade_db.get_trade(self.cursor, trade_id, for_update=for_update)
        return Trade.from_row(row) if row else None

    def insert_trade(self, trade: Trade):
        trade_db.insert_trade(self.cursor, trade.to_row())

    def update_trade(self, trade: Trade):
        trade_db.update_trade(self.cursor, trade.to_row())

    def list_trades(self, user_id, status=None, role=None, limit=10, offset=0):
        total, rows = trade_db.list_user_trades(
            self.cursor, user_id, status=status, role=role, limit=limit, offset=offset
        )
        return total, [Trade.from_row(row) for row in rows]

    # ---------- listings ----------

    def get_listing(self, listing_id, for_update=False):
        row = listing_db.get_listing(self.cursor, listing_id, for_update=for_update)
        return Listing.from_row(row) if row else None

    def get_listings(self, listing_ids, for_update=False):
        rows = listing_db.get_listings(self.cursor, listing_ids, for_update=for_update)
        return {listing_id: Listing.from_row(row) for listing_id, row in rows.items()}

    def set_listings_available(self, listing_ids, available):
        return listing_db.set_listings_available(self.cursor, listing_ids, available)

    def search_listings(self, exclude_owner_id, category=None, min_value=None, max_value=None, limit=20):
        rows = listing_db.search_available_listings(
            self.cursor,
            exclude_owner_id,
            category=category,
            min_value=min_value,
            max_value=max_value,
            limit=limit,
        )
        return [Listing.from_row(row) for row in rows]

    # ---------- users ----------

    def get_user(self, user_id, for_update=False):
        row = user_db.get_user(self.cursor, user_id, for_update=for_update)
        return User.from_row(row) if row else None

    def get_users(self, user_ids, for_update=False):
        rows = user_db.get_users(self.cursor, user_ids, for_update=for_update)
        return {user_id: User.from_row(row) for user_id, row in rows.items()}

    def update_user(self, user: User):
        user_db.update_user_reputation(
            self.cursor, user.id, user.barter_score, user.badges, user.trade_coins
        )

    # ---------- ratings ----------

    def find_rating(self, rater_id, rated_user_id, trade_id):
        row = rating_db.find_rating(self.cursor, rater_id, rated_user_id, trade_id)
        return Rating.from_row(row) if row else None

    def insert_rating(self, rating: Rating):
        try:
            rating_db.insert_rating(self.cursor, {
                "id": rating.id,
                "rater_id": rating.rater_id,
                "rated_user_id": rating.rated_user_id,
                "trade_id": rating.trade_id,
                "score": rating.score,
                "comment": rating.comment,
                "created_at": rating.created_at,
            })
        except pymysql.err.IntegrityError as e:
            if e.args and e.args[0] == ER_DUP_ENTRY:
                raise ConflictError("You have already rated this user for this trade") from e
            raise

    def rating_scores(self, rated_user_id):
        return rating_db.get_scores(self.cursor, rated_user_id)

    def list_ratings(self, rated_user_id, limit=10, offset=0):
        total, rows = rating_db.list_ratings(self.cursor, rated_user_id, limit=limit, offset=offset)
        return total, [Rating.from_row(row) for row in rows]


class MySQLRepository:

    def __init__(self, cursor_factory=get_cursor):
        self.cursor_factory = cursor_factory

    @contextmanager
    def transaction(self):
        """
        事务单元：正常退出提交，异常回滚

        存储层异常统一转换成 InternalError，领域错误原样抛出
        """
        try:
            with self.cursor_factory() as cursor:
                yield MySQLSession(cursor)
        except TradeError:
            raise
        except pymysql.MySQLError as e:
            logger.error("数据库事务失败，已回滚: %s", e)
            raise InternalError("Storage failure") from e
