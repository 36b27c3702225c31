# db/memory.py - 内存仓储（测试 / 本地调试用）

"""
与 MySQLRepository 相同的 session 接口

 事务之间用一把全局锁串行化，相当于 SERIALIZABLE
 事务开始时复制各表，提交时整体替换，异常时丢弃副本
 快照对象不可变，所以浅拷贝即可
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace

from models.listing import Listing
from models.user import User
from services.errors import ConflictError

logger = logging.getLogger(__name__)


class _Tables:

    def __init__(self, users=None, listings=None, trades=None, ratings=None):
        self.users = dict(users or {})
        self.listings = dict(listings or {})
        self.trades = dict(trades or {})
        self.ratings = dict(ratings or {})

    def copy(self):
        return _Tables(self.users, self.listings, self.trades, self.ratings)


class InMemorySession:

    def __init__(self, tables: _Tables):
        self.tables = tables

    # ---------- trades ----------

    def get_trade(self, trade_id, for_update=False):
        return self.tables.trades.get(trade_id)

    def insert_trade(self, trade):
        if trade.id in self.tables.trades:
            raise ConflictError("Trade already exists")
        self.tables.trades[trade.id] = trade

    def update_trade(self, trade):
        self.tables.trades[trade.id] = trade

    def list_trades(self, user_id, status=None, role=None, limit=10, offset=0):
        def matches(trade):
            if status and trade.status != status:
                return False
            if role == "proposer":
                return trade.proposer_id == user_id
            if role == "receiver":
                return trade.receiver_id == user_id
            return user_id in trade.participant_ids()

        found = [t for t in self.tables.trades.values() if matches(t)]
        found.sort(key=lambda t: t.created_at, reverse=True)
        return len(found), found[offset:offset + limit]

    # ---------- listings ----------

    def get_listing(self, listing_id, for_update=False):
        return self.tables.listings.get(listing_id)

    def get_listings(self, listing_ids, for_update=False):
        return {
            listing_id: self.tables.listings[listing_id]
            for listing_id in set(listing_ids)
            if listing_id in self.tables.listings
        }

    def set_listings_available(self, listing_ids, available):
        count = 0
        for listing_id in set(listing_ids):
            listing = self.tables.listings.get(listing_id)
            if listing is None:
                continue
            self.tables.listings[listing_id] = replace(listing, is_available=available)
            count += 1
        return count

    def search_listings(self, exclude_owner_id, category=None, min_value=None, max_value=None, limit=20):
        found = []
        for listing in reversed(list(self.tables.listings.values())):
            if listing.owner_id == exclude_owner_id or not listing.is_available:
                continue
            if category and listing.category != category:
                continue
            if min_value is not None and (listing.estimated_value is None or listing.estimated_value < min_value):
                continue
            if max_value is not None and (listing.estimated_value is None or listing.estimated_value > max_value):
                continue
            found.append(listing)
        return found[:limit]

    # ---------- users ----------

    def get_user(self, user_id, for_update=False):
        return self.tables.users.get(user_id)

    def get_users(self, user_ids, for_update=False):
        return {
            user_id: self.tables.users[user_id]
            for user_id in set(user_ids)
            if user_id in self.tables.users
        }

    def update_user(self, user):
        self.tables.users[user.id] = user

    # ---------- ratings ----------

    def find_rating(self, rater_id, rated_user_id, trade_id):
        for rating in self.tables.ratings.values():
            if (rating.rater_id, rating.rated_user_id, rating.trade_id) == (rater_id, rated_user_id, trade_id):
                return rating
        return None

    def insert_rating(self, rating):
        # 与 MySQL 唯一索引一致：trade_id 为空时不约束
        if rating.trade_id is not None and self.find_rating(rating.rater_id, rating.rated_user_id, rating.trade_id):
            raise ConflictError("You have already rated this user for this trade")
        self.tables.ratings[rating.id] = rating

    def rating_scores(self, rated_user_id):
        return [r.score for r in self.tables.ratings.values() if r.rated_user_id == rated_user_id]

    def list_ratings(self, rated_user_id, limit=10, offset=0):
        found = [r for r in self.tables.ratings.values() if r.rated_user_id == rated_user_id]
        found.sort(key=lambda r: r.created_at, reverse=True)
        return len(found), found[offset:offset + limit]


class InMemoryRepository:

    def __init__(self):
        self._tables = _Tables()
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self):
        with self._lock:
            working = self._tables.copy()
            try:
                yield InMemorySession(working)
            except Exception:
                logger.error("事务回滚（内存）")
                raise
            self._tables = working

    # ---------- 测试数据 ----------

    def add_user(self, user_id, barter_score=0.0, badges=(), trade_coins=0):
        user = User(id=user_id, barter_score=barter_score, badges=frozenset(badges), trade_coins=trade_coins)
        with self._lock:
            self._tables.users[user_id] = user
        return user

    def add_listing(self, listing_id, owner_id, is_available=True, estimated_value=None, title=None, category=None):
        listing = Listing(
            id=listing_id,
            owner_id=owner_id,
            is_available=is_available,
            estimated_value=estimated_value,
            title=title,
            category=category,
        )
        with self._lock:
            self._tables.listings[listing_id] = listing
        return listing

    def user(self, user_id):
        return self._tables.users.get(user_id)

    def listing(self, listing_id):
        return self._tables.listings.get(listing_id)

    def trade(self, trade_id):
        return self._tables.trades.get(trade_id)

    def ratings(self):
        return list(self._tables.ratings.values())
