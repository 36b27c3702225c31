# db/users.py - 用户信誉 / 钱包字段的数据库操作

import json
import logging

logger = logging.getLogger(__name__)


def get_user(cursor, user_id: str, for_update: bool = False):
    sql = "SELECT id, barter_score, badges, trade_coins FROM users WHERE id = %s"
    if for_update:
        sql += " FOR UPDATE"

    cursor.execute(sql, (user_id,))
    return cursor.fetchone()


def get_users(cursor, user_ids, for_update: bool = False):
    """
    批量读取用户（按 id 排序加锁，和 listings.get_listings 同一个加锁顺序）

    @return: {user_id: row}
    """
    ids = sorted(set(user_ids))
    if not ids:
        return {}

    sql = "SELECT id, barter_score, badges, trade_coins FROM users WHERE id IN ({}) ORDER BY id".format(
        ", ".join(["%s"] * len(ids))
    )
    if for_update:
        sql += " FOR UPDATE"

    cursor.execute(sql, tuple(ids))
    return {row["id"]: row for row in cursor.fetchall()}


def update_user_reputation(cursor, user_id: str, barter_score: float, badges, trade_coins: int):
    """
    写回 barter_score / badges / trade_coins
    """
    logger.info(
        "更新用户信誉，用户: %s, 分数: %s, 徽章: %s, 代币: %s",
        user_id, barter_score, sorted(badges), trade_coins,
    )

    sql = """
    UPDATE users
    SET barter_score = %s,
        badges = %s,
        trade_coins = %s,
        updated_at = NOW()
    WHERE id = %s
    """
    cursor.execute(sql, (barter_score, json.dumps(sorted(badges)), trade_coins, user_id))
    return cursor.rowcount
