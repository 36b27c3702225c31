# db/listings.py - 物品可用位相关的数据库操作

import logging

logger = logging.getLogger(__name__)


def get_listing(cursor, listing_id: str, for_update: bool = False):
    sql = "SELECT * FROM listings WHERE id = %s"
    if for_update:
        sql += " FOR UPDATE"

    cursor.execute(sql, (listing_id,))
    return cursor.fetchone()


def get_listings(cursor, listing_ids, for_update: bool = False):
    """
    批量读取物品（按 id 排序加锁，避免并发事务互相死锁）

    @return: {listing_id: row}
    """
    ids = sorted(set(listing_ids))
    if not ids:
        return {}

    sql = "SELECT * FROM listings WHERE id IN ({}) ORDER BY id".format(
        ", ".join(["%s"] * len(ids))
    )
    if for_update:
        sql += " FOR UPDATE"

    cursor.execute(sql, tuple(ids))
    return {row["id"]: row for row in cursor.fetchall()}


def set_listings_available(cursor, listing_ids, available: bool):
    """
    一条语句批量更新可用位
    """
    ids = sorted(set(listing_ids))
    logger.info("批量更新物品可用位: %s -> %s", ids, available)

    sql = "UPDATE listings SET is_available = %s, updated_at = NOW() WHERE id IN ({})".format(
        ", ".join(["%s"] * len(ids))
    )
    cursor.execute(sql, (available,) + tuple(ids))
    logger.info("物品可用位更新成功，影响行数: %s", cursor.rowcount)
    return cursor.rowcount


def search_available_listings(cursor, exclude_owner_id: str, category=None,
                              min_value=None, max_value=None, limit: int = 20):
    """
    交易匹配：他人名下、当前可用的物品，按类别和估值区间过滤
    """
    conditions = ["owner_id <> %s", "is_available = TRUE"]
    params = [exclude_owner_id]

    if category:
        conditions.append("category = %s")
        params.append(category)
    if min_value is not None:
        conditions.append("estimated_value >= %s")
        params.append(min_value)
    if max_value is not None:
        conditions.append("estimated_value <= %s")
        params.append(max_value)

    sql = "SELECT * FROM listings WHERE {} ORDER BY created_at DESC LIMIT %s".format(
        " AND ".join(conditions)
    )
    cursor.execute(sql, tuple(params) + (limit,))
    return cursor.fetchall()
