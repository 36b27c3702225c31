 # db/trades.py - 交易数据库操作模块

 #提供交易相关的数据库CRUD操作
 #所有函数接收调用方事务内的 cursor，不自行提交


import logging

logger = logging.getLogger(__name__)

TRADE_COLUMNS = (
    "id",
    "proposer_id",
    "receiver_id",
    "proposer_listing_id",
    "receiver_listing_id",
    "status",
    "type",
    "trade_chain",
    "trade_coin_amount",
    "meetup_location",
    "meetup_time",
    "is_escrow",
    "escrow_release_date",
    "notes",
    "created_at",
    "updated_at",
)


def insert_trade(cursor, row: dict):
    """
    创建新交易记录
    """
    logger.info("开始插入新交易，交易ID: %s", row["id"])

    sql = "INSERT INTO trades ({}) VALUES ({})".format(
        ", ".join(TRADE_COLUMNS),
        ", ".join(["%s"] * len(TRADE_COLUMNS)),
    )
    cursor.execute(sql, tuple(row[column] for column in TRADE_COLUMNS))
    logger.info("交易插入成功，交易ID: %s", row["id"])


def update_trade(cursor, row: dict):
    """
    写回交易快照（除 id / created_at 外的全部字段）

    @param row: Trade.to_row() 结果
    @return: 影响行数
    """
    logger.info("更新交易，交易ID: %s, 状态: %s", row["id"], row["status"])

    columns = [c for c in TRADE_COLUMNS if c not in ("id", "created_at")]
    sql = "UPDATE trades SET {} WHERE id = %s".format(
        ", ".join("{} = %s".format(c) for c in columns)
    )
    cursor.execute(sql, tuple(row[c] for c in columns) + (row["id"],))
    logger.info("交易更新成功，影响行数: %s", cursor.rowcount)
    return cursor.rowcount


def get_trade(cursor, trade_id: str, for_update: bool = False):
    """
    获取交易详情

    @param trade_id: 交易ID
    @param for_update: 是否加行锁（状态跳转前必须加锁重读）
    @return: 交易行，如果不存在则返回None
    """
    sql = "SELECT * FROM trades WHERE id = %s"
    if for_update:
        sql += " FOR UPDATE"

    cursor.execute(sql, (trade_id,))
    return cursor.fetchone()


def list_user_trades(cursor, user_id: str, status=None, role=None, limit: int = 10, offset: int = 0):
    """
    获取用户参与的交易列表（按创建时间倒序）

    @param role: proposer / receiver / None（发起人、接收人或多方交易链上的任一用户）
    @return: (总数, 当前页交易行)
    """
    logger.info("获取交易列表，用户: %s, 状态: %s, 角色: %s", user_id, status, role)

    conditions = []
    params = []

    if status:
        conditions.append("status = %s")
        params.append(status)

    if role == "proposer":
        conditions.append("proposer_id = %s")
        params.append(user_id)
    elif role == "receiver":
        conditions.append("receiver_id = %s")
        params.append(user_id)
    else:
        conditions.append(
            "(proposer_id = %s OR receiver_id = %s"
            " OR JSON_CONTAINS(JSON_EXTRACT(trade_chain, '$[*].userId'), JSON_QUOTE(%s)))"
        )
        params.extend([user_id, user_id, user_id])

    where = " AND ".join(conditions)

    cursor.execute("SELECT COUNT(*) AS total FROM trades WHERE " + where, tuple(params))
    total = cursor.fetchone()["total"]

    cursor.execute(
        "SELECT * FROM trades WHERE " + where + " ORDER BY created_at DESC LIMIT %s OFFSET %s",
        tuple(params) + (limit, offset),
    )
    rows = cursor.fetchall()
    logger.info("交易列表获取成功，数量: %s / %s", len(rows), total)
    return total, rows
