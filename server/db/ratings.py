# db/ratings.py - 评分数据库操作

import logging

logger = logging.getLogger(__name__)


def insert_rating(cursor, row: dict):
    """
    写入评分

    (rater_id, rated_user_id, trade_id) 上有唯一索引，
    重复时 pymysql 抛 IntegrityError(1062)，由调用方转换
    """
    logger.info("写入评分，评分人: %s, 被评人: %s, 交易: %s", row["rater_id"], row["rated_user_id"], row["trade_id"])

    sql = """
    INSERT INTO ratings (
        id,
        rater_id,
        rated_user_id,
        trade_id,
        score,
        comment,
        created_at
    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
    """
    cursor.execute(
        sql,
        (
            row["id"],
            row["rater_id"],
            row["rated_user_id"],
            row["trade_id"],
            row["score"],
            row["comment"],
            row["created_at"],
        )
    )


def find_rating(cursor, rater_id: str, rated_user_id: str, trade_id: str):
    sql = """
    SELECT * FROM ratings
    WHERE rater_id = %s AND rated_user_id = %s AND trade_id = %s
    """
    cursor.execute(sql, (rater_id, rated_user_id, trade_id))
    return cursor.fetchone()


def get_scores(cursor, rated_user_id: str):
    """
    被评人收到的全部分数（用于全量重算 barter_score）
    """
    cursor.execute("SELECT score FROM ratings WHERE rated_user_id = %s", (rated_user_id,))
    return [int(row["score"]) for row in cursor.fetchall()]


def list_ratings(cursor, rated_user_id: str, limit: int = 10, offset: int = 0):
    cursor.execute(
        "SELECT COUNT(*) AS total FROM ratings WHERE rated_user_id = %s",
        (rated_user_id,),
    )
    total = cursor.fetchone()["total"]

    cursor.execute(
        """
        SELECT * FROM ratings
        WHERE rated_user_id = %s
        ORDER BY created_at DESC
        LIMIT %s OFFSET %s
        """,
        (rated_user_id, limit, offset),
    )
    return total, cursor.fetchall()
