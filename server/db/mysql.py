# db/mysql.py - 连接池

#与mysql主连接

import logging
import os

import pymysql
from contextlib import contextmanager
from threading import Lock
from queue import Queue

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# 数据库配置（环境变量优先）
DB_CONFIG = {
    "host": os.environ.get("MARKET_DB_HOST", "localhost"),
    "port": int(os.environ.get("MARKET_DB_PORT", "3306")),
    "user": os.environ.get("MARKET_DB_USER", "root"),
    "password": os.environ.get("MARKET_DB_PASSWORD", "root"),
    "database": os.environ.get("MARKET_DB_NAME", "barter_market"),
    "charset": "utf8mb4",
    "cursorclass": pymysql.cursors.DictCursor,
    "autocommit": False,
}

POOL_SIZE = int(os.environ.get("MARKET_DB_POOL_SIZE", "10"))

# 连接池
connection_pool = None
pool_lock = Lock()


class ConnectionPool:
    def __init__(self, max_connections=POOL_SIZE, config=None):
        self.max_connections = max_connections
        self.config = config or DB_CONFIG
        self.pool = Queue(max_connections)
        self.current_connections = 0

    def get_connection(self):
        with pool_lock:
            if not self.pool.empty():
                return self.pool.get()
            elif self.current_connections < self.max_connections:
                self.current_connections += 1
                return self._create_connection()
            else:
                raise pymysql.err.OperationalError(2000, "Connection pool exhausted")

    def return_connection(self, conn):
        with pool_lock:
            self.pool.put(conn)

    def _create_connection(self):
        logger.info("新建数据库连接，当前连接数: %s", self.current_connections)
        return pymysql.connect(**self.config)


def init_connection_pool(max_connections=POOL_SIZE, config=None):
    global connection_pool
    connection_pool = ConnectionPool(max_connections, config)
    return connection_pool


def get_connection():
    """
    获取数据库连接（从连接池）
    """
    if connection_pool is None:
        # 初始化连接池
        init_connection_pool()

    return connection_pool.get_connection()


def close_connection(conn):
    """
    关闭数据库连接（放回连接池）
    """
    if connection_pool and conn:
        connection_pool.return_connection(conn)


@contextmanager
def get_cursor():
    """
    提供 cursor 的上下文管理器
    一个 cursor 对应一个事务：正常退出 commit，任何异常 rollback
    """
    conn = get_connection()
    cursor = None
    try:
        cursor = conn.cursor()
        yield cursor
        conn.commit()
    except Exception:
        logger.error("事务回滚")
        conn.rollback()
        raise
    finally:
        if cursor:
            cursor.close()
        close_connection(conn)
