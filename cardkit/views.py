"""
文章浏览量计数

每个 slug 一个计数器，支持两种后端：
  - Redis（配置了 redis_url / $REDIS_URL 时）：key 为 views:{slug}，GET / INCR
  - SQLite（默认）：views 表，自增用单条 UPSERT 保证原子性
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Protocol

import redis

log = logging.getLogger("cardkit.views")

KEY_PREFIX = "views:"


class ViewStore(Protocol):
    def get(self, slug: str) -> int: ...

    def incr(self, slug: str) -> int: ...


def _check_slug(slug: str) -> str:
    if not slug:
        raise ValueError("slug is required")
    return slug


class RedisViewStore:
    def __init__(self, url: str = None, client=None):
        self.client = client if client is not None else redis.Redis.from_url(url)

    @staticmethod
    def key(slug: str) -> str:
        return f"{KEY_PREFIX}{slug}"

    def get(self, slug: str) -> int:
        value = self.client.get(self.key(_check_slug(slug)))
        return int(value) if value else 0

    def incr(self, slug: str) -> int:
        return int(self.client.incr(self.key(_check_slug(slug))))

    def close(self):
        self.client.close()


SCHEMA = """
CREATE TABLE IF NOT EXISTS views (
    slug TEXT PRIMARY KEY,
    count INTEGER NOT NULL DEFAULT 0
)
"""


class SqliteViewStore:
    def __init__(self, path):
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        # 多线程 server 共享一个连接，写操作加锁
        self.conn = sqlite3.connect(str(path), check_same_thread=False)
        self.conn.execute(SCHEMA)
        self.conn.commit()
        self._lock = threading.Lock()

    def get(self, slug: str) -> int:
        _check_slug(slug)
        with self._lock:
            row = self.conn.execute("SELECT count FROM views WHERE slug = ?", (slug,)).fetchone()
        return int(row[0]) if row else 0

    def incr(self, slug: str) -> int:
        _check_slug(slug)
        with self._lock, self.conn:
            self.conn.execute(
                "INSERT INTO views (slug, count) VALUES (?, 1) "
                "ON CONFLICT(slug) DO UPDATE SET count = count + 1",
                (slug,),
            )
            row = self.conn.execute("SELECT count FROM views WHERE slug = ?", (slug,)).fetchone()
        return int(row[0])

    def close(self):
        self.conn.close()


def open_store(config: dict):
    """按配置选择后端：有 redis_url 用 Redis，否则 SQLite"""
    url = config.get("redis_url")
    if url:
        log.info("浏览量后端: Redis")
        return RedisViewStore(url)
    path = config.get("views_db") or "data/views.db"
    log.info(f"浏览量后端: SQLite ({path})")
    return SqliteViewStore(path)
