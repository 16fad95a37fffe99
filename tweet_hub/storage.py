# -*- coding: utf-8 -*-
"""
tweet_hub/storage.py
SQLite（aiosqlite）持久化：
- 初始化/建表（tweets + last_checked）
- 批量写入（重复 URL / external_id 直接跳过，先写者为准，不做更新）
- 分页查询、按话题过滤、话题去重列表（给 server.py 用）
字段对齐 tweet_hub.models.TweetRecord。
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import aiosqlite

from tweet_hub.models import TweetRecord
from tweet_hub.utils import now_ms

logger = logging.getLogger(__name__)


# --------- 建表 SQL ---------
SCHEMA_TWEETS = """
CREATE TABLE IF NOT EXISTS tweets (
    id                        INTEGER PRIMARY KEY AUTOINCREMENT,
    external_id               TEXT UNIQUE,
    text                      TEXT NOT NULL,
    author_display_name       TEXT NOT NULL DEFAULT '',
    author_handle             TEXT NOT NULL DEFAULT '',
    author_verified           INTEGER NOT NULL DEFAULT 0,
    author_verification_kind  TEXT NOT NULL DEFAULT '',
    author_avatar_url         TEXT NOT NULL DEFAULT '',
    canonical_url             TEXT NOT NULL UNIQUE,
    media_preview_url         TEXT,
    media_kind                TEXT NOT NULL DEFAULT 'none',
    topics                    TEXT NOT NULL DEFAULT '[]',
    published_at              TEXT NOT NULL DEFAULT '',
    inserted_at_utc           INTEGER NOT NULL
);
"""

SCHEMA_LAST_CHECKED = """
CREATE TABLE IF NOT EXISTS last_checked (
    source_id        TEXT PRIMARY KEY,
    last_checked_ms  INTEGER NOT NULL,
    updated_at_ms    INTEGER NOT NULL
);
"""

SCHEMA_IDX = """
CREATE INDEX IF NOT EXISTS idx_tweets_inserted ON tweets(inserted_at_utc DESC);
CREATE INDEX IF NOT EXISTS idx_tweets_handle   ON tweets(author_handle);
CREATE INDEX IF NOT EXISTS idx_last_checked_at ON last_checked(last_checked_ms DESC);
"""

_COLUMNS = (
    "external_id", "text", "author_display_name", "author_handle", "author_verified",
    "author_verification_kind", "author_avatar_url", "canonical_url", "media_preview_url",
    "media_kind", "topics", "published_at", "inserted_at_utc",
)

MAX_PAGE_LIMIT = 100


# --------- 初始化 ---------
async def init_db(db_path: Union[str, Path]) -> aiosqlite.Connection:
    """初始化数据库并返回连接。"""
    p = Path(db_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(p))
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute(SCHEMA_TWEETS)
    await db.execute(SCHEMA_LAST_CHECKED)
    for stmt in filter(None, SCHEMA_IDX.split(";")):
        s = stmt.strip()
        if s:
            await db.execute(s + ";")
    await db.commit()
    return db


def _record_params(rec: TweetRecord) -> Tuple[Any, ...]:
    return (
        rec.external_id or None,
        rec.text,
        rec.author_display_name or "",
        rec.author_handle or "",
        1 if rec.author_verified else 0,
        rec.author_verification_kind or "",
        rec.author_avatar_url or "",
        rec.canonical_url,
        rec.media_preview_url or None,
        rec.media_kind or "none",
        json.dumps(list(rec.topics or []), ensure_ascii=False),
        rec.published_at or "",
        int(rec.inserted_at or 0) or now_ms(),
    )


# --------- 批量写入（幂等：冲突即跳过） ---------
async def bulk_insert_tweets(db: aiosqlite.Connection, records: Iterable[TweetRecord]) -> Dict[str, int]:
    """
    一个事务内逐条 INSERT，互不影响：
    - 唯一键冲突（canonical_url / external_id）= 重复，静默计数
    - 其他单条错误记日志并计数
    整个调用不抛异常，返回 {"inserted", "duplicates", "failed"}。
    """
    stats = {"inserted": 0, "duplicates": 0, "failed": 0}
    sql = f"INSERT INTO tweets({', '.join(_COLUMNS)}) VALUES({', '.join('?' * len(_COLUMNS))})"

    for rec in records:
        try:
            await db.execute(sql, _record_params(rec))
            stats["inserted"] += 1
        except sqlite3.IntegrityError:
            stats["duplicates"] += 1
        except (sqlite3.Error, TypeError, ValueError) as e:
            stats["failed"] += 1
            logger.error("[storage] 写入失败 url=%s err=%r", rec.canonical_url, e)

    try:
        await db.commit()
    except (sqlite3.Error, ValueError) as e:
        logger.error("[storage] 批量提交失败，本批 %d 条丢失: %r", stats["inserted"], e)
        stats["failed"] += stats["inserted"]
        stats["inserted"] = 0
    return stats


# --------- 查询 ---------
def _row_to_dict(row: Tuple[Any, ...]) -> Dict[str, Any]:
    d = dict(zip(("id",) + _COLUMNS, row))
    try:
        topics = json.loads(d["topics"] or "[]")
    except ValueError:
        topics = []
    return {
        "id": d["id"],
        "external_id": d["external_id"],
        "text": d["text"],
        "author_display_name": d["author_display_name"],
        "author_handle": d["author_handle"],
        "author_verified": bool(d["author_verified"]),
        "author_verification_kind": d["author_verification_kind"],
        "author_avatar_url": d["author_avatar_url"],
        "canonical_url": d["canonical_url"],
        "media_preview_url": d["media_preview_url"],
        "media_kind": d["media_kind"],
        "topics": topics,
        "published_at": d["published_at"],
        "inserted_at": d["inserted_at_utc"],
    }


def _topic_filter(topic: Optional[str]) -> Tuple[str, List[Any]]:
    t = (topic or "").strip()
    if not t or t.lower() == "all":
        return "", []
    # 数组元素大小写不敏感的精确匹配
    clause = (
        " WHERE EXISTS (SELECT 1 FROM json_each(tweets.topics) AS tp"
        " WHERE lower(tp.value) = lower(?))"
    )
    return clause, [t]


async def get_tweets(
    db: aiosqlite.Connection,
    *,
    page: int = 1,
    limit: int = 20,
    topic: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    最新在前分页查询，返回 (rows, total)。
    page 从 1 开始；limit 限制在 [1, 100]。
    """
    page = max(1, int(page or 1))
    limit = min(MAX_PAGE_LIMIT, max(1, int(limit or 20)))
    where, params = _topic_filter(topic)

    async with db.execute(f"SELECT COUNT(*) FROM tweets{where};", params) as cur:
        row = await cur.fetchone()
    total = int(row[0]) if row else 0

    sql = (
        f"SELECT id, {', '.join(_COLUMNS)} FROM tweets{where}"
        " ORDER BY inserted_at_utc DESC, id DESC LIMIT ? OFFSET ?;"
    )
    out: List[Dict[str, Any]] = []
    async with db.execute(sql, params + [limit, (page - 1) * limit]) as cur:
        async for r in cur:
            out.append(_row_to_dict(r))
    return out, total


async def get_topics(db: aiosqlite.Connection) -> List[str]:
    """所有出现过的话题标签（去重、排序）"""
    sql = "SELECT DISTINCT tp.value FROM tweets, json_each(tweets.topics) AS tp;"
    topics: List[str] = []
    async with db.execute(sql) as cur:
        async for r in cur:
            if r[0]:
                topics.append(str(r[0]))
    return sorted(set(topics))
