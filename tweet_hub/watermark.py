# -*- coding: utf-8 -*-
"""
watermark.py
每个数据源的“已扫描到”时间（UTC毫秒），存 last_checked 表。
- get：没有就按 now - lookback 建一条；读库失败时返回同样的兜底值但不落库
- advance：upsert，只前进不后退；失败只记日志
- 进程内缓存按 source_id 分片，advance 时同步更新，可手动 invalidate
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Dict, Optional

import aiosqlite

from tweet_hub.utils import now_ms

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_HOURS = 24


class WatermarkStore:
    def __init__(self, db: aiosqlite.Connection, lookback_hours: float = DEFAULT_LOOKBACK_HOURS):
        self._db = db
        self._lookback_ms = int(lookback_hours * 3600 * 1000)
        self._cache: Dict[str, int] = {}

    def _default_ms(self) -> int:
        return now_ms() - self._lookback_ms

    async def get(self, source_id: str) -> int:
        cached = self._cache.get(source_id)
        if cached is not None:
            return cached

        fallback = self._default_ms()
        try:
            # 不存在才插入；存在则保持原值
            await self._db.execute(
                "INSERT OR IGNORE INTO last_checked(source_id, last_checked_ms, updated_at_ms) VALUES(?,?,?);",
                (source_id, fallback, now_ms()),
            )
            await self._db.commit()
            async with self._db.execute(
                "SELECT last_checked_ms FROM last_checked WHERE source_id=?;", (source_id,)
            ) as cur:
                row = await cur.fetchone()
        except (sqlite3.Error, ValueError) as e:
            logger.warning("[watermark] 读取 %s 失败，使用兜底 now-%dh: %r",
                           source_id, self._lookback_ms // 3600_000, e)
            return fallback

        value = int(row[0]) if row else fallback
        self._cache[source_id] = value
        return value

    async def advance(self, source_id: str, ts_ms: int) -> None:
        """只前进：库里已有更大的值则保留。"""
        sql = """
        INSERT INTO last_checked(source_id, last_checked_ms, updated_at_ms) VALUES(?,?,?)
        ON CONFLICT(source_id) DO UPDATE SET
            last_checked_ms = MAX(last_checked.last_checked_ms, excluded.last_checked_ms),
            updated_at_ms   = excluded.updated_at_ms
        """
        try:
            await self._db.execute(sql, (source_id, int(ts_ms), now_ms()))
            await self._db.commit()
        except (sqlite3.Error, ValueError) as e:
            logger.error("[watermark] 更新 %s 失败: %r", source_id, e)
            self._cache.pop(source_id, None)
            return

        prev = self._cache.get(source_id)
        if prev is None:
            # 库里可能已有更大的值，下次 get 再读
            return
        self._cache[source_id] = max(prev, int(ts_ms))

    def invalidate(self, source_id: Optional[str] = None) -> None:
        """清缓存；不传 source_id 则全部清掉"""
        if source_id is None:
            self._cache.clear()
        else:
            self._cache.pop(source_id, None)
