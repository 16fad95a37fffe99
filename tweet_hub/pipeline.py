# -*- coding: utf-8 -*-
"""
tweet_hub/pipeline.py
一轮采集（pass）：
    数据源分组并发 -> 每个源：读水位 -> 拉取 -> 规范化 -> 分批并发分类 -> 过滤 -> 推送
    -> 推进水位；全部源结束后统一批量入库。

失败范围尽量小：
- 拉取失败：该源 0 条，水位不动（下轮重扫同一窗口）
- 单条分类失败：只丢这一条，不影响同批其他条，也不影响水位推进
- 入库失败：只记日志（水位已推进，这部分本轮丢失）
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from tweet_hub.classifier import ClassificationError
from tweet_hub.collector import FeedFetchError
from tweet_hub.models import TweetRecord
from tweet_hub.notifier import Broadcaster
from tweet_hub.parsers.twitter_json import normalize
from tweet_hub.scorer import accept
from tweet_hub.storage import bulk_insert_tweets
from tweet_hub.utils import now_ms
from tweet_hub.watermark import WatermarkStore

logger = logging.getLogger(__name__)

DEFAULT_GROUP_SIZE = 3
DEFAULT_GROUP_DELAY_SEC = 1.0
DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_DELAY_SEC = 0.5


def _chunks(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class IngestionPipeline:
    """
    fetcher 需要 `await fetch(source_id, since_ms) -> List[RawTweet]`，
    classifier 需要 `await classify(text) -> ClassificationResult`。
    同一时刻只应有一轮在跑，由外部触发器保证。
    """

    def __init__(
        self,
        sources: Sequence[str],
        watermarks: WatermarkStore,
        fetcher: Any,
        classifier: Any,
        db: aiosqlite.Connection,
        broadcaster: Optional[Broadcaster] = None,
        *,
        group_size: int = DEFAULT_GROUP_SIZE,
        group_delay_sec: float = DEFAULT_GROUP_DELAY_SEC,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_sec: float = DEFAULT_BATCH_DELAY_SEC,
    ):
        self._sources = list(sources)
        self._watermarks = watermarks
        self._fetcher = fetcher
        self._classifier = classifier
        self._db = db
        self._broadcaster = broadcaster
        self._group_size = max(1, int(group_size))
        self._group_delay = max(0.0, float(group_delay_sec))
        self._batch_size = max(1, int(batch_size))
        self._batch_delay = max(0.0, float(batch_delay_sec))
        self._stats: Dict[str, int] = {}
        self.last_stats: Dict[str, int] = {}

    @property
    def sources(self) -> List[str]:
        return list(self._sources)

    async def run_once(self) -> List[TweetRecord]:
        """跑一轮，返回本轮被保留的记录（已推送过）"""
        started = now_ms()
        self._stats = {"sources": 0, "fetch_failed": 0, "source_failed": 0, "fetched": 0, "accepted": 0,
                       "inserted": 0, "duplicates": 0, "failed": 0}
        if not self._sources:
            logger.info("[pipeline] 数据源为空，跳过本轮")
            self.last_stats = self._stats
            return []

        accepted: List[TweetRecord] = []
        groups = _chunks(self._sources, self._group_size)
        for idx, group in enumerate(groups):
            results = await asyncio.gather(*(self._process_source(s) for s in group))
            for recs in results:
                accepted.extend(recs)
            if idx < len(groups) - 1 and self._group_delay > 0:
                await asyncio.sleep(self._group_delay)

        if accepted:
            res = await bulk_insert_tweets(self._db, accepted)
            for k in ("inserted", "duplicates", "failed"):
                self._stats[k] = res[k]

        self._stats["accepted"] = len(accepted)
        self.last_stats = self._stats
        logger.info(
            "[pipeline] 本轮完成 %.1fs sources=%d fetch_failed=%d source_failed=%d fetched=%d "
            "accepted=%d inserted=%d duplicates=%d failed=%d",
            (now_ms() - started) / 1000.0, self._stats["sources"], self._stats["fetch_failed"],
            self._stats["source_failed"], self._stats["fetched"], self._stats["accepted"],
            self._stats["inserted"], self._stats["duplicates"], self._stats["failed"],
        )
        return accepted

    async def _process_source(self, source_id: str) -> List[TweetRecord]:
        self._stats["sources"] += 1
        try:
            return await self._run_source(source_id)
        except Exception:
            # 水位未推进，下轮重扫同一窗口
            self._stats["source_failed"] += 1
            logger.exception("[pipeline] %s 处理异常，本轮放弃该源", source_id)
            return []

    def _to_candidate(self, source_id: str, raw: Any) -> Optional[TweetRecord]:
        try:
            rec = normalize(raw)
            if not rec.canonical_url or not rec.text.strip():
                logger.debug("[pipeline] %s 跳过缺 url/正文 的条目 id=%s", source_id, rec.external_id)
                return None
        except Exception:
            logger.exception("[pipeline] %s 条目规范化失败，丢弃 id=%s", source_id, getattr(raw, "id", None))
            return None
        return rec

    async def _run_source(self, source_id: str) -> List[TweetRecord]:
        since_ms = await self._watermarks.get(source_id)
        checked_at = now_ms()

        try:
            raws = await self._fetcher.fetch(source_id, since_ms)
        except FeedFetchError as e:
            self._stats["fetch_failed"] += 1
            logger.warning("[pipeline] %s 拉取失败，本轮 0 条，水位不变: %s", source_id, e)
            return []
        except Exception:
            self._stats["fetch_failed"] += 1
            logger.exception("[pipeline] %s 拉取异常，本轮 0 条，水位不变", source_id)
            return []

        self._stats["fetched"] += len(raws)
        candidates: List[TweetRecord] = []
        for raw in raws:
            rec = self._to_candidate(source_id, raw)
            if rec is not None:
                candidates.append(rec)

        kept: List[TweetRecord] = []
        batches = _chunks(candidates, self._batch_size)
        for idx, batch in enumerate(batches):
            results = await asyncio.gather(*(self._classify_candidate(source_id, c) for c in batch))
            kept.extend(r for r in results if r is not None)
            if idx < len(batches) - 1 and self._batch_delay > 0:
                await asyncio.sleep(self._batch_delay)

        # 不管保留了几条都推进，避免重复扫描同一窗口
        await self._watermarks.advance(source_id, checked_at)
        if candidates:
            logger.info("[pipeline] %s 候选 %d 条，保留 %d 条", source_id, len(candidates), len(kept))
        return kept

    async def _classify_candidate(self, source_id: str, rec: TweetRecord) -> Optional[TweetRecord]:
        try:
            result = await self._classifier.classify(rec.text)
        except ClassificationError as e:
            logger.warning("[pipeline] %s 分类失败，丢弃 %s: %s", source_id, rec.canonical_url, e)
            return None
        except Exception:
            logger.exception("[pipeline] %s 分类异常，丢弃 %s", source_id, rec.canonical_url)
            return None

        try:
            if not accept(result):
                return None
            rec.topics = list(result.topics)
        except Exception:
            logger.exception("[pipeline] %s 分类结果异常，丢弃 %s", source_id, rec.canonical_url)
            return None

        rec.inserted_at = now_ms()
        if self._broadcaster is not None:
            try:
                self._broadcaster.publish(rec)
            except Exception:
                logger.exception("[pipeline] 推送异常 %s", rec.canonical_url)
        return rec
