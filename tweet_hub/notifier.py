"""
tweet_hub/notifier.py
实时推送：每个在线订阅者一个有界 asyncio.Queue。
- publish 非阻塞（put_nowait），队列满则丢弃该订阅者这一条
- 单个订阅者出错不影响其他订阅者，也不影响采集流程
- 不回放、不确认；后连上的订阅者看不到之前的消息
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Set

from tweet_hub.models import TweetRecord

logger = logging.getLogger(__name__)

EVENT_NEW_TWEET = "newTweet"


def make_envelope(record: TweetRecord) -> Dict[str, Any]:
    return {"event": EVENT_NEW_TWEET, "data": record.to_dict()}


class Broadcaster:
    def __init__(self, queue_size: int = 100):
        self._queue_size = max(1, int(queue_size))
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(q)
        logger.info("[notifier] 订阅者 +1，当前 %d", len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        if q in self._subscribers:
            self._subscribers.discard(q)
            logger.info("[notifier] 订阅者 -1，当前 %d", len(self._subscribers))

    def publish(self, record: TweetRecord) -> int:
        """广播一条记录，返回成功投递的订阅者数"""
        envelope = make_envelope(record)
        delivered = 0
        for q in list(self._subscribers):
            try:
                q.put_nowait(envelope)
                delivered += 1
            except asyncio.QueueFull:
                logger.debug("[notifier] 订阅者队列已满，丢弃 %s", record.canonical_url)
            except Exception as e:
                logger.warning("[notifier] 投递失败: %r", e)
        return delivered
