from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from tweet_hub.models import RawTweet
from tweet_hub.parsers.twitter_json import parse_tweets
from tweet_hub.utils import format_query_time

logger = logging.getLogger(__name__)

SEARCH_PATH = "/twitter/tweet/advanced_search"


class FeedFetchError(Exception):
    """单个数据源拉取失败（网络 / 鉴权 / 响应解析）"""


def build_query(source_id: str, since_ms: int) -> str:
    return f"from:{source_id} since:{format_query_time(since_ms)}"


class TwitterSearchClient:
    """
    包装 twitterapi.io 的 advanced_search。
    每个实例复用一个 httpx.AsyncClient（懒创建），用完调用 close()。
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.twitterapi.io",
        *,
        query_type: str = "Latest",
        timeout_sec: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._query_type = query_type
        self._timeout = timeout_sec
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _client_get(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={"X-API-Key": self._api_key, "User-Agent": "tweet-hub/1.0"},
                transport=self._transport,
            )
        return self._client

    async def fetch(self, source_id: str, since_ms: int) -> List[RawTweet]:
        """
        拉取 source_id 在 since_ms 之后的推文（最新在前）。
        任何失败都包装成 FeedFetchError，由调用方决定按“0 条”处理。
        """
        params = {"query": build_query(source_id, since_ms), "queryType": self._query_type}
        try:
            resp = await self._client_get().get(SEARCH_PATH, params=params)
        except httpx.HTTPError as e:
            raise FeedFetchError(f"{source_id}: request failed: {e!r}") from e

        if resp.status_code != 200:
            raise FeedFetchError(f"{source_id}: status={resp.status_code} body={(resp.text or '')[:300]}")

        try:
            items = parse_tweets(resp.json())
        except ValueError as e:
            raise FeedFetchError(f"{source_id}: bad payload: {e}") from e

        logger.info("[collector] %s 拉取 %d 条 (query=%s)", source_id, len(items), params["query"])
        return items

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
