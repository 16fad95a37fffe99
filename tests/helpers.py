"""测试共用：推文样例、假 fetcher / classifier"""

import asyncio
from typing import Dict, List, Optional

from tweet_hub.collector import FeedFetchError
from tweet_hub.models import ClassificationResult, RawTweet, TweetRecord


def tweet_json(
    tid: Optional[str],
    text: str = "gm ethereum",
    user: str = "Alice",
    url: Optional[str] = None,
    media: Optional[List[Dict[str, str]]] = None,
) -> Dict:
    """twitterapi.io 风格的单条推文"""
    d = {
        "id": tid,
        "text": text,
        "url": url if url is not None else f"https://x.com/{user.lower()}/status/{tid}",
        "twitterUrl": url if url is not None else f"https://twitter.com/{user.lower()}/status/{tid}",
        "createdAt": "Tue Mar 05 07:08:09 +0000 2024",
        "likeCount": 3,
        "author": {
            "name": user,
            "userName": user,
            "isBlueVerified": False,
            "isVerified": True,
            "verifiedType": "",
            "profilePicture": f"https://pbs.twimg.com/{user}.jpg",
        },
    }
    if media:
        d["extendedEntities"] = {"media": media}
    return d


def make_record(url: str, external_id: Optional[str] = None, topics=None, inserted_at: int = 0) -> TweetRecord:
    return TweetRecord(
        external_id=external_id,
        text=f"text for {url}",
        author_display_name="Alice",
        author_handle="alice",
        author_verified=True,
        author_verification_kind="",
        author_avatar_url="https://pbs.twimg.com/a.jpg",
        canonical_url=url,
        topics=list(topics or []),
        published_at="Tue Mar 05 07:08:09 +0000 2024",
        inserted_at=inserted_at,
    )


class FakeFetcher:
    """按 source 返回预设推文；failing 里的 source 抛 FeedFetchError"""

    def __init__(self, by_source: Dict[str, List[Dict]], failing=()):
        self.by_source = by_source
        self.failing = set(failing)
        self.calls: List[tuple] = []

    async def fetch(self, source_id: str, since_ms: int) -> List[RawTweet]:
        self.calls.append((source_id, since_ms))
        await asyncio.sleep(0)
        if source_id in self.failing:
            raise FeedFetchError(f"{source_id}: boom")
        return [RawTweet.from_dict(d) for d in self.by_source.get(source_id, [])]


class FakeClassifier:
    """按正文返回预设结果；结果是异常实例则抛出"""

    def __init__(self, by_text: Dict[str, object], default: Optional[ClassificationResult] = None):
        self.by_text = by_text
        self.default = default or ClassificationResult("neutral", [], "low", "")
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def classify(self, text: str) -> ClassificationResult:
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            res = self.by_text.get(text, self.default)
            if isinstance(res, Exception):
                raise res
            return res
        finally:
            self.in_flight -= 1

