import asyncio

import httpx
import pytest

from helpers import tweet_json
from tweet_hub.collector import FeedFetchError, TwitterSearchClient, build_query
from tweet_hub.utils import format_query_time, parse_iso_ms


def test_query_time_format():
    assert format_query_time(parse_iso_ms("2024-03-05T07:08:09.000Z")) == "2024-03-05_07:08:09_UTC"
    assert format_query_time(parse_iso_ms("2024-12-31T23:59:59.999Z")) == "2024-12-31_23:59:59_UTC"


def test_build_query():
    since = parse_iso_ms("2024-03-05T07:08:09.000Z")
    assert build_query("alice", since) == "from:alice since:2024-03-05_07:08:09_UTC"


def _run_fetch(handler, source="alice", since_iso="2024-03-05T07:08:09.000Z"):
    async def main():
        client = TwitterSearchClient("k-123", "https://api.example.test", transport=httpx.MockTransport(handler))
        try:
            return await client.fetch(source, parse_iso_ms(since_iso))
        finally:
            await client.close()

    return asyncio.run(main())


def test_fetch_sends_query_and_parses_tweets():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["query"] = request.url.params.get("query")
        seen["queryType"] = request.url.params.get("queryType")
        seen["key"] = request.headers.get("X-API-Key")
        return httpx.Response(200, json={"tweets": [tweet_json("2"), tweet_json("1")]})

    items = _run_fetch(handler)
    assert [t.id for t in items] == ["2", "1"]
    assert seen == {
        "path": "/twitter/tweet/advanced_search",
        "query": "from:alice since:2024-03-05_07:08:09_UTC",
        "queryType": "Latest",
        "key": "k-123",
    }


def test_fetch_non_200_raises():
    with pytest.raises(FeedFetchError):
        _run_fetch(lambda req: httpx.Response(401, json={"error": "unauthorized"}))


def test_fetch_bad_json_raises():
    with pytest.raises(FeedFetchError):
        _run_fetch(lambda req: httpx.Response(200, text="<html>nope</html>"))


def test_fetch_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(FeedFetchError):
        _run_fetch(handler)
