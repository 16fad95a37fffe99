import asyncio
import logging

from fastapi.testclient import TestClient

from helpers import make_record
from tweet_hub.notifier import Broadcaster
from tweet_hub.server import create_app
from tweet_hub.storage import bulk_insert_tweets, init_db


def _seed(db_path, records):
    async def main():
        db = await init_db(db_path)
        try:
            await bulk_insert_tweets(db, records)
        finally:
            await db.close()

    asyncio.run(main())


def test_health(db_path):
    with TestClient(create_app(db_path)) as client:
        r = client.get("/api/tweets/health")
    assert r.status_code == 200
    assert r.json()["status"] == "OK"


def test_list_tweets_with_topic_and_pagination(db_path):
    _seed(db_path, [
        make_record("https://x.com/a/status/1", "1", ["Defi"], inserted_at=1),
        make_record("https://x.com/a/status/2", "2", ["DAOs"], inserted_at=2),
        make_record("https://x.com/a/status/3", "3", ["Defi", "Jobs"], inserted_at=3),
    ])
    with TestClient(create_app(db_path)) as client:
        r = client.get("/api/tweets", params={"topic": "DEFI", "limit": 1, "page": 1})
        all_r = client.get("/api/tweets", params={"topic": "all"})
        topics = client.get("/api/tweets/topics")

    body = r.json()
    assert body["success"] is True
    assert [t["external_id"] for t in body["data"]["tweets"]] == ["3"]
    assert body["data"]["pagination"] == {
        "currentPage": 1,
        "totalPages": 2,
        "totalTweets": 2,
        "hasNextPage": True,
        "hasPrevPage": False,
    }
    assert all_r.json()["data"]["pagination"]["totalTweets"] == 3
    assert topics.json()["data"] == ["DAOs", "Defi", "Jobs"]


def test_websocket_receives_published_records(db_path):
    rec = make_record("https://x.com/a/status/9", "9", ["Layer2"])

    async def publish_when_subscribed(db, broadcaster):
        while broadcaster.subscriber_count == 0:
            await asyncio.sleep(0.01)
        broadcaster.publish(rec)
        await asyncio.sleep(3600)

    broadcaster = Broadcaster()
    app = create_app(db_path, broadcaster, background=publish_when_subscribed)
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            msg = ws.receive_json()
    assert msg["event"] == "newTweet"
    assert msg["data"]["external_id"] == "9"
    assert msg["data"]["topics"] == ["Layer2"]


def test_background_task_runs_with_app_lifespan(db_path):
    started = []

    async def background(db, broadcaster):
        started.append((db is not None, broadcaster is not None))
        await asyncio.sleep(3600)

    with TestClient(create_app(db_path, background=background)) as client:
        client.get("/api/tweets/health")
    assert started == [(True, True)]


def test_background_task_failure_is_logged(db_path, caplog):
    async def background(db, broadcaster):
        raise RuntimeError("missing api key")

    with caplog.at_level(logging.ERROR, logger="tweet_hub.server"):
        with TestClient(create_app(db_path, background=background)) as client:
            assert client.get("/api/tweets/health").status_code == 200
    assert any("后台任务异常退出" in r.getMessage() for r in caplog.records)
