"""
tweet_hub/server.py
FastAPI：
- GET  /api/tweets/health
- GET  /api/tweets?page=&limit=&topic=   分页列表（最新在前，topic 大小写不敏感）
- GET  /api/tweets/topics                 所有话题
- WS   /ws                                实时推送 {"event": "newTweet", "data": {...}}
lifespan 里打开数据库；传入 background 时作为后台任务一起启动（采集定时器）。
"""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

import aiosqlite
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse

from tweet_hub.notifier import Broadcaster
from tweet_hub.storage import MAX_PAGE_LIMIT, get_topics, get_tweets, init_db

logger = logging.getLogger(__name__)

Background = Callable[[aiosqlite.Connection, Broadcaster], Awaitable[Any]]


async def _pump(websocket: WebSocket, q: asyncio.Queue) -> None:
    while True:
        envelope = await q.get()
        await websocket.send_json(envelope)


async def _wait_disconnect(websocket: WebSocket) -> None:
    # 客户端发来的消息一律忽略，只关心断开
    while True:
        msg = await websocket.receive()
        if msg.get("type") == "websocket.disconnect":
            return


def _log_background_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("[server] 后台任务异常退出: %r", exc, exc_info=exc)


def create_app(
    db_path: Union[str, Path],
    broadcaster: Optional[Broadcaster] = None,
    background: Optional[Background] = None,
) -> FastAPI:
    broadcaster = broadcaster or Broadcaster()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = await init_db(db_path)
        app.state.db = db
        task = None
        if background is not None:
            task = asyncio.create_task(background(db, broadcaster))
            task.add_done_callback(_log_background_exit)
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            await db.close()
            logger.info("[server] 已关闭")

    app = FastAPI(title="tweet-hub", lifespan=lifespan)
    app.state.broadcaster = broadcaster

    @app.get("/api/tweets/health")
    async def health():
        return {"status": "OK", "message": "Tweet API is running"}

    @app.get("/api/tweets/topics")
    async def topics(request: Request):
        try:
            data = await get_topics(request.app.state.db)
        except Exception as e:
            logger.exception("[server] 查询话题失败")
            return JSONResponse(status_code=500, content={
                "success": False, "message": "Error fetching topics", "error": str(e),
            })
        return {"success": True, "message": f"Found {len(data)} unique topics", "data": data}

    @app.get("/api/tweets")
    async def tweets(request: Request, page: int = 1, limit: int = 20, topic: Optional[str] = None):
        try:
            rows, total = await get_tweets(request.app.state.db, page=page, limit=limit, topic=topic)
        except Exception as e:
            logger.exception("[server] 查询推文失败")
            return JSONResponse(status_code=500, content={
                "success": False, "message": "Error fetching tweets", "error": str(e),
            })
        page = max(1, page)
        limit = min(MAX_PAGE_LIMIT, max(1, limit))
        total_pages = math.ceil(total / limit) if total else 0
        return {
            "success": True,
            "message": f"Successfully fetched {len(rows)} tweets",
            "data": {
                "tweets": rows,
                "pagination": {
                    "currentPage": page,
                    "totalPages": total_pages,
                    "totalTweets": total,
                    "hasNextPage": page < total_pages,
                    "hasPrevPage": page > 1,
                },
            },
        }

    @app.websocket("/ws")
    async def ws_feed(websocket: WebSocket):
        # 先订阅再 accept：握手完成时一定已在订阅列表里
        q = broadcaster.subscribe()
        tasks = set()
        try:
            await websocket.accept()
            tasks = {
                asyncio.create_task(_pump(websocket, q)),
                asyncio.create_task(_wait_disconnect(websocket)),
            }
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for t in done:
                if not t.cancelled() and t.exception() is not None:
                    logger.debug("[server] websocket 结束: %r", t.exception())
        finally:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            broadcaster.unsubscribe(q)

    return app
