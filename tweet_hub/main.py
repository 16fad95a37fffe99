# tweet_hub/main.py
# 串起：WatermarkStore + TwitterSearchClient + GeminiClassifier -> IngestionPipeline
# 定时器每 interval_sec 跑一轮；FastAPI 负责查询接口和 WebSocket 推送。

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite
import uvicorn
from dotenv import load_dotenv

from tweet_hub.classifier import GeminiClassifier
from tweet_hub.collector import TwitterSearchClient
from tweet_hub.config import DEFAULT_TOPICS, ROOT, load_cfg, load_sources, require_env
from tweet_hub.notifier import Broadcaster
from tweet_hub.pipeline import IngestionPipeline
from tweet_hub.server import create_app
from tweet_hub.storage import init_db
from tweet_hub.utils import setup_logging
from tweet_hub.watermark import WatermarkStore

logger = logging.getLogger(__name__)


def resolve_db_path(cfg: Dict[str, Any]) -> Path:
    p = Path(cfg["storage"]["db_path"])
    return p if p.is_absolute() else ROOT / p


def load_credentials() -> Tuple[str, str]:
    """缺任何一个密钥都直接退出进程"""
    return require_env("TWITTER_API_KEY"), require_env("GEMINI_API_KEY")


def build_pipeline(
    cfg: Dict[str, Any],
    db: aiosqlite.Connection,
    broadcaster: Optional[Broadcaster],
    sources: Sequence[str],
    credentials: Tuple[str, str],
) -> Tuple[IngestionPipeline, List[Any]]:
    """返回 (pipeline, 需要 close 的客户端)"""
    twitter_key, gemini_key = credentials
    mon, tw, cl = cfg["monitor"], cfg["twitter"], cfg["classifier"]

    fetcher = TwitterSearchClient(
        twitter_key,
        tw["base_url"],
        query_type=tw.get("query_type", "Latest"),
        timeout_sec=float(tw.get("timeout_sec", 15.0)),
    )
    classifier = GeminiClassifier(
        gemini_key,
        model=cl["model"],
        base_url=cl["base_url"],
        temperature=float(cl.get("temperature", 0.7)),
        max_tokens=int(cl.get("max_tokens", 8192)),
        timeout_sec=float(cl.get("timeout_sec", 30.0)),
        topics=cl.get("topics") or DEFAULT_TOPICS,
        retry=cl.get("retry"),
    )
    pipeline = IngestionPipeline(
        sources,
        WatermarkStore(db, lookback_hours=float(mon.get("lookback_hours", 24))),
        fetcher,
        classifier,
        db,
        broadcaster,
        group_size=int(mon.get("group_size", 3)),
        group_delay_sec=float(mon.get("group_delay_sec", 1.0)),
        batch_size=int(mon.get("batch_size", 10)),
        batch_delay_sec=float(mon.get("batch_delay_sec", 0.5)),
    )
    return pipeline, [fetcher, classifier]


async def run_monitor_loop(pipeline: IngestionPipeline, every_sec: float) -> None:
    """跑一轮、睡 every_sec、再跑；上一轮结束前不会开始下一轮。"""
    logger.info("[monitor] started, %d 个数据源，每 %ss 一轮", len(pipeline.sources), every_sec)
    try:
        while True:
            try:
                await pipeline.run_once()
            except Exception:
                logger.exception("[monitor] 本轮异常")
            await asyncio.sleep(every_sec)
    except asyncio.CancelledError:
        logger.info("[monitor] cancelled")
        raise
    finally:
        logger.info("[monitor] finished")


def make_monitor(cfg: Dict[str, Any], sources: Sequence[str], credentials: Tuple[str, str]):
    """给 server lifespan 用的后台任务"""

    async def monitor(db: aiosqlite.Connection, broadcaster: Broadcaster) -> None:
        pipeline, clients = build_pipeline(cfg, db, broadcaster, sources, credentials)
        try:
            await run_monitor_loop(pipeline, float(cfg["monitor"].get("interval_sec", 600)))
        finally:
            for c in clients:
                await c.close()

    return monitor


async def run_once(cfg: Dict[str, Any], sources: Sequence[str], credentials: Tuple[str, str]) -> int:
    db = await init_db(resolve_db_path(cfg))
    pipeline, clients = build_pipeline(cfg, db, None, sources, credentials)
    try:
        accepted = await pipeline.run_once()
    finally:
        for c in clients:
            await c.close()
        await db.close()
    return len(accepted)


def cli(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="tweet-hub monitor + API")
    parser.add_argument("--once", action="store_true", help="只跑一轮采集然后退出")
    parser.add_argument("--config", default=None, help="配置文件路径（默认 ops/config.yml）")
    parser.add_argument("--sources", default=None, help="数据源文件路径（默认 ops/sources.yml）")
    args = parser.parse_args(argv)

    load_dotenv()
    setup_logging()
    cfg = load_cfg(args.config)
    sources = load_sources(args.sources)

    if args.once:
        n = asyncio.run(run_once(cfg, sources, load_credentials()))
        print(f"[main] 本轮保留 {n} 条")
        return

    background = None
    if cfg["monitor"].get("enabled", True):
        background = make_monitor(cfg, sources, load_credentials())
    else:
        logger.info("[main] monitor disabled，只提供查询接口")

    srv = cfg["server"]
    app = create_app(
        resolve_db_path(cfg),
        Broadcaster(int(srv.get("subscriber_queue_size", 100))),
        background,
    )
    uvicorn.run(app, host=srv.get("host", "0.0.0.0"), port=int(srv.get("port", 3000)))


if __name__ == "__main__":
    cli()
