# 工具模块
# - 时间戳换算（UTC 毫秒 <-> ISO / 搜索接口时间格式）
# - 字段回退取值
# - 日志初始化

import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Optional


def now_ms() -> int:
    """
    获取当前时间的UTC毫秒时间戳

    返回:
        当前时间的毫秒时间戳
    """
    return int(time.time() * 1000)


def parse_iso_ms(s: str) -> int:
    """
    ISO8601 字符串 -> UTC 毫秒，例如 '2024-03-05T07:08:09.000Z'
    不带时区的按 UTC 处理。
    """
    text = (s or "").strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def format_query_time(ms: int) -> str:
    """
    搜索接口要求的时间格式：YYYY-MM-DD_HH:MM:SS_UTC（补零，秒以下截断）
    """
    dt = datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d_%H:%M:%S_UTC")


def first_non_empty(*values: Any, default: Any = "") -> Any:
    """按顺序返回第一个“非空”值（None / "" / False 视为空）"""
    for v in values:
        if v:
            return v
    return default


def setup_logging(level: Optional[str] = None) -> None:
    """进程启动时调用一次；级别默认读 LOG_LEVEL"""
    lvl = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, lvl, logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
