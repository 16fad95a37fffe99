# -*- coding: utf-8 -*-
"""
config.py
配置读取：代码内默认值 + ops/config.yml（按 section 浅合并）+ 环境变量密钥。
数据源列表在 ops/sources.yml。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[1]
OPS_DIR = ROOT / "ops"

DEFAULT_TOPICS = ["Defi", "DAOs", "ETH2.0", "Layer2", "Hackathons", "Jobs"]

DEFAULT_CFG: Dict[str, Dict[str, Any]] = {
    "monitor": {
        "enabled": True,
        "interval_sec": 600,
        "group_size": 3,          # 每组并发的数据源数
        "group_delay_sec": 1.0,   # 组间休眠
        "batch_size": 10,         # 每批并发分类条数
        "batch_delay_sec": 0.5,   # 批间休眠
        "lookback_hours": 24,     # 新数据源的首次回看窗口
    },
    "twitter": {
        "base_url": "https://api.twitterapi.io",
        "query_type": "Latest",
        "timeout_sec": 15.0,
    },
    "classifier": {
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "model": "gemini-1.5-flash",
        "temperature": 0.7,
        "max_tokens": 8192,
        "timeout_sec": 30.0,
        "topics": list(DEFAULT_TOPICS),
        "retry": {"max_times": 3, "backoff_sec": 2},
    },
    "storage": {
        "db_path": "tweets.db",
    },
    "server": {
        "host": "0.0.0.0",
        "port": 3000,
        "subscriber_queue_size": 100,
    },
}


def load_cfg(path: Optional[Union[str, Path]] = None) -> Dict[str, Dict[str, Any]]:
    """ops/config.yml 可选；不存在或读坏了就用默认。每个 section 做一层浅合并。"""
    cfg_path = Path(path) if path else OPS_DIR / "config.yml"
    out = {k: dict(v) for k, v in DEFAULT_CFG.items()}
    data: Dict[str, Any] = {}
    if cfg_path.exists():
        try:
            data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("[config] 读取 %s 失败，使用默认。err=%s", cfg_path, e)
            data = {}
    if not isinstance(data, dict):
        logger.warning("[config] %s 顶层不是 mapping，忽略", cfg_path)
        data = {}
    for section, values in data.items():
        if isinstance(values, dict):
            out[section] = {**out.get(section, {}), **values}

    model = os.environ.get("GEMINI_MODEL", "").strip()
    if model:
        out["classifier"]["model"] = model
    return out


def _clean_handle(s: str) -> str:
    return s.strip().lstrip("@").lower()


def parse_sources(entries: List[Any]) -> List[str]:
    """
    sources 条目可以是字符串，也可以是 {id, enabled}；
    去掉 @、转小写、保序去重、跳过 disabled。
    """
    out: List[str] = []
    for item in entries or []:
        if isinstance(item, dict):
            if not item.get("enabled", True):
                continue
            handle = _clean_handle(str(item.get("id") or ""))
        else:
            handle = _clean_handle(str(item or ""))
        if handle and handle not in out:
            out.append(handle)
    return out


def load_sources(path: Optional[Union[str, Path]] = None) -> List[str]:
    """读取 ops/sources.yml；文件不存在返回空列表。"""
    src_path = Path(path) if path else OPS_DIR / "sources.yml"
    try:
        with open(src_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("[config] 未找到 %s，数据源为空", src_path)
        return []
    entries = data.get("sources", []) if isinstance(data, dict) else data
    return parse_sources(entries)


def require_env(name: str) -> str:
    """启动时必须的密钥；缺失直接退出进程。"""
    value = os.environ.get(name, "").strip()
    if not value:
        raise SystemExit(f"[config] 缺少环境变量 {name}")
    return value
