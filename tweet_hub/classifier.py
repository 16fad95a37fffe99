"""
tweet_hub/classifier.py
分类网关：把推文正文交给 Gemini，要求输出固定结构的 JSON：
    {"sentiment": "...", "topics": [...], "impact": "...", "summary": "..."}
- 去掉 ``` 代码块包裹后解析；失败则截取第一个完整的 {...} 再解析
- 轻度修正：大小写、字符串 topics、话题对齐到允许列表、缺失 summary
- 429/5xx/网络抖动按退避重试；其他 4xx 直接失败
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from typing import Any, Dict, List, Optional, Sequence

import httpx

from tweet_hub.config import DEFAULT_TOPICS
from tweet_hub.models import IMPACTS, SENTIMENTS, ClassificationResult

logger = logging.getLogger(__name__)


class ClassificationError(Exception):
    """单条分类失败；调用方丢弃该条即可"""


class ClassifierRequestError(ClassificationError):
    """请求分类接口失败（重试耗尽 / 非可重试的 4xx）"""


class ClassificationParseError(ClassificationError):
    """返回内容不是合法的分类 JSON"""


PROMPT_TEMPLATE = (
    "You are an AI that professionally analyzes tweets, specifically focusing on their "
    "relevance to the Ethereum/cryptocurrency community. For each tweet provided, analyze "
    "whether it pertains to the Ethereum/cryptocurrency community, determine its sentiment, "
    "identify which topics it closely aligns with from the list [{topics}], assess its impact, "
    "and provide a brief summary. Format your response as pure JSON (not Markdown JSON) with "
    "the following structure:\n\n"
    "{{\n"
    '  "sentiment": "positive|negative|neutral",\n'
    '  "topics": [],\n'
    '  "impact": "high|medium|low",\n'
    '  "summary": "brief summary here"\n'
    "}}\n\n"
    "Tweet to analyze: '{text}'"
)

_FENCE_OPEN_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*\s*")
_FENCE_CLOSE_RE = re.compile(r"\s*```\s*$")


def build_prompt(text: str, topics: Sequence[str] = DEFAULT_TOPICS) -> str:
    tags = ", ".join(f"'{t}'" for t in topics)
    return PROMPT_TEMPLATE.format(topics=tags, text=text)


def strip_code_fence(raw: str) -> str:
    cleaned = _FENCE_OPEN_RE.sub("", raw or "", count=1)
    cleaned = _FENCE_CLOSE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def first_json_object(text: str) -> Optional[str]:
    """返回第一个括号配平的 {...} 子串（忽略字符串里的括号）；没有则 None"""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_str = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_str:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_str = False
                continue
            if ch == '"':
                in_str = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # 这个 { 没配平，换下一个起点
        start = text.find("{", start + 1)
    return None


def _canonical_topics(value: Any, allowed: Sequence[str]) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ClassificationParseError(f"topics must be a list, got {type(value).__name__}")
    lookup = {t.lower(): t for t in allowed}
    out: List[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        tag = lookup.get(item.strip().lower())
        if tag and tag not in out:
            out.append(tag)
    return out


def _enum_field(data: Dict[str, Any], key: str, allowed: Sequence[str]) -> str:
    v = data.get(key)
    v = v.strip().lower() if isinstance(v, str) else ""
    if v not in allowed:
        raise ClassificationParseError(f"{key}={data.get(key)!r} not in {list(allowed)}")
    return v


def parse_classification(raw: str, allowed_topics: Sequence[str] = DEFAULT_TOPICS) -> ClassificationResult:
    """模型原始输出 -> ClassificationResult；解析不了抛 ClassificationParseError"""
    cleaned = strip_code_fence(raw)
    try:
        data = json.loads(cleaned)
    except ValueError:
        candidate = first_json_object(raw or "")
        if candidate is None:
            raise ClassificationParseError(f"no JSON object in response: {(raw or '')[:200]!r}")
        try:
            data = json.loads(candidate)
        except ValueError as e:
            raise ClassificationParseError(f"invalid JSON object: {e}") from e

    if not isinstance(data, dict):
        raise ClassificationParseError(f"expected JSON object, got {type(data).__name__}")

    summary = data.get("summary")
    return ClassificationResult(
        sentiment=_enum_field(data, "sentiment", SENTIMENTS),
        topics=_canonical_topics(data.get("topics", []), allowed_topics),
        impact=_enum_field(data, "impact", IMPACTS),
        summary=summary.strip() if isinstance(summary, str) else "",
    )


def _response_text(payload: Dict[str, Any]) -> str:
    candidates = payload.get("candidates") or []
    if not candidates:
        raise ClassificationParseError(f"no candidates in response: {str(payload)[:200]}")
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


class GeminiClassifier:
    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        temperature: float = 0.7,
        max_tokens: int = 8192,
        timeout_sec: float = 30.0,
        topics: Sequence[str] = DEFAULT_TOPICS,
        retry: Optional[Dict[str, int]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout_sec
        self._topics = list(topics)
        self._retry = retry or {"max_times": 3, "backoff_sec": 2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _client_get(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"x-goog-api-key": self._api_key},
                transport=self._transport,
            )
        return self._client

    async def generate(self, prompt: str) -> str:
        """
        调用 generateContent，返回拼接后的文本。
        429/5xx/网络异常：指数退避 + 抖动（优先用 Retry-After，上限 30s）。
        """
        url = f"{self._base_url}/models/{self._model}:generateContent"
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._temperature,
                "maxOutputTokens": self._max_tokens,
            },
        }
        max_times = max(1, int(self._retry.get("max_times", 3)))
        backoff = float(self._retry.get("backoff_sec", 2))
        last_err = None

        for attempt in range(1, max_times + 1):
            try:
                r = await self._client_get().post(url, json=body)
            except httpx.HTTPError as e:
                last_err = repr(e)
            else:
                if r.status_code == 200:
                    try:
                        return _response_text(r.json())
                    except ValueError as e:
                        raise ClassificationParseError(f"response is not JSON: {e}") from e

                if r.status_code != 429 and not 500 <= r.status_code < 600:
                    raise ClassifierRequestError(f"http {r.status_code}: {(r.text or '')[:300]}")

                last_err = f"http {r.status_code}"
                retry_after = r.headers.get("retry-after", "")
                if attempt < max_times and retry_after.isdigit():
                    await asyncio.sleep(min(int(retry_after), 30))
                    continue

            if attempt < max_times:
                sleep_sec = min(backoff * (2 ** (attempt - 1)), 30) + random.uniform(0, 0.6)
                await asyncio.sleep(sleep_sec)

        raise ClassifierRequestError(f"gemini failed after {max_times} attempts: {last_err}")

    async def classify(self, text: str) -> ClassificationResult:
        raw = await self.generate(build_prompt(text, self._topics))
        return parse_classification(raw, self._topics)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
