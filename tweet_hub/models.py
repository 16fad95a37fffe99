# -*- coding: utf-8 -*-
"""
models.py
数据模型：
- RawTweet：搜索接口返回的单条推文（扁平化，字段全部可选）
- TweetRecord：入库 / 推送的规范记录
- ClassificationResult：分类接口的解析结果（只在一轮处理中存在）
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

MEDIA_KINDS = ("photo", "video", "animated_gif", "none")
SENTIMENTS = ("positive", "negative", "neutral")
IMPACTS = ("high", "medium", "low")


def _int(v: Any) -> int:
    try:
        return int(v or 0)
    except (TypeError, ValueError):
        return 0


def _str(v: Any) -> str:
    # 接口偶尔给数字 / 布尔，统一转成字符串
    return "" if v is None else str(v)


def _dict(v: Any) -> Dict[str, Any]:
    return v if isinstance(v, dict) else {}


@dataclass
class RawTweet:
    id: Optional[str] = None
    text: str = ""
    url: str = ""
    twitter_url: str = ""
    created_at: str = ""
    lang: str = ""

    # 作者（author.*）
    author_name: str = ""
    author_user_name: str = ""
    author_is_blue_verified: bool = False
    author_is_verified: bool = False
    author_verified_type: str = ""
    author_profile_picture: str = ""
    author_profile_image_url: str = ""

    # extendedEntities.media：[{type, media_url_https}]
    media: List[Dict[str, str]] = field(default_factory=list)

    # 互动计数
    like_count: int = 0
    retweet_count: int = 0
    reply_count: int = 0
    quote_count: int = 0
    view_count: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RawTweet":
        """接口 JSON -> RawTweet；缺什么就留默认值"""
        author = _dict(d.get("author"))
        ext = _dict(d.get("extendedEntities"))
        media_list = ext.get("media")
        media = [
            {"type": _str(m.get("type")), "media_url_https": _str(m.get("media_url_https"))}
            for m in (media_list if isinstance(media_list, list) else [])
            if isinstance(m, dict)
        ]
        tid = d.get("id")
        return cls(
            id=str(tid) if tid not in (None, "") else None,
            text=_str(d.get("text")),
            url=_str(d.get("url")),
            twitter_url=_str(d.get("twitterUrl")),
            created_at=_str(d.get("createdAt") or d.get("created_at")),
            lang=_str(d.get("lang")),
            author_name=_str(author.get("name")),
            author_user_name=_str(author.get("userName")),
            author_is_blue_verified=bool(author.get("isBlueVerified")),
            author_is_verified=bool(author.get("isVerified")),
            author_verified_type=_str(author.get("verifiedType")),
            author_profile_picture=_str(author.get("profilePicture")),
            author_profile_image_url=_str(author.get("profileImageUrl")),
            media=media,
            like_count=_int(d.get("likeCount")),
            retweet_count=_int(d.get("retweetCount")),
            reply_count=_int(d.get("replyCount")),
            quote_count=_int(d.get("quoteCount")),
            view_count=_int(d.get("viewCount")),
        )


@dataclass
class TweetRecord:
    text: str
    author_display_name: str
    author_handle: str
    author_verified: bool
    author_verification_kind: str
    author_avatar_url: str
    canonical_url: str
    published_at: str                 # 原样保存接口给的时间字符串
    external_id: Optional[str] = None
    media_preview_url: Optional[str] = None
    media_kind: str = "none"          # photo / video / animated_gif / none
    topics: List[str] = field(default_factory=list)  # 分类前为空
    inserted_at: int = 0              # 服务端时间（UTC毫秒）

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ClassificationResult:
    sentiment: str                    # positive / negative / neutral
    topics: List[str]
    impact: str                       # high / medium / low
    summary: str = ""
