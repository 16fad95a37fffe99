# Twitter 搜索接口 JSON 解析
# - parse_tweets：响应体 -> RawTweet 列表
# - normalize：RawTweet -> TweetRecord（topics 为空，等分类后填）

from typing import Any, Dict, List, Union

from tweet_hub.models import MEDIA_KINDS, RawTweet, TweetRecord
from tweet_hub.utils import first_non_empty


def parse_tweets(obj: Union[Dict, List]) -> List[RawTweet]:
    """
    响应格式：
    {
        "tweets": [ {...}, ... ],
        "has_next_page": false,
        "next_cursor": ""
    }
    也兼容直接返回数组。非 dict 的条目跳过。
    """
    if isinstance(obj, dict):
        items = obj.get("tweets") or []
    elif isinstance(obj, list):
        items = obj
    else:
        raise ValueError(f"unexpected payload type: {type(obj).__name__}")

    return [RawTweet.from_dict(item) for item in items if isinstance(item, dict)]


def _media_kind(kind: str) -> str:
    k = (kind or "").strip().lower()
    if k in MEDIA_KINDS and k != "none":
        return k
    return "none"


def normalize(raw: RawTweet) -> TweetRecord:
    """
    纯函数，无 I/O。字段回退顺序：
    - verified：isBlueVerified 或 isVerified
    - avatar：profilePicture -> profileImageUrl -> ""
    - url：twitterUrl -> url -> ""
    - media：取第一条
    """
    media: Dict[str, Any] = raw.media[0] if raw.media else {}
    preview = media.get("media_url_https") or None

    return TweetRecord(
        external_id=raw.id or None,
        text=raw.text or "",
        author_display_name=raw.author_name or "",
        author_handle=(raw.author_user_name or "").lower(),
        author_verified=bool(raw.author_is_blue_verified or raw.author_is_verified),
        author_verification_kind=raw.author_verified_type or "",
        author_avatar_url=first_non_empty(raw.author_profile_picture, raw.author_profile_image_url),
        canonical_url=first_non_empty(raw.twitter_url, raw.url),
        media_preview_url=preview,
        media_kind=_media_kind(media.get("type", "")) if media else "none",
        topics=[],
        published_at=raw.created_at or "",
    )
