import pytest

from helpers import tweet_json
from tweet_hub.models import RawTweet
from tweet_hub.parsers.twitter_json import normalize, parse_tweets


def test_parse_tweets_accepts_object_or_list():
    payload = {"tweets": [tweet_json("1"), "junk", tweet_json("2")], "has_next_page": False}
    assert [t.id for t in parse_tweets(payload)] == ["1", "2"]
    assert [t.id for t in parse_tweets([tweet_json("3")])] == ["3"]
    assert parse_tweets({}) == []


def test_parse_tweets_rejects_scalar_payload():
    with pytest.raises(ValueError):
        parse_tweets("oops")


def test_normalize_basic_fields():
    raw = RawTweet.from_dict(tweet_json("42", text="ETH2.0 is live", user="Alice"))
    rec = normalize(raw)
    assert rec.external_id == "42"
    assert rec.text == "ETH2.0 is live"
    assert rec.author_display_name == "Alice"
    assert rec.author_handle == "alice"
    assert rec.author_verified is True
    assert rec.author_avatar_url == "https://pbs.twimg.com/Alice.jpg"
    assert rec.canonical_url == "https://twitter.com/alice/status/42"
    assert rec.published_at == "Tue Mar 05 07:08:09 +0000 2024"
    assert rec.media_kind == "none" and rec.media_preview_url is None
    assert rec.topics == []


def test_normalize_fallback_order():
    d = tweet_json("7")
    d["twitterUrl"] = ""
    d["author"] = {
        "name": "Bob",
        "userName": "BOB",
        "isBlueVerified": True,
        "isVerified": False,
        "profileImageUrl": "https://img/bob.png",
    }
    rec = normalize(RawTweet.from_dict(d))
    assert rec.canonical_url == "https://x.com/alice/status/7"
    assert rec.author_avatar_url == "https://img/bob.png"
    assert rec.author_verified is True


def test_normalize_missing_everything_gives_empty_strings():
    rec = normalize(RawTweet.from_dict({}))
    assert rec.external_id is None
    assert rec.canonical_url == ""
    assert rec.author_avatar_url == ""
    assert rec.author_verified is False
    assert rec.media_kind == "none"


def test_normalize_first_media_entry():
    media = [
        {"type": "video", "media_url_https": "https://pbs.twimg.com/v.jpg", "url": "https://t.co/v"},
        {"type": "photo", "media_url_https": "https://pbs.twimg.com/p.jpg"},
    ]
    rec = normalize(RawTweet.from_dict(tweet_json("9", media=media)))
    assert rec.media_kind == "video"
    assert rec.media_preview_url == "https://pbs.twimg.com/v.jpg"

    odd = normalize(RawTweet.from_dict(tweet_json("10", media=[{"type": "audio", "media_url_https": "https://a"}])))
    assert odd.media_kind == "none"
    assert odd.media_preview_url == "https://a"


def test_from_dict_coerces_non_string_fields():
    d = tweet_json("5")
    d["text"] = 12345
    d["author"]["verifiedType"] = 2
    d["extendedEntities"] = {"media": [{"type": 1, "media_url_https": "https://pbs.twimg.com/m.jpg"}]}
    rec = normalize(RawTweet.from_dict(d))
    assert rec.text == "12345"
    assert rec.author_verification_kind == "2"
    assert rec.media_kind == "none"
    assert rec.media_preview_url == "https://pbs.twimg.com/m.jpg"


def test_from_dict_tolerates_non_dict_author():
    d = tweet_json("6")
    d["author"] = "alice"
    d["extendedEntities"] = {"media": "nope"}
    raw = RawTweet.from_dict(d)
    assert raw.author_user_name == ""
    assert raw.media == []
