import pytest

from tweet_hub.config import DEFAULT_CFG, load_cfg, load_sources, parse_sources, require_env


def test_defaults_when_file_missing(tmp_path):
    cfg = load_cfg(tmp_path / "nope.yml")
    assert cfg["monitor"]["group_size"] == 3
    assert cfg["monitor"]["batch_size"] == 10
    assert cfg["monitor"]["group_delay_sec"] == 1.0
    assert cfg["monitor"]["batch_delay_sec"] == 0.5
    assert cfg["monitor"]["interval_sec"] == 600


def test_section_shallow_merge_and_model_env(tmp_path, monkeypatch):
    p = tmp_path / "config.yml"
    p.write_text("monitor:\n  batch_size: 4\nserver:\n  port: 8080\n", encoding="utf-8")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-2.0-flash")
    cfg = load_cfg(p)
    assert cfg["monitor"]["batch_size"] == 4
    assert cfg["monitor"]["group_size"] == 3
    assert cfg["server"]["port"] == 8080
    assert cfg["classifier"]["model"] == "gemini-2.0-flash"
    assert DEFAULT_CFG["monitor"]["batch_size"] == 10


def test_broken_yaml_falls_back_to_defaults(tmp_path):
    p = tmp_path / "config.yml"
    p.write_text("monitor: [unclosed\n", encoding="utf-8")
    assert load_cfg(p)["monitor"]["batch_size"] == 10


def test_parse_sources_cleans_and_dedupes():
    entries = ["@VitalikButerin", "vitalikbuterin", {"id": "l2beat"}, {"id": "off", "enabled": False}, "", None]
    assert parse_sources(entries) == ["vitalikbuterin", "l2beat"]


def test_load_sources_missing_file_is_empty(tmp_path):
    assert load_sources(tmp_path / "sources.yml") == []


def test_load_sources_from_file(tmp_path):
    p = tmp_path / "sources.yml"
    p.write_text("sources:\n  - alice\n  - id: bob\n    enabled: true\n", encoding="utf-8")
    assert load_sources(p) == ["alice", "bob"]


def test_require_env_exits_when_missing(monkeypatch):
    monkeypatch.delenv("TWITTER_API_KEY", raising=False)
    with pytest.raises(SystemExit):
        require_env("TWITTER_API_KEY")
    monkeypatch.setenv("TWITTER_API_KEY", " abc ")
    assert require_env("TWITTER_API_KEY") == "abc"
