"""Tests for feed configuration, the feed cache, and settings."""

import pytest

from hookfeed.config import Settings, load_settings
from hookfeed.core.feeds import (
    DEFAULT_RETENTION_COUNT,
    DEFAULT_RETENTION_MAX_DAYS,
    Feed,
    FeedCache,
    load_feeds,
    parse_feeds,
)
from hookfeed.errors import ConfigError


FEEDS_YAML = """
middleware:
  - stamp.lua
feeds:
  - name: Deploys
    id: deploys
    keys: [deploys, ci-deploys]
    category: ops
    middleware: [uppercase.lua]
  - name: Alerts
    keys: [alerts]
    adapters: [ntfy]
    retention:
      max_count: 50
      max_age_days: 7
"""


# ---------------------------------------------------------------------------
# Feed model
# ---------------------------------------------------------------------------

class TestFeedDefaults:
    def test_optional_fields_filled(self):
        feed = Feed(name="A", keys=["a"])
        assert feed.id == "a"
        assert feed.middleware == ()
        assert feed.adapters == ()
        assert feed.adapters_enabled is True
        assert feed.retention.max_count == DEFAULT_RETENTION_COUNT
        assert feed.retention.max_age_days == DEFAULT_RETENTION_MAX_DAYS

    def test_nulls_become_defaults(self):
        feed = Feed.model_validate({
            "name": "A",
            "keys": ["a"],
            "middleware": None,
            "adapters_enabled": None,
            "retention": {"max_count": None, "max_age_days": 3},
        })
        assert feed.middleware == ()
        assert feed.adapters_enabled is True
        assert feed.retention.max_count == 10_000
        assert feed.retention.max_age_days == 3

    def test_explicit_id_kept(self):
        feed = Feed(name="A", id="alpha", keys=["a"])
        assert feed.id == "alpha"

    def test_feed_is_immutable(self):
        feed = Feed(name="A", keys=["a"])
        with pytest.raises(Exception):
            feed.name = "B"

    def test_to_dict_hides_keys(self):
        data = Feed(name="A", keys=["secret-key"]).to_dict()
        assert "keys" not in data
        assert data["id"] == "secret-key"
        assert data["retention"] == {"maxCount": 10_000, "maxAgeDays": 10_000}


class TestParseFeeds:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "feeds.yaml"
        path.write_text(FEEDS_YAML)
        feeds = load_feeds(path)
        assert feeds.middleware == ("stamp.lua",)
        assert [f.id for f in feeds.feeds] == ["deploys", "alerts"]
        assert feeds.feeds[1].adapters == ("ntfy",)
        assert feeds.feeds[1].retention.max_count == 50

    def test_empty_feed_list_rejected(self):
        with pytest.raises(ConfigError):
            parse_feeds({"feeds": []})

    def test_missing_name_rejected(self):
        with pytest.raises(ConfigError):
            parse_feeds({"feeds": [{"keys": ["a"]}]})

    def test_missing_keys_rejected(self):
        with pytest.raises(ConfigError):
            parse_feeds({"feeds": [{"name": "A"}]})

    def test_empty_keys_rejected(self):
        with pytest.raises(ConfigError):
            parse_feeds({"feeds": [{"name": "A", "keys": []}]})

    def test_blank_key_rejected(self):
        with pytest.raises(ConfigError):
            parse_feeds({"feeds": [{"name": "A", "keys": ["  "]}]})

    def test_duplicate_routing_keys_rejected(self):
        with pytest.raises(ConfigError, match="already used"):
            parse_feeds({
                "feeds": [
                    {"name": "A", "keys": ["shared"]},
                    {"name": "B", "id": "b", "keys": ["b", "shared"]},
                ]
            })

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ConfigError, match="duplicate feed id"):
            parse_feeds({
                "feeds": [
                    {"name": "A", "id": "same", "keys": ["a"]},
                    {"name": "B", "id": "same", "keys": ["b"]},
                ]
            })

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            parse_feeds(["feeds"])

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_feeds(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "feeds.yaml"
        path.write_text("feeds: [unclosed")
        with pytest.raises(ConfigError):
            load_feeds(path)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@pytest.fixture
def cache():
    return FeedCache([
        Feed(name="Deploys", id="deploys", keys=["deploys", "ci-deploys"]),
        Feed(name="Alerts", keys=["alerts"]),
    ])


class TestFeedCache:
    def test_lookup_by_id(self, cache):
        assert cache.get_by_id("deploys").name == "Deploys"

    def test_every_key_resolves_to_owner(self, cache):
        assert cache.get_by_key("deploys").id == "deploys"
        assert cache.get_by_key("ci-deploys").id == "deploys"
        assert cache.get_by_key("alerts").id == "alerts"

    def test_unknown_lookups_return_none(self, cache):
        assert cache.get_by_id("missing") is None
        assert cache.get_by_key("missing") is None

    def test_all_preserves_order(self, cache):
        assert [f.id for f in cache.all()] == ["deploys", "alerts"]
        assert len(cache) == 2

    def test_key_is_not_an_id(self, cache):
        assert cache.get_by_id("ci-deploys") is None

    def test_duplicate_key_last_write_wins(self):
        cache = FeedCache([
            Feed(name="A", keys=["a", "shared"]),
            Feed(name="B", keys=["b", "shared"]),
        ])
        assert cache.get_by_key("shared").id == "b"

    def test_empty_cache(self):
        cache = FeedCache([])
        assert cache.all() == ()
        assert cache.get_by_key("x") is None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.server.port == 8420
        assert settings.transform.max_instructions == 10_000_000
        assert settings.retention.enabled is True

    def test_yaml_overlay(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  port: 9000\nfeeds_file: /etc/feeds.yaml\n")
        settings = load_settings(path)
        assert settings.server.port == 9000
        assert str(settings.get_feeds_file()) == "/etc/feeds.yaml"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_settings(tmp_path / "absent.yaml")

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_settings(path)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("HOOKFEED_SERVER__PORT", "9100")
        monkeypatch.setenv("HOOKFEED_LOG_LEVEL", "DEBUG")
        settings = Settings()
        assert settings.server.port == 9100
        assert settings.log_level == "DEBUG"

    def test_default_paths_follow_config_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOOKFEED_CONFIG_DIR", str(tmp_path))
        settings = Settings()
        assert settings.get_feeds_file() == tmp_path / "feeds.yaml"
        assert settings.get_middleware_dir() == tmp_path / "middleware"
