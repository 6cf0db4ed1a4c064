"""Tests for crawl configuration, presets, and loaders."""

import json

import pytest
from pydantic import ValidationError

from seocrawl.config import PRESETS, CrawlConfig, pattern_matches
from seocrawl.constants import DEFAULT_RESOURCE_PRIORITIES
from seocrawl.exceptions import ConfigError


class TestCrawlConfigDefaults:
    """Tests for default values."""

    def test_defaults(self):
        """Test default configuration values."""
        config = CrawlConfig()

        assert config.max_concurrency == 5
        assert config.max_requests_per_second == 10
        assert config.max_depth == 10
        assert config.cache_enabled is True
        assert config.cache_ttl == 86400
        assert config.incremental_enabled is False
        assert config.incremental_strategy == "lastModified"
        assert config.max_pages is None
        assert config.url_include_patterns == ()
        assert config.url_exclude_patterns == ()
        assert config.respect_robots_txt is True

    def test_default_resource_priorities(self):
        """Test that all resource classes get a weight."""
        config = CrawlConfig()

        assert config.resource_priorities == DEFAULT_RESOURCE_PRIORITIES
        assert config.priority_for("document") == 1.0
        assert config.priority_for("xhr") == config.resource_priorities["other"]

    def test_partial_priorities_are_merged(self):
        """Test that missing resource classes keep their default weight."""
        config = CrawlConfig(resource_priorities={"image": 0.1})

        assert config.priority_for("image") == 0.1
        assert config.priority_for("script") == DEFAULT_RESOURCE_PRIORITIES["script"]

    def test_config_is_frozen(self):
        """Test that a config cannot be changed after construction."""
        config = CrawlConfig()

        with pytest.raises(ValidationError):
            config.max_depth = 3


class TestCrawlConfigValidation:
    """Tests that invalid values are rejected, never clamped."""

    @pytest.mark.parametrize("field,value", [
        ("max_concurrency", 0),
        ("max_concurrency", -1),
        ("max_requests_per_second", 0),
        ("max_depth", 0),
        ("max_memory_mb", 0),
        ("page_restart_threshold", 0),
        ("cache_ttl", -1),
        ("max_pages", 0),
        ("max_retries", -1),
    ])
    def test_out_of_range_values(self, field, value):
        """Test that non-positive values raise ConfigError."""
        with pytest.raises(ConfigError) as exc_info:
            CrawlConfig(**{field: value})

        assert field in str(exc_info.value)
        assert exc_info.value.errors

    def test_priority_out_of_range(self):
        """Test that priorities outside [0, 1] are rejected."""
        with pytest.raises(ConfigError):
            CrawlConfig(resource_priorities={"image": 1.5})
        with pytest.raises(ConfigError):
            CrawlConfig(resource_priorities={"font": -0.1})

    def test_unknown_strategy(self):
        """Test that unknown comparison strategies are rejected."""
        with pytest.raises(ConfigError):
            CrawlConfig(incremental_strategy="mtime")

    def test_unknown_field(self):
        """Test that unknown fields are rejected."""
        with pytest.raises(ConfigError):
            CrawlConfig(max_workers=3)

    def test_invalid_regex_pattern(self):
        """Test that a broken regular expression is a config error."""
        with pytest.raises(ConfigError):
            CrawlConfig(url_exclude_patterns=("re:[unclosed",))

    def test_zero_ttl_is_allowed(self):
        """Test that a zero TTL is valid."""
        assert CrawlConfig(cache_ttl=0).cache_ttl == 0


class TestResourceFilter:
    """Tests for resource priority aborting."""

    def test_document_never_aborted(self):
        """Test that the primary document is kept even at weight 0."""
        config = CrawlConfig(resource_priorities={"document": 0.0})

        assert config.should_abort_resource("document") is False

    def test_low_priority_aborted(self):
        """Test that resources under the threshold are aborted."""
        config = CrawlConfig()

        assert config.should_abort_resource("other") is True
        assert config.should_abort_resource("websocket") is True

    def test_threshold_is_exclusive(self):
        """Test that weights equal to the threshold are kept."""
        config = CrawlConfig()

        assert config.should_abort_resource("font") is False
        assert config.should_abort_resource("media") is False
        assert config.should_abort_resource("image") is False

    def test_custom_threshold(self):
        """Test a custom low priority threshold."""
        config = CrawlConfig(low_priority_threshold=0.6)

        assert config.should_abort_resource("image") is True
        assert config.should_abort_resource("script") is False


class TestUrlFilter:
    """Tests for include/exclude URL patterns."""

    def test_no_patterns_allows_everything(self):
        assert CrawlConfig().allows_url("https://example.com/anything")

    def test_exclude_wins_over_include(self):
        """Test that exclude patterns are applied first."""
        config = CrawlConfig(
            url_include_patterns=("/blog",),
            url_exclude_patterns=("/blog/drafts",),
        )

        assert config.allows_url("https://example.com/blog/post")
        assert not config.allows_url("https://example.com/blog/drafts/1")
        assert not config.allows_url("https://example.com/about")

    def test_regex_patterns(self):
        """Test the re: prefix."""
        config = CrawlConfig(url_exclude_patterns=(r"re:\.pdf$",))

        assert not config.allows_url("https://example.com/file.pdf")
        assert config.allows_url("https://example.com/file.pdf.html")

    def test_comma_separated_patterns(self):
        """Test that a comma-separated string is split."""
        config = CrawlConfig(url_include_patterns="/blog, /docs")

        assert config.url_include_patterns == ("/blog", "/docs")

    def test_pattern_matches(self):
        assert pattern_matches("/blog", "https://example.com/blog/1")
        assert not pattern_matches("re:^/blog", "https://example.com/blog/1")


class TestPresets:
    """Tests for named presets."""

    def test_small_preset(self):
        config = CrawlConfig.for_small_sites()

        assert config.max_concurrency == 5
        assert config.max_requests_per_second == 15
        assert config.incremental_enabled is False

    def test_medium_preset(self):
        config = CrawlConfig.for_medium_sites()

        assert config.max_concurrency == 10
        assert config.incremental_enabled is True

    def test_large_preset(self):
        config = CrawlConfig.for_large_sites()

        assert config.max_concurrency == 20
        assert config.cache_ttl == 43200
        assert config.page_restart_threshold == 10

    def test_preset_overrides(self):
        """Test that overrides replace preset values."""
        config = CrawlConfig.preset("large", max_concurrency=3)

        assert config.max_concurrency == 3
        assert config.max_depth == PRESETS["large"]["max_depth"]

    def test_unknown_preset(self):
        with pytest.raises(ConfigError):
            CrawlConfig.preset("huge")

    def test_invalid_override(self):
        with pytest.raises(ConfigError):
            CrawlConfig.for_small_sites(max_concurrency=0)


class TestConfigLoaders:
    """Tests for environment and file loading."""

    def test_from_env(self, monkeypatch):
        """Test loading values from SEOCRAWL_* variables."""
        monkeypatch.setenv("SEOCRAWL_MAX_CONCURRENCY", "8")
        monkeypatch.setenv("SEOCRAWL_CACHE_ENABLED", "false")
        monkeypatch.setenv("SEOCRAWL_URL_EXCLUDE_PATTERNS", "/admin,/login")

        config = CrawlConfig.from_env()

        assert config.max_concurrency == 8
        assert config.cache_enabled is False
        assert config.url_exclude_patterns == ("/admin", "/login")

    def test_from_env_with_preset(self, monkeypatch):
        monkeypatch.setenv("SEOCRAWL_PRESET", "medium")
        monkeypatch.setenv("SEOCRAWL_MAX_DEPTH", "4")

        config = CrawlConfig.from_env()

        assert config.max_concurrency == 10
        assert config.max_depth == 4

    def test_from_env_invalid(self, monkeypatch):
        monkeypatch.setenv("SEOCRAWL_MAX_CONCURRENCY", "zero")

        with pytest.raises(ConfigError):
            CrawlConfig.from_env()

    def test_from_yaml_file(self, tmp_path):
        """Test loading fields nested under a crawl key."""
        path = tmp_path / "crawl.yaml"
        path.write_text(
            "preset: small\n"
            "crawl:\n"
            "  max_depth: 3\n"
            "  url_exclude_patterns:\n"
            "    - /admin\n"
        )

        config = CrawlConfig.from_file(str(path))

        assert config.max_depth == 3
        assert config.max_requests_per_second == 15
        assert config.url_exclude_patterns == ("/admin",)

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "crawl.json"
        path.write_text(json.dumps({"max_concurrency": 2, "cache_enabled": False}))

        config = CrawlConfig.from_file(str(path))

        assert config.max_concurrency == 2
        assert config.cache_enabled is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            CrawlConfig.from_file(str(tmp_path / "missing.yaml"))

    def test_to_dict_round_trip(self):
        config = CrawlConfig.for_large_sites(url_include_patterns=("/blog",))

        assert CrawlConfig(**config.to_dict()) == config
