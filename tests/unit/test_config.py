"""Unit tests for configuration models and loading."""

import pytest
from pydantic import ValidationError

from pricescout.models.config import (
    ConfigManager,
    EngineConfig,
    SelectorConfig,
    SourceConfiguration,
    SourceProfile,
)
from pricescout.models.data_models import SourceCategory
from pricescout.models.search import SearchFilters, SearchRequest, SortOrder
from tests.fixtures.sample_data import card_record


class TestSourceProfile:

    def test_from_record_accepts_camel_case(self):
        profile = SourceProfile.from_record(card_record("shop-a"))

        assert profile.is_configured
        assert profile.category == SourceCategory.POPULAR
        assert profile.configuration.base_url == "https://shop-a.example"
        assert profile.configuration.selectors.product_name == ".product-name"
        assert profile.configuration.selectors.wait_selector == ".product-card"

    def test_wait_selector_falls_back_to_name(self):
        selectors = SelectorConfig(product_name=".name", product_price=".price")

        assert selectors.wait_selector == ".name"

    def test_missing_product_name_is_captured(self):
        record = card_record("shop-x")
        del record["configuration"]["selectors"]["productName"]

        profile = SourceProfile.from_record(record)

        assert not profile.is_configured
        assert profile.configuration is None
        assert "productName" in profile.configuration_error or "product_name" in profile.configuration_error

    def test_template_without_placeholder_is_captured(self):
        record = card_record("shop-x")
        record["configuration"]["searchUrlTemplate"] = "https://shop-x.example/search"

        profile = SourceProfile.from_record(record)

        assert "{query}" in profile.configuration_error

    def test_missing_configuration_is_captured(self):
        profile = SourceProfile.from_record({"id": "bare", "name": "Bare"})

        assert profile.configuration_error.startswith("invalid configuration")

    def test_missing_identity_raises(self):
        record = card_record("shop-a")
        del record["id"]

        with pytest.raises(ValidationError):
            SourceProfile.from_record(record)

    def test_rate_limit_must_be_positive(self):
        with pytest.raises(ValidationError):
            SourceConfiguration(
                base_url="https://a.example",
                search_url_template="https://a.example/s?q={query}",
                selectors=SelectorConfig(product_name=".n", product_price=".p"),
                rate_limit_ms=0,
            )

    def test_base_url_trailing_slash_removed(self):
        configuration = SourceConfiguration(
            base_url="https://a.example/",
            search_url_template="https://a.example/s?q={query}",
            selectors={"productName": ".n", "productPrice": ".p"},
        )

        assert configuration.base_url == "https://a.example"


class TestEngineConfig:

    def test_defaults(self):
        config = EngineConfig()

        assert config.navigation_timeout == 30.0
        assert config.selector_timeout == 10.0
        assert config.max_attempts == 3
        assert config.max_listings_per_page == 10
        assert config.rate_limit_window == 60
        assert config.search_cache_ttl == 900
        assert config.metrics_ttl == 3600
        assert config.alert_ttl == 86400
        assert config.stale_after == 1800
        assert config.max_alerts == 100
        assert config.synthetic_fallback_enabled is False

    def test_fallback_rejected_in_production(self):
        with pytest.raises(ValidationError, match="production"):
            EngineConfig(environment="production", allow_synthetic_fallback=True)

    def test_fallback_enabled_outside_production(self):
        assert EngineConfig(environment="staging", allow_synthetic_fallback=True).synthetic_fallback_enabled

    def test_invalid_timeout(self):
        with pytest.raises(ValidationError):
            EngineConfig(navigation_timeout=0)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PRICESCOUT_ALLOW_SYNTHETIC_FALLBACK", "true")
        monkeypatch.setenv("PRICESCOUT_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("PRICESCOUT_NAVIGATION_TIMEOUT", "12.5")

        config = EngineConfig.from_env()

        assert config.allow_synthetic_fallback is True
        assert config.max_attempts == 5
        assert config.navigation_timeout == 12.5


class TestConfigManager:

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ConfigManager(tmp_path / "absent.yaml").load_config()

        assert config == EngineConfig()

    def test_precedence_cli_over_env_over_yaml(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("max_attempts: 4\nsearch_cache_ttl: 60\nlog_level: DEBUG\n")
        monkeypatch.setenv("PRICESCOUT_CACHE_TTL", "120")

        config = ConfigManager(config_file).load_config({"log_level": "ERROR", "max_attempts": None})

        assert config.max_attempts == 4
        assert config.search_cache_ttl == 120
        assert config.log_level == "ERROR"


class TestSearchRequest:

    def test_defaults_and_aliases(self):
        request = SearchRequest.model_validate({
            "query": "  wireless headphones ",
            "maxResults": 20,
            "filters": {"minPrice": 100, "maxPrice": 200},
            "sort": {"field": "price", "direction": "desc"},
        })

        assert request.query == "wireless headphones"
        assert request.max_results == 20
        assert request.filters.min_price == 100
        assert request.sort == SortOrder(field="price", direction="desc")

    @pytest.mark.parametrize("query", ["", "ab", "  a  ", "x" * 501])
    def test_query_length_bounds(self, query):
        with pytest.raises(ValidationError):
            SearchRequest(query=query)

    @pytest.mark.parametrize("max_results", [0, 101])
    def test_max_results_bounds(self, max_results):
        with pytest.raises(ValidationError):
            SearchRequest(query="headphones", max_results=max_results)

    def test_inverted_price_bounds_rejected(self):
        with pytest.raises(ValidationError):
            SearchFilters(min_price=500, max_price=100)

    def test_unknown_sort_field_rejected(self):
        with pytest.raises(ValidationError):
            SortOrder(field="name")
