"""
Tests for src/marketintel/platforms/registry.py

Covers: lookup by id, unknown platforms as configuration errors,
immutability, and page URL building for every pagination strategy.
"""
from urllib.parse import parse_qs, urlsplit

import pytest
from pydantic import ValidationError

from marketintel.errors import ConfigurationError, UnknownPlatformError
from marketintel.jobs import SearchFilters
from marketintel.platforms.registry import (
    Pagination,
    PlatformConfig,
    RateLimit,
    all_platform_ids,
    build_page_url,
    get_platform_config,
    platform_names,
)


def _platform(**pagination) -> PlatformConfig:
    return PlatformConfig(
        id="example",
        name="Example",
        base_url="https://example.gr/",
        search_paths={"sale": "/sale", "rent": "/rent"},
        rate_limit=RateLimit(requests=10, per_minutes=1),
        pagination=Pagination(**pagination),
    )


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

class TestLookup:

    def test_known_platforms(self):
        assert all_platform_ids() == ["spitogatos", "xe_gr", "tospitimou"]

    def test_get_platform_config(self):
        config = get_platform_config("xe_gr")
        assert config.name == "XE.gr"
        assert config.rate_limit.requests == 20

    def test_unknown_platform_is_configuration_error(self):
        with pytest.raises(UnknownPlatformError) as exc_info:
            get_platform_config("idealista")
        assert isinstance(exc_info.value, ConfigurationError)
        assert exc_info.value.platform_id == "idealista"

    def test_platform_names(self):
        assert platform_names()["spitogatos"] == "Spitogatos.gr"

    def test_configs_are_frozen(self):
        config = get_platform_config("spitogatos")
        with pytest.raises(ValidationError):
            config.base_url = "https://evil.example"


# ---------------------------------------------------------------------------
# URL building
# ---------------------------------------------------------------------------

class TestBuildPageUrl:

    def test_first_page_has_no_page_param(self):
        url = build_page_url(get_platform_config("spitogatos"), 1)
        assert url == "https://www.spitogatos.gr/pwlisi/katoikies"

    def test_query_pagination(self):
        url = build_page_url(get_platform_config("spitogatos"), 3)
        assert url == "https://www.spitogatos.gr/pwlisi/katoikies?page=3"

    def test_platform_page_param_name(self):
        url = build_page_url(get_platform_config("tospitimou"), 2)
        assert url == "https://en.tospitimou.gr/property/for-sale/houses?p=2"

    def test_rent_only_uses_rent_path(self):
        url = build_page_url(
            get_platform_config("xe_gr"), 1, SearchFilters(transaction_types=["rent"])
        )
        assert url == "https://www.xe.gr/en/property/r/property-to-rent"

    def test_mixed_transaction_types_use_sale_path(self):
        url = build_page_url(
            get_platform_config("xe_gr"), 1, SearchFilters(transaction_types=["sale", "rent"])
        )
        assert url == "https://www.xe.gr/en/property/r/property-for-sale"

    def test_price_filters_become_query_params(self):
        url = build_page_url(
            get_platform_config("spitogatos"), 2, SearchFilters(min_price=100000)
        )
        assert url == "https://www.spitogatos.gr/pwlisi/katoikies?minPrice=100000&page=2"

    def test_path_pagination(self):
        assert build_page_url(_platform(type="path"), 1) == "https://example.gr/sale"
        assert build_page_url(_platform(type="path"), 3) == "https://example.gr/sale/page/3"

    def test_offset_pagination(self):
        platform = _platform(type="offset", param="offset", page_size=20)
        assert build_page_url(platform, 1) == "https://example.gr/sale?offset=0"
        assert build_page_url(platform, 3) == "https://example.gr/sale?offset=40"

    def test_single_page_platform_ignores_page(self):
        assert build_page_url(_platform(type="none"), 4) == "https://example.gr/sale"


# ---------------------------------------------------------------------------
# Search filters in the URL
# ---------------------------------------------------------------------------

def _query(url: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(url).query)


class TestFilterParams:

    def test_area_and_property_type_sent(self):
        url = build_page_url(
            get_platform_config("spitogatos"),
            1,
            SearchFilters(areas=["Κολωνάκι"], property_types=["APARTMENT"]),
        )
        assert url.startswith("https://www.spitogatos.gr/pwlisi/katoikies?")
        assert _query(url) == {"geo_area_txt": ["Κολωνάκι"], "property_type": ["apartment"]}

    def test_each_platform_uses_its_own_params(self):
        filters = SearchFilters(areas=["Γλυφάδα"], property_types=["LAND"], max_price=300000)

        xe = _query(build_page_url(get_platform_config("xe_gr"), 2, filters))
        assert xe == {
            "geo_place": ["Γλυφάδα"],
            "property_type": ["plots-of-land"],
            "maximum_price": ["300000"],
            "page": ["2"],
        }

        # Tospitimou takes no price filters
        tospitimou = _query(build_page_url(get_platform_config("tospitimou"), 1, filters))
        assert tospitimou == {"location": ["Γλυφάδα"], "category": ["oikopedo"]}

    def test_area_falls_back_to_municipality(self):
        url = build_page_url(
            get_platform_config("xe_gr"), 1, SearchFilters(municipalities=["Αθηναίων", "Πειραιώς"])
        )
        assert _query(url) == {"geo_place": ["Αθηναίων"]}

    def test_areas_win_over_municipalities(self):
        filters = SearchFilters(areas=["Κουκάκι"], municipalities=["Αθηναίων"])
        assert _query(build_page_url(get_platform_config("tospitimou"), 1, filters)) == {
            "location": ["Κουκάκι"]
        }

    def test_several_property_types_not_narrowed(self):
        filters = SearchFilters(property_types=["APARTMENT", "HOUSE"])
        assert build_page_url(get_platform_config("xe_gr"), 1, filters) == (
            "https://www.xe.gr/en/property/r/property-for-sale"
        )

    def test_type_without_portal_category_not_sent(self):
        filters = SearchFilters(property_types=["PARKING"])
        assert build_page_url(get_platform_config("tospitimou"), 1, filters) == (
            "https://en.tospitimou.gr/property/for-sale/houses"
        )
        assert _query(build_page_url(get_platform_config("xe_gr"), 1, filters)) == {
            "property_type": ["parking-spaces"]
        }

    def test_platform_without_filter_params_ignores_filters(self):
        url = build_page_url(_platform(), 1, SearchFilters(areas=["Κολωνάκι"], min_price=1))
        assert url == "https://example.gr/sale"
