"""Built-in provider registrations, per-category ranking and probes.

Credentialed providers are always registered but stay disabled (source and
probe) until their key is configured.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from seawater.shared.providers.monitor import ProbeConfig
from seawater.shared.providers.types import SourceConfig, SourceType

if TYPE_CHECKING:
    from seawater.config import Settings

# Preferred providers per category, best first. Ids that are not registered
# here are placeholders for adapters outside this package.
CATEGORY_PRIORITIES: dict[str, list[str]] = {
    "flood": ["FEMA_NRI", "FirstStreet", "NOAA_Coastal"],
    "wildfire": ["CAL_FIRE", "NIFC", "FEMA_NRI"],
    "hurricane": ["HURDAT2", "NHC", "FEMA_NRI"],
    "earthquake": ["USGS_Earthquake", "FEMA_NRI"],
    "heat": ["NOAA_CDO", "NASA_POWER", "FirstStreet"],
    "geocoding": ["MapBox_Geocoding", "Google_Geocoding", "Census_Geocoding"],
}


def _ranks(source_id: str) -> dict[str, int]:
    return {
        category: ids.index(source_id) + 1
        for category, ids in CATEGORY_PRIORITIES.items()
        if source_id in ids
    }


def default_sources(settings: Settings) -> list[SourceConfig]:
    def source(source_id: str, **kwargs: Any) -> SourceConfig:
        return SourceConfig(source_id=source_id, category_priority=_ranks(source_id), **kwargs)

    noaa_token = settings.noaa_api_token
    firststreet_key = settings.firststreet_api_key
    climatecheck_key = settings.climatecheck_api_key
    mapbox_token = settings.mapbox_access_token
    google_key = settings.google_maps_api_key

    return [
        source(
            "FEMA_NRI",
            name="FEMA National Risk Index",
            categories=("flood", "wildfire", "hurricane", "earthquake", "heat"),
            base_url="https://www.fema.gov/api/open/v2",
            priority=1,
            reliability=0.95,
            timeout_s=30.0,
            retry_budget=3,
            rate_limit=1000,
            rate_window_s=3600.0,
            concurrency_ceiling=10,
            avg_response_ms=2000.0,
        ),
        source(
            "NOAA_CDO",
            name="NOAA Climate Data Online",
            categories=("heat", "hurricane"),
            base_url="https://www.ncei.noaa.gov/access/services/data/v1",
            priority=2,
            reliability=0.92,
            timeout_s=45.0,
            retry_budget=3,
            rate_limit=1000,
            rate_window_s=86400.0,
            concurrency_ceiling=5,
            avg_response_ms=3000.0,
            api_key=noaa_token,
            auth_header="token",
            requires_key=True,
            enabled=bool(noaa_token),
        ),
        source(
            "USGS_Earthquake",
            name="USGS Earthquake Catalog",
            categories=("earthquake",),
            base_url="https://earthquake.usgs.gov/fdsnws/event/1",
            priority=1,
            reliability=0.98,
            timeout_s=30.0,
            retry_budget=3,
            rate_limit=1000,
            rate_window_s=3600.0,
            concurrency_ceiling=10,
            avg_response_ms=1500.0,
        ),
        source(
            "FirstStreet",
            name="First Street Foundation",
            categories=("flood", "heat"),
            source_type=SourceType.PREMIUM,
            base_url="https://api.firststreet.org/risk/v1",
            priority=2,
            reliability=0.99,
            cost_per_call=0.003,
            timeout_s=20.0,
            retry_budget=2,
            rate_limit=10000,
            rate_window_s=86400.0,
            concurrency_ceiling=20,
            daily_cost_ceiling=30.0,
            avg_response_ms=1000.0,
            api_key=firststreet_key,
            requires_key=True,
            enabled=bool(firststreet_key),
        ),
        source(
            "ClimateCheck",
            name="ClimateCheck",
            categories=("flood", "wildfire", "heat"),
            source_type=SourceType.PREMIUM,
            base_url="https://api.climatecheck.com/v1",
            priority=3,
            reliability=0.97,
            cost_per_call=0.002,
            timeout_s=25.0,
            retry_budget=2,
            rate_limit=5000,
            rate_window_s=86400.0,
            concurrency_ceiling=15,
            daily_cost_ceiling=20.0,
            avg_response_ms=1200.0,
            api_key=climatecheck_key,
            requires_key=True,
            enabled=bool(climatecheck_key),
        ),
        source(
            "MapBox_Geocoding",
            name="Mapbox Geocoding",
            categories=("geocoding",),
            source_type=SourceType.PREMIUM,
            base_url="https://api.mapbox.com/geocoding/v5",
            priority=1,
            reliability=0.99,
            cost_per_call=0.0075,
            timeout_s=15.0,
            retry_budget=2,
            rate_limit=100000,
            rate_window_s=86400.0,
            concurrency_ceiling=25,
            daily_cost_ceiling=100.0,
            avg_response_ms=500.0,
            api_key=mapbox_token,
            auth_param="access_token",
            requires_key=True,
            enabled=bool(mapbox_token),
        ),
        source(
            "Google_Geocoding",
            name="Google Geocoding",
            categories=("geocoding",),
            source_type=SourceType.PREMIUM,
            base_url="https://maps.googleapis.com/maps/api/geocode",
            priority=2,
            reliability=0.99,
            cost_per_call=0.005,
            timeout_s=15.0,
            retry_budget=2,
            rate_limit=40000,
            rate_window_s=86400.0,
            concurrency_ceiling=20,
            daily_cost_ceiling=50.0,
            avg_response_ms=600.0,
            api_key=google_key,
            auth_param="key",
            requires_key=True,
            enabled=bool(google_key),
        ),
        source(
            "Census_Geocoding",
            name="US Census Geocoder",
            categories=("geocoding",),
            base_url="https://geocoding.geo.census.gov/geocoder",
            priority=3,
            reliability=0.85,
            timeout_s=30.0,
            retry_budget=3,
            rate_limit=10000,
            rate_window_s=86400.0,
            concurrency_ceiling=10,
            avg_response_ms=2000.0,
        ),
    ]


# ── Probe response validators ────────────────────────────────
def _fema_valid(data: Any) -> bool:
    return isinstance(data, dict) and isinstance(data.get("FemaWebDisasterSummaries"), list)


def _usgs_valid(data: Any) -> bool:
    return isinstance(data, dict) and data.get("type") == "FeatureCollection"


def _mapbox_valid(data: Any) -> bool:
    return isinstance(data, dict) and isinstance(data.get("features"), list)


def _google_valid(data: Any) -> bool:
    return isinstance(data, dict) and "status" in data


def _census_valid(data: Any) -> bool:
    return isinstance(data, dict) and "result" in data


def default_probes(settings: Settings) -> list[ProbeConfig]:
    return [
        ProbeConfig(
            source_id="FEMA_NRI",
            name="FEMA National Risk Index",
            url="https://www.fema.gov/api/open/v2/FemaWebDisasterSummaries?$top=1",
            timeout_s=30.0,
            interval_s=300.0,
            validator=_fema_valid,
        ),
        ProbeConfig(
            source_id="NOAA_CDO",
            name="NOAA Climate Data Online",
            url="https://www.ncei.noaa.gov/access/services/data/v1",
            headers={"token": settings.noaa_api_token},
            expected_status=frozenset({200, 400}),
            timeout_s=45.0,
            interval_s=600.0,
            enabled=bool(settings.noaa_api_token),
        ),
        ProbeConfig(
            source_id="USGS_Earthquake",
            name="USGS Earthquake Catalog",
            url="https://earthquake.usgs.gov/fdsnws/event/1/query?format=geojson&limit=1",
            timeout_s=30.0,
            interval_s=300.0,
            validator=_usgs_valid,
        ),
        ProbeConfig(
            source_id="FirstStreet",
            name="First Street Foundation",
            url="https://api.firststreet.org/risk/v1/health",
            headers={"Authorization": f"Bearer {settings.firststreet_api_key}"},
            timeout_s=20.0,
            interval_s=600.0,
            enabled=bool(settings.firststreet_api_key),
        ),
        ProbeConfig(
            source_id="ClimateCheck",
            name="ClimateCheck",
            url="https://api.climatecheck.com/v1/health",
            headers={"Authorization": f"Bearer {settings.climatecheck_api_key}"},
            timeout_s=25.0,
            interval_s=600.0,
            enabled=bool(settings.climatecheck_api_key),
        ),
        ProbeConfig(
            source_id="MapBox_Geocoding",
            name="Mapbox Geocoding",
            url=(
                "https://api.mapbox.com/geocoding/v5/mapbox.places/test.json"
                f"?access_token={settings.mapbox_access_token}"
            ),
            timeout_s=15.0,
            interval_s=600.0,
            enabled=bool(settings.mapbox_access_token),
            validator=_mapbox_valid,
        ),
        ProbeConfig(
            source_id="Google_Geocoding",
            name="Google Geocoding",
            url=(
                "https://maps.googleapis.com/maps/api/geocode/json"
                f"?address=test&key={settings.google_maps_api_key}"
            ),
            timeout_s=15.0,
            interval_s=600.0,
            enabled=bool(settings.google_maps_api_key),
            validator=_google_valid,
        ),
        ProbeConfig(
            source_id="Census_Geocoding",
            name="US Census Geocoder",
            url=(
                "https://geocoding.geo.census.gov/geocoder/geographies/address"
                "?street=4600+Silver+Hill+Rd&city=Washington&state=DC&zip=20233"
                "&benchmark=2020&vintage=2020&format=json"
            ),
            timeout_s=30.0,
            interval_s=600.0,
            validator=_census_valid,
        ),
    ]
