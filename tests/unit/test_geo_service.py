import httpx
import pytest
from starlette.requests import Request

from shared.geo_service import GeoLocation, get_client_ip, is_blocked_region, lookup_ip


def make_request(headers: dict) -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request({"type": "http", "headers": raw_headers})


def test_client_ip_prefers_first_forwarded_address():
    request = make_request({"x-forwarded-for": "203.0.113.7, 10.0.0.1", "x-real-ip": "10.0.0.2"})
    assert get_client_ip(request) == "203.0.113.7"


def test_client_ip_falls_back_to_real_ip_then_unknown():
    assert get_client_ip(make_request({"x-real-ip": "198.51.100.4"})) == "198.51.100.4"
    assert get_client_ip(make_request({})) == "unknown"


def test_blocked_region_matches_name_and_us_state_code():
    assert is_blocked_region(GeoLocation(region="California", country_code="US"))
    assert is_blocked_region(GeoLocation(region="CA", country_code="US"))
    assert not is_blocked_region(GeoLocation(region="CA", country_code="ES"))
    assert not is_blocked_region(GeoLocation(region="Oregon", country_code="US"))
    assert not is_blocked_region(GeoLocation())


@pytest.mark.asyncio
async def test_lookup_skips_local_addresses():
    def handler(request):
        raise AssertionError("lookup should not hit the network")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert await lookup_ip("127.0.0.1", client=client) == GeoLocation()
        assert await lookup_ip("unknown", client=client) == GeoLocation()


@pytest.mark.asyncio
async def test_lookup_maps_provider_fields():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/203.0.113.7/json/"
        return httpx.Response(
            200,
            json={
                "city": "San Francisco",
                "region": "California",
                "country_name": "United States",
                "country_code": "US",
                "latitude": 37.77,
                "longitude": -122.42,
                "timezone": "America/Los_Angeles",
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        location = await lookup_ip("203.0.113.7", client=client)

    assert location.city == "San Francisco"
    assert location.country == "United States"
    assert is_blocked_region(location)


@pytest.mark.asyncio
async def test_lookup_failure_gives_empty_location():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="rate limited")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert await lookup_ip("203.0.113.7", client=client) == GeoLocation()
