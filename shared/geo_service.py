# shared/geo_service.py
import logging
import os
from typing import Optional

import httpx
from fastapi import Request
from pydantic import BaseModel

logger = logging.getLogger(__name__)

GEOIP_BASE_URL = os.getenv("GEOIP_BASE_URL", "https://ipapi.co")
BLOCKED_REGIONS = [
    region.strip()
    for region in os.getenv("BLOCKED_REGIONS", "California").split(",")
    if region.strip()
]

# Short codes some lookups return for US states in the region field
US_STATE_CODES = {"California": "CA"}

UNRESOLVABLE_IPS = {"unknown", "127.0.0.1", "::1", ""}


class GeoLocation(BaseModel):
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: Optional[str] = None


def get_client_ip(request: Request) -> str:
    """First x-forwarded-for entry, then x-real-ip, else "unknown"."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.headers.get("x-real-ip") or "unknown"


async def lookup_ip(ip_address: str, client: Optional[httpx.AsyncClient] = None) -> GeoLocation:
    """Geolocate an IP. Lookup failures are logged and give an empty location."""
    if ip_address in UNRESOLVABLE_IPS:
        return GeoLocation()

    url = f"{GEOIP_BASE_URL}/{ip_address}/json/"
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=5.0) as owned_client:
                response = await owned_client.get(url)
        else:
            response = await client.get(url)
    except httpx.HTTPError as e:
        logger.warning(f"Geolocation lookup failed for {ip_address}: {e}")
        return GeoLocation()

    if response.status_code != 200:
        logger.warning(f"Geolocation lookup for {ip_address} returned {response.status_code}")
        return GeoLocation()

    try:
        data = response.json()
    except ValueError:
        logger.warning(f"Geolocation lookup for {ip_address} returned invalid JSON")
        return GeoLocation()

    return GeoLocation(
        city=data.get("city"),
        region=data.get("region"),
        country=data.get("country_name"),
        country_code=data.get("country_code"),
        latitude=data.get("latitude"),
        longitude=data.get("longitude"),
        timezone=data.get("timezone"),
    )


def is_blocked_region(location: GeoLocation) -> bool:
    if not location.region:
        return False
    if location.region in BLOCKED_REGIONS:
        return True
    if location.country_code == "US":
        blocked_codes = {US_STATE_CODES.get(region, region) for region in BLOCKED_REGIONS}
        return location.region in blocked_codes
    return False
