# services/tracking/routes.py
import json
import logging
import os
from typing import Optional, Union

import redis.asyncio as redis
from fastapi import APIRouter, Depends, HTTPException, Request

from services.tracking.models import (
    BlockedResponse,
    EventRequest,
    EventResponse,
    VisitorRequest,
    VisitorResponse,
)
from shared.auth_middleware import TokenData, get_current_user_optional
from shared.database import Database, get_db
from shared.geo_service import get_client_ip, is_blocked_region, lookup_ip
from shared.rate_limiting import RateLimiter
from shared.redis_client import get_redis

logger = logging.getLogger(__name__)

track_router = APIRouter()

TRACKING_LIMIT_PER_MINUTE = int(os.getenv("TRACKING_LIMIT_PER_MINUTE", "120"))


async def enforce_ip_limit(request: Request, redis_client: redis.Redis) -> str:
    ip_address = get_client_ip(request)
    await RateLimiter(redis_client).enforce(
        f"track:{ip_address}", TRACKING_LIMIT_PER_MINUTE, 60, "Too many tracking requests"
    )
    return ip_address


@track_router.post("/visitor", response_model=Union[BlockedResponse, VisitorResponse])
async def track_visitor(
    payload: VisitorRequest,
    request: Request,
    current_user: Optional[TokenData] = Depends(get_current_user_optional),
    db: Database = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
):
    """Record a visit. Visitors from blocked regions get a blocked answer instead."""
    if not payload.session_id:
        raise HTTPException(status_code=400, detail="session_id is required")

    ip_address = await enforce_ip_limit(request, redis_client)
    location = await lookup_ip(ip_address)

    if is_blocked_region(location):
        logger.info(f"Blocking visitor from {location.region}: {ip_address}")
        return BlockedResponse()

    row = await db.fetch_one(
        """
        INSERT INTO visitor_locations
            (session_id, user_id, ip_address, city, region, country, country_code,
             latitude, longitude, timezone, user_agent, referrer, page_path)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
        RETURNING id
        """,
        payload.session_id,
        current_user.user_id if current_user else None,
        ip_address,
        location.city,
        location.region,
        location.country,
        location.country_code,
        location.latitude,
        location.longitude,
        location.timezone,
        payload.user_agent or request.headers.get("user-agent"),
        payload.referrer,
        payload.page_path,
    )

    return VisitorResponse(visitor_id=row["id"], location=location)


@track_router.post("/event", response_model=EventResponse)
async def track_event(
    payload: EventRequest,
    request: Request,
    current_user: Optional[TokenData] = Depends(get_current_user_optional),
    db: Database = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
):
    if not (payload.session_id and payload.event_type and payload.event_name):
        raise HTTPException(
            status_code=400, detail="session_id, event_type, and event_name are required"
        )

    ip_address = await enforce_ip_limit(request, redis_client)
    location = await lookup_ip(ip_address)

    row = await db.fetch_one(
        """
        INSERT INTO tracking_events
            (session_id, user_id, event_type, event_name, page_path, element_id, element_text,
             ip_address, city, region, country, country_code, user_agent, referrer, event_data)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15::jsonb)
        RETURNING id
        """,
        payload.session_id,
        current_user.user_id if current_user else None,
        payload.event_type,
        payload.event_name,
        payload.page_path,
        payload.element_id,
        payload.element_text,
        ip_address,
        location.city,
        location.region,
        location.country,
        location.country_code,
        payload.user_agent or request.headers.get("user-agent"),
        payload.referrer,
        json.dumps(payload.event_data),
    )

    logger.debug(f"Tracked {payload.event_type}/{payload.event_name} for {payload.session_id}")
    return EventResponse(event_id=row["id"])
