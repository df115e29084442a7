# services/couples/games.py
import json
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import redis.asyncio as redis

from services.couples.models import GameResultRequest, GameSession, GameStats
from shared.database import Database
from shared.json_utils import parse_jsonb_field
from shared.redis_client import publish_json

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15


def game_channel(link_id: str, game_type: str) -> str:
    return f"game:{link_id}:{game_type}"


def format_sse(data: str, event: Optional[str] = None) -> str:
    lines = [f"event: {event}"] if event else []
    lines.extend(f"data: {line}" for line in data.splitlines() or [""])
    return "\n".join(lines) + "\n\n"


def _to_session(row: dict) -> GameSession:
    row["game_state"] = parse_jsonb_field(row.get("game_state"), {}, "game_state")
    return GameSession(**row)


class GameSessionService:
    """Shared game sessions for a partner link.

    State changes are last-write-wins. Every change is published on the
    link's Redis channel so the other partner's event stream picks it up.
    """

    def __init__(self, db: Database, redis_client: redis.Redis):
        self.db = db
        self.redis = redis_client

    async def publish(self, link_id: str, game_type: str, event: str, session: GameSession) -> None:
        payload = {"event": event, "session": session.model_dump(mode="json")}
        await publish_json(self.redis, game_channel(link_id, game_type), payload)

    async def start(
        self, link_id: str, game_type: str, user_id: str, initial_state: dict[str, Any]
    ) -> tuple[GameSession, bool]:
        """Create the session, or reset an existing one. Returns (session, created)."""
        row = await self.db.fetch_one(
            """
            INSERT INTO couples_game_sessions (partner_link_id, game_type, game_state, started_by)
            VALUES ($1, $2, $3::jsonb, $4)
            ON CONFLICT (partner_link_id, game_type) DO UPDATE
            SET game_state = EXCLUDED.game_state,
                current_card_index = 0,
                updated_at = CURRENT_TIMESTAMP
            RETURNING *, (xmax = 0) AS created
            """,
            link_id,
            game_type,
            json.dumps(initial_state),
            user_id,
        )
        created = row.pop("created")
        session = _to_session(row)
        await self.publish(link_id, game_type, "started", session)
        return session, created

    async def get_session(self, link_id: str, game_type: str) -> Optional[GameSession]:
        row = await self.db.fetch_one(
            "SELECT * FROM couples_game_sessions WHERE partner_link_id = $1 AND game_type = $2",
            link_id,
            game_type,
        )
        return _to_session(row) if row else None

    async def update_state(
        self, link_id: str, game_type: str, patch: dict[str, Any]
    ) -> Optional[GameSession]:
        row = await self.db.fetch_one(
            """
            UPDATE couples_game_sessions
            SET game_state = game_state || $3::jsonb, updated_at = CURRENT_TIMESTAMP
            WHERE partner_link_id = $1 AND game_type = $2
            RETURNING *
            """,
            link_id,
            game_type,
            json.dumps(patch),
        )
        if not row:
            return None
        session = _to_session(row)
        await self.publish(link_id, game_type, "state", session)
        return session

    async def set_card(self, link_id: str, game_type: str, index: int) -> Optional[GameSession]:
        """Move to a card. State belongs to the card, so it is cleared."""
        row = await self.db.fetch_one(
            """
            UPDATE couples_game_sessions
            SET current_card_index = $3, game_state = '{}'::jsonb, updated_at = CURRENT_TIMESTAMP
            WHERE partner_link_id = $1 AND game_type = $2
            RETURNING *
            """,
            link_id,
            game_type,
            index,
        )
        if not row:
            return None
        session = _to_session(row)
        await self.publish(link_id, game_type, "card", session)
        return session

    async def save_result(
        self, link_id: str, game_type: str, user_id: str, result: GameResultRequest
    ) -> dict:
        row = await self.db.fetch_one(
            """
            INSERT INTO couples_game_history
                (partner_link_id, game_type, score, matches, total_questions,
                 played_by, partner_played, details)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
            RETURNING *
            """,
            link_id,
            game_type,
            result.score,
            result.matches,
            result.total_questions,
            user_id,
            result.partner_played,
            json.dumps(result.details),
        )
        row["details"] = parse_jsonb_field(row.get("details"), {}, "details")
        return row

    async def get_stats(self, link_id: str, game_type: str) -> GameStats:
        row = await self.db.fetch_one(
            """
            SELECT COUNT(*) AS total_games_played,
                   COALESCE(SUM(matches), 0) AS total_matches,
                   COALESCE(ROUND(AVG(COALESCE(score, 0))), 0) AS average_score,
                   MAX(completed_at) AS last_played
            FROM couples_game_history
            WHERE partner_link_id = $1 AND game_type = $2
            """,
            link_id,
            game_type,
        )
        return GameStats(
            total_games_played=row["total_games_played"],
            total_matches=row["total_matches"],
            average_score=int(row["average_score"]),
            last_played=row["last_played"],
        )

    async def event_stream(
        self,
        link_id: str,
        game_type: str,
        is_disconnected: Callable[[], Awaitable[bool]],
    ) -> AsyncIterator[str]:
        """Relay channel messages as server-sent events until the client leaves"""
        channel = game_channel(link_id, game_type)
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel)
        last_sent = time.monotonic()

        try:
            yield ": connected\n\n"
            while not await is_disconnected():
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)

                if message and message["type"] == "message":
                    yield format_sse(message["data"], event="game_update")
                    last_sent = time.monotonic()
                elif time.monotonic() - last_sent >= KEEPALIVE_SECONDS:
                    yield ": keepalive\n\n"
                    last_sent = time.monotonic()
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.debug(f"Closed game event stream for {channel}")
