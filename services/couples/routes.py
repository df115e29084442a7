# services/couples/routes.py
import logging
from typing import Annotated
from uuid import UUID

import redis.asyncio as redis
from fastapi import APIRouter, Depends, HTTPException, Path, Request
from fastapi.responses import StreamingResponse

from services.couples.games import GameSessionService
from services.couples.links import PartnerLinkService, other_member, require_link_member
from services.couples.models import (
    GAME_TYPE_PATTERN,
    AcceptInviteRequest,
    CardIndexUpdate,
    GameResultRequest,
    GameSession,
    GameStatePatch,
    GameStats,
    InviteRequest,
    Milestone,
    MilestoneCreate,
    MoodEntry,
    MoodEntryCreate,
    PartnerLink,
    PartnerLinkStatus,
    SharedMoodEntry,
    SharedMoodEntryCreate,
    StartGameRequest,
    TimeCapsule,
    TimeCapsuleCreate,
)
from shared.auth_middleware import TokenData, get_current_user
from shared.database import Database, get_db
from shared.partner_notifications import notify_partner
from shared.redis_client import get_redis

logger = logging.getLogger(__name__)

links_router = APIRouter()
games_router = APIRouter()
moods_router = APIRouter()

SHARED_MOOD_LIMIT = 14

GameType = Annotated[str, Path(pattern=GAME_TYPE_PATTERN)]


async def get_game_service(
    db: Database = Depends(get_db), redis_client: redis.Redis = Depends(get_redis)
) -> GameSessionService:
    return GameSessionService(db, redis_client)


# Partner links
@links_router.post("/invite", response_model=PartnerLink)
async def create_invite(
    request: InviteRequest,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return await PartnerLinkService(db).create_invite(current_user.user_id, request.email)


@links_router.post("/accept", response_model=PartnerLink)
async def accept_invite(
    request: AcceptInviteRequest,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return await PartnerLinkService(db).accept_invite(current_user.user_id, request.invite_code)


@links_router.get("/me", response_model=PartnerLinkStatus)
async def get_my_link(
    current_user: TokenData = Depends(get_current_user), db: Database = Depends(get_db)
):
    return await PartnerLinkService(db).get_status(current_user.user_id)


@links_router.post("/{link_id}/unlink", response_model=PartnerLink)
async def unlink(
    link_id: UUID,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return await PartnerLinkService(db).unlink(str(link_id), current_user.user_id)


# Shared moods
@links_router.post("/{link_id}/moods", response_model=SharedMoodEntry)
async def create_shared_mood(
    link_id: UUID,
    entry: SharedMoodEntryCreate,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    await require_link_member(db, str(link_id), current_user.user_id)
    return await db.fetch_one(
        """
        INSERT INTO shared_mood_entries
            (partner_link_id, user_id, mood_level, mood_label, notes, is_visible_to_partner)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING *
        """,
        link_id,
        current_user.user_id,
        entry.mood_level,
        entry.mood_label,
        entry.notes,
        entry.is_visible_to_partner,
    )


@links_router.get("/{link_id}/moods", response_model=list[SharedMoodEntry])
async def list_shared_moods(
    link_id: UUID,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Recent moods on the link. Hidden entries are only returned to their author."""
    await require_link_member(db, str(link_id), current_user.user_id)
    return await db.fetch_all(
        """
        SELECT * FROM shared_mood_entries
        WHERE partner_link_id = $1 AND (user_id = $2 OR is_visible_to_partner = true)
        ORDER BY created_at DESC
        LIMIT $3
        """,
        link_id,
        current_user.user_id,
        SHARED_MOOD_LIMIT,
    )


# Milestones
@links_router.post("/{link_id}/milestones", response_model=Milestone)
async def create_milestone(
    link_id: UUID,
    milestone: MilestoneCreate,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    await require_link_member(db, str(link_id), current_user.user_id)
    return await db.fetch_one(
        """
        INSERT INTO relationship_milestones
            (partner_link_id, created_by, title, description, category, icon,
             milestone_date, is_recurring)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        RETURNING *
        """,
        link_id,
        current_user.user_id,
        milestone.title,
        milestone.description,
        milestone.category,
        milestone.icon,
        milestone.milestone_date,
        milestone.is_recurring,
    )


@links_router.get("/{link_id}/milestones", response_model=list[Milestone])
async def list_milestones(
    link_id: UUID,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    await require_link_member(db, str(link_id), current_user.user_id)
    return await db.fetch_all(
        """
        SELECT * FROM relationship_milestones
        WHERE partner_link_id = $1
        ORDER BY milestone_date ASC
        """,
        link_id,
    )


@links_router.delete("/{link_id}/milestones/{milestone_id}")
async def delete_milestone(
    link_id: UUID,
    milestone_id: UUID,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    await require_link_member(db, str(link_id), current_user.user_id)
    result = await db.execute(
        "DELETE FROM relationship_milestones WHERE id = $1 AND partner_link_id = $2",
        milestone_id,
        link_id,
    )
    if result == "DELETE 0":
        raise HTTPException(status_code=404, detail="Milestone not found")
    return {"success": True}


# Time capsules
@links_router.post("/{link_id}/time-capsules", response_model=TimeCapsule)
async def create_time_capsule(
    link_id: UUID,
    capsule: TimeCapsuleCreate,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    link = await require_link_member(db, str(link_id), current_user.user_id)
    recipient_id = other_member(link, current_user.user_id)
    if not recipient_id:
        raise HTTPException(status_code=400, detail="Partner link has no partner yet")

    return await db.fetch_one(
        """
        INSERT INTO time_capsule_messages
            (partner_link_id, sender_id, recipient_id, title, message, deliver_at)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING *
        """,
        link_id,
        current_user.user_id,
        recipient_id,
        capsule.title,
        capsule.message,
        capsule.deliver_at,
    )


@links_router.get("/{link_id}/time-capsules", response_model=list[TimeCapsule])
async def list_time_capsules(
    link_id: UUID,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Capsules the caller sent, plus those addressed to them that have opened"""
    await require_link_member(db, str(link_id), current_user.user_id)
    return await db.fetch_all(
        """
        SELECT * FROM time_capsule_messages
        WHERE partner_link_id = $1
          AND (sender_id = $2 OR (recipient_id = $2 AND is_delivered = TRUE))
        ORDER BY deliver_at DESC
        """,
        link_id,
        current_user.user_id,
    )


# Personal moods
@moods_router.post("", response_model=MoodEntry)
async def create_mood(
    entry: MoodEntryCreate,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return await db.fetch_one(
        """
        INSERT INTO mood_entries (user_id, mood_level, mood_label, notes)
        VALUES ($1, $2, $3, $4)
        RETURNING *
        """,
        current_user.user_id,
        entry.mood_level,
        entry.mood_label,
        entry.notes,
    )


@moods_router.get("", response_model=list[MoodEntry])
async def list_moods(
    limit: int = 30,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return await db.fetch_all(
        """
        SELECT * FROM mood_entries WHERE user_id = $1
        ORDER BY created_at DESC LIMIT $2
        """,
        current_user.user_id,
        min(max(limit, 1), 100),
    )


# Game sessions


@games_router.post("/{link_id}/{game_type}/start", response_model=GameSession)
async def start_game(
    link_id: UUID,
    game_type: GameType,
    request: StartGameRequest,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
    games: GameSessionService = Depends(get_game_service),
):
    await require_link_member(db, str(link_id), current_user.user_id)
    session, created = await games.start(
        str(link_id), game_type, current_user.user_id, request.initial_state
    )

    if created:
        result = await notify_partner(db, current_user.user_id, "game_started", game_type=game_type)
        logger.info(f"Game {game_type} started on {link_id}, partner notified: {result['sent']}")

    return session


@games_router.get("/{link_id}/{game_type}/session", response_model=GameSession)
async def get_game_session(
    link_id: UUID,
    game_type: GameType,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
    games: GameSessionService = Depends(get_game_service),
):
    await require_link_member(db, str(link_id), current_user.user_id)
    session = await games.get_session(str(link_id), game_type)
    if not session:
        raise HTTPException(status_code=404, detail="No active game session")
    return session


@games_router.patch("/{link_id}/{game_type}/state", response_model=GameSession)
async def update_game_state(
    link_id: UUID,
    game_type: GameType,
    patch: GameStatePatch,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
    games: GameSessionService = Depends(get_game_service),
):
    await require_link_member(db, str(link_id), current_user.user_id)
    session = await games.update_state(str(link_id), game_type, patch.state)
    if not session:
        raise HTTPException(status_code=404, detail="No active game session")
    return session


@games_router.patch("/{link_id}/{game_type}/card", response_model=GameSession)
async def update_card_index(
    link_id: UUID,
    game_type: GameType,
    update: CardIndexUpdate,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
    games: GameSessionService = Depends(get_game_service),
):
    await require_link_member(db, str(link_id), current_user.user_id)
    session = await games.set_card(str(link_id), game_type, update.index)
    if not session:
        raise HTTPException(status_code=404, detail="No active game session")
    return session


@games_router.post("/{link_id}/{game_type}/results")
async def save_game_result(
    link_id: UUID,
    game_type: GameType,
    result: GameResultRequest,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
    games: GameSessionService = Depends(get_game_service),
):
    await require_link_member(db, str(link_id), current_user.user_id)
    return await games.save_result(str(link_id), game_type, current_user.user_id, result)


@games_router.get("/{link_id}/{game_type}/stats", response_model=GameStats)
async def get_game_stats(
    link_id: UUID,
    game_type: GameType,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
    games: GameSessionService = Depends(get_game_service),
):
    await require_link_member(db, str(link_id), current_user.user_id)
    return await games.get_stats(str(link_id), game_type)


@games_router.get("/{link_id}/{game_type}/events")
async def stream_game_events(
    link_id: UUID,
    game_type: GameType,
    request: Request,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
    games: GameSessionService = Depends(get_game_service),
):
    """Server-sent events for every change to this game session"""
    await require_link_member(db, str(link_id), current_user.user_id)
    return StreamingResponse(
        games.event_stream(str(link_id), game_type, request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
