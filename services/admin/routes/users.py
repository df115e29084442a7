# services/admin/routes/users.py
from typing import Optional
from uuid import UUID

import redis.asyncio as redis
from fastapi import APIRouter, Depends, HTTPException, Query

from services.admin.audit import log_admin_action
from services.admin.models import (
    CoinAdjustment,
    MinuteAdjustment,
    RoleUpdate,
    SuspendRequest,
    TierAssignment,
)
from shared.auth_middleware import TokenData, require_admin
from shared.database import Database, get_db
from shared.redis_client import RedisCache, get_redis

users_router = APIRouter()


async def _require_profile(db: Database, user_id: UUID) -> dict:
    profile = await db.fetch_one("SELECT * FROM profiles WHERE user_id = $1", user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


@users_router.get("")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    params: list = []
    where_clause = ""
    if search:
        params.append(f"%{search}%")
        where_clause = "WHERE (p.display_name ILIKE $1 OR p.phone_number ILIKE $1)"

    total = await db.fetch_val(f"SELECT COUNT(*) FROM profiles p {where_clause}", *params)
    users = await db.fetch_all(
        f"""
        SELECT p.user_id, p.display_name, p.phone_number, p.phone_verified,
               p.sms_notifications_enabled, p.suspended, p.created_at,
               COALESCE(uc.balance, 0) AS coin_balance,
               COALESCE(um.minutes_balance, 0) AS minutes_balance,
               (SELECT st.slug FROM user_subscriptions us
                JOIN subscription_tiers st ON st.id = us.tier_id
                WHERE us.user_id = p.user_id AND us.status = 'active'
                ORDER BY us.created_at DESC LIMIT 1) AS tier_slug
        FROM profiles p
        LEFT JOIN user_coins uc ON uc.user_id = p.user_id
        LEFT JOIN user_minutes um ON um.user_id = p.user_id
        {where_clause}
        ORDER BY p.created_at DESC
        LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """,
        *params,
        limit,
        (page - 1) * limit,
    )

    return {
        "users": users,
        "total": total,
        "pages": (total + limit - 1) // limit,
        "current_page": page,
    }


@users_router.post("/{user_id}/coins")
async def adjust_coins(
    user_id: UUID,
    adjustment: CoinAdjustment,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
):
    """Credit or debit coins. A debit never takes the balance below zero."""
    await _require_profile(db, user_id)

    async with db.transaction() as conn:
        row = await conn.fetchrow(
            "SELECT balance FROM user_coins WHERE user_id = $1 FOR UPDATE", user_id
        )
        current_balance = row["balance"] if row else 0
        new_balance = current_balance + adjustment.amount

        if new_balance < 0:
            raise HTTPException(
                status_code=400,
                detail=f"Adjustment would leave a negative balance (current: {current_balance})",
            )

        await conn.execute(
            """
            INSERT INTO user_coins (user_id, balance, lifetime_earned)
            VALUES ($1, $2, GREATEST($3, 0))
            ON CONFLICT (user_id) DO UPDATE
            SET balance = $2,
                lifetime_earned = user_coins.lifetime_earned + GREATEST($3, 0),
                updated_at = CURRENT_TIMESTAMP
            """,
            user_id,
            new_balance,
            adjustment.amount,
        )
        await conn.execute(
            """
            INSERT INTO coin_transactions (user_id, amount, transaction_type, description)
            VALUES ($1, $2, 'admin_adjustment', $3)
            """,
            user_id,
            adjustment.amount,
            adjustment.reason,
        )
        await log_admin_action(
            conn,
            admin_user.user_id,
            "adjust_coins",
            "user",
            user_id,
            {"amount": adjustment.amount, "reason": adjustment.reason},
        )

    await RedisCache(redis_client, "balance").delete(f"coins:{user_id}")
    return {"user_id": str(user_id), "previous_balance": current_balance, "new_balance": new_balance}


@users_router.post("/{user_id}/minutes")
async def adjust_minutes(
    user_id: UUID,
    adjustment: MinuteAdjustment,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    await _require_profile(db, user_id)

    async with db.transaction() as conn:
        row = await conn.fetchrow(
            "SELECT minutes_balance FROM user_minutes WHERE user_id = $1 FOR UPDATE", user_id
        )
        current_balance = row["minutes_balance"] if row else 0
        new_balance = current_balance + adjustment.minutes

        if new_balance < 0:
            raise HTTPException(
                status_code=400,
                detail=f"Adjustment would leave a negative balance (current: {current_balance})",
            )

        await conn.execute(
            """
            INSERT INTO user_minutes (user_id, minutes_balance)
            VALUES ($1, $2)
            ON CONFLICT (user_id) DO UPDATE
            SET minutes_balance = $2, updated_at = CURRENT_TIMESTAMP
            """,
            user_id,
            new_balance,
        )
        await conn.execute(
            """
            INSERT INTO minute_transactions (user_id, amount, transaction_type, description)
            VALUES ($1, $2, 'admin_adjustment', $3)
            """,
            user_id,
            adjustment.minutes,
            adjustment.reason,
        )
        await log_admin_action(
            conn,
            admin_user.user_id,
            "adjust_minutes",
            "user",
            user_id,
            {"minutes": adjustment.minutes, "reason": adjustment.reason},
        )

    return {"user_id": str(user_id), "previous_balance": current_balance, "new_balance": new_balance}


@users_router.post("/{user_id}/tier")
async def assign_tier(
    user_id: UUID,
    assignment: TierAssignment,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    """Replace the user's active subscription with an admin grant"""
    await _require_profile(db, user_id)
    tier = await db.fetch_one(
        "SELECT id, slug FROM subscription_tiers WHERE slug = $1", assignment.tier_slug
    )
    if not tier:
        raise HTTPException(status_code=404, detail="Tier not found")

    async with db.transaction() as conn:
        await conn.execute(
            """
            UPDATE user_subscriptions SET status = 'replaced', updated_at = CURRENT_TIMESTAMP
            WHERE user_id = $1 AND status = 'active'
            """,
            user_id,
        )
        subscription = await conn.fetchrow(
            """
            INSERT INTO user_subscriptions (user_id, tier_id, status, source, expires_at)
            VALUES ($1, $2, 'active', 'admin', $3)
            RETURNING *
            """,
            user_id,
            tier["id"],
            assignment.expires_at,
        )
        await log_admin_action(
            conn,
            admin_user.user_id,
            "assign_tier",
            "user",
            user_id,
            {"tier": tier["slug"], "expires_at": assignment.expires_at},
        )

    return dict(subscription)


@users_router.post("/{user_id}/suspend")
async def set_suspended(
    user_id: UUID,
    request: SuspendRequest,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    if str(user_id) == admin_user.user_id:
        raise HTTPException(status_code=400, detail="Cannot suspend your own account")

    row = await db.fetch_one(
        """
        UPDATE profiles
        SET suspended = $1,
            suspended_at = CASE WHEN $1 THEN CURRENT_TIMESTAMP ELSE NULL END,
            suspended_reason = CASE WHEN $1 THEN $2 ELSE NULL END,
            updated_at = CURRENT_TIMESTAMP
        WHERE user_id = $3
        RETURNING user_id, suspended, suspended_at, suspended_reason
        """,
        request.suspended,
        request.reason,
        user_id,
    )
    if not row:
        raise HTTPException(status_code=404, detail="User not found")

    await log_admin_action(
        db,
        admin_user.user_id,
        "suspend_user" if request.suspended else "unsuspend_user",
        "user",
        user_id,
        {"reason": request.reason},
    )
    return row


@users_router.post("/{user_id}/roles")
async def update_role(
    user_id: UUID,
    request: RoleUpdate,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    if str(user_id) == admin_user.user_id and not request.granted:
        raise HTTPException(status_code=400, detail="Cannot remove your own admin privileges")

    await _require_profile(db, user_id)

    if request.granted:
        await db.execute(
            """
            INSERT INTO user_roles (user_id, role) VALUES ($1, $2)
            ON CONFLICT (user_id, role) DO NOTHING
            """,
            user_id,
            request.role,
        )
    else:
        await db.execute(
            "DELETE FROM user_roles WHERE user_id = $1 AND role = $2", user_id, request.role
        )

    await log_admin_action(
        db,
        admin_user.user_id,
        "grant_role" if request.granted else "revoke_role",
        "user",
        user_id,
        {"role": request.role},
    )
    return {"user_id": str(user_id), "role": request.role, "granted": request.granted}
