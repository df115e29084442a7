# services/admin/routes/sms.py
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from services.admin.audit import log_admin_action
from services.admin.models import ScheduledSmsCreate
from shared.auth_middleware import TokenData, require_admin
from shared.database import Database, get_db

sms_router = APIRouter()

ANALYTICS_DAYS = 7


@sms_router.post("/scheduled")
async def create_scheduled_sms(
    request: ScheduledSmsCreate,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    phone_number = request.phone_number
    if request.recipient_type == "single" and not phone_number:
        profile = await db.fetch_one(
            """
            SELECT phone_number FROM profiles
            WHERE user_id = $1 AND phone_verified = true AND phone_number IS NOT NULL
            """,
            request.user_id,
        )
        if not profile:
            raise HTTPException(status_code=400, detail="User has no verified phone number")
        phone_number = profile["phone_number"]

    row = await db.fetch_one(
        """
        INSERT INTO scheduled_sms
            (created_by, user_id, phone_number, recipient_type, message, scheduled_at)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING *
        """,
        admin_user.user_id,
        request.user_id,
        phone_number,
        request.recipient_type,
        request.message,
        request.scheduled_at,
    )

    await log_admin_action(
        db,
        admin_user.user_id,
        "schedule_sms",
        "scheduled_sms",
        row["id"],
        {"recipient_type": request.recipient_type, "scheduled_at": request.scheduled_at},
    )
    return row


@sms_router.get("/scheduled")
async def list_scheduled_sms(
    status: Optional[str] = Query(None, pattern="^(pending|processing|sent|failed|cancelled)$"),
    limit: int = Query(50, ge=1, le=200),
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    if status:
        rows = await db.fetch_all(
            """
            SELECT * FROM scheduled_sms WHERE status = $1
            ORDER BY scheduled_at DESC LIMIT $2
            """,
            status,
            limit,
        )
    else:
        rows = await db.fetch_all(
            "SELECT * FROM scheduled_sms ORDER BY scheduled_at DESC LIMIT $1", limit
        )
    return {"scheduled": rows, "total": len(rows)}


@sms_router.post("/scheduled/{scheduled_id}/cancel")
async def cancel_scheduled_sms(
    scheduled_id: UUID,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    """Cancel a message that has not been picked up by the dispatcher yet"""
    row = await db.fetch_one(
        """
        UPDATE scheduled_sms SET status = 'cancelled'
        WHERE id = $1 AND status = 'pending'
        RETURNING *
        """,
        scheduled_id,
    )
    if not row:
        existing = await db.fetch_one("SELECT status FROM scheduled_sms WHERE id = $1", scheduled_id)
        if not existing:
            raise HTTPException(status_code=404, detail="Scheduled message not found")
        raise HTTPException(
            status_code=400, detail=f"Cannot cancel a message with status {existing['status']}"
        )

    await log_admin_action(db, admin_user.user_id, "cancel_sms", "scheduled_sms", scheduled_id)
    return row


@sms_router.get("/logs")
async def list_delivery_logs(
    status: Optional[str] = Query(None, max_length=20),
    template_name: Optional[str] = Query(None, max_length=50),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    conditions = []
    params: list = []

    if status:
        params.append(status)
        conditions.append(f"status = ${len(params)}")
    if template_name:
        params.append(template_name)
        conditions.append(f"template_name = ${len(params)}")

    where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    total = await db.fetch_val(f"SELECT COUNT(*) FROM sms_delivery_logs {where_clause}", *params)

    logs = await db.fetch_all(
        f"""
        SELECT * FROM sms_delivery_logs {where_clause}
        ORDER BY sent_at DESC
        LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """,
        *params,
        limit,
        (page - 1) * limit,
    )

    return {
        "logs": logs,
        "total": total,
        "pages": (total + limit - 1) // limit,
        "current_page": page,
    }


@sms_router.get("/analytics")
async def sms_analytics(
    admin_user: TokenData = Depends(require_admin), db: Database = Depends(get_db)
):
    since = datetime.now(timezone.utc) - timedelta(days=ANALYTICS_DAYS)

    by_status = await db.fetch_all(
        """
        SELECT status, COUNT(*) AS count FROM sms_delivery_logs
        WHERE sent_at >= $1
        GROUP BY status
        """,
        since,
    )
    by_day = await db.fetch_all(
        """
        SELECT DATE(sent_at) AS day, status, COUNT(*) AS count FROM sms_delivery_logs
        WHERE sent_at >= $1
        GROUP BY DATE(sent_at), status
        ORDER BY day
        """,
        since,
    )

    counts = {row["status"]: row["count"] for row in by_status}
    total = sum(counts.values())
    delivered = counts.get("delivered", 0)

    return {
        "period_days": ANALYTICS_DAYS,
        "total": total,
        "by_status": counts,
        "delivery_rate": round(delivered / total * 100, 1) if total else 0.0,
        "daily": by_day,
    }
