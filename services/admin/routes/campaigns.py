# services/admin/routes/campaigns.py
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from services.admin.audit import log_admin_action
from services.admin.models import CampaignCreate, CampaignToggle
from shared.auth_middleware import TokenData, require_admin
from shared.database import Database, get_db

campaigns_router = APIRouter()


@campaigns_router.get("")
async def list_campaigns(
    admin_user: TokenData = Depends(require_admin), db: Database = Depends(get_db)
):
    campaigns = await db.fetch_all(
        """
        SELECT c.*,
               COUNT(l.id) FILTER (WHERE l.status = 'sent') AS total_sent,
               COUNT(l.id) FILTER (WHERE l.status = 'failed') AS total_failed
        FROM automated_push_campaigns c
        LEFT JOIN automated_push_logs l ON l.campaign_id = c.id
        GROUP BY c.id
        ORDER BY c.created_at DESC
        """
    )
    return {"campaigns": campaigns}


@campaigns_router.post("")
async def create_campaign(
    campaign: CampaignCreate,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    row = await db.fetch_one(
        """
        INSERT INTO automated_push_campaigns
            (name, trigger_type, title, body, delay_minutes, is_active)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING *
        """,
        campaign.name,
        campaign.trigger_type,
        campaign.title,
        campaign.body,
        campaign.delay_minutes,
        campaign.is_active,
    )
    await log_admin_action(
        db,
        admin_user.user_id,
        "create_campaign",
        "push_campaign",
        row["id"],
        {"trigger_type": campaign.trigger_type},
    )
    return row


@campaigns_router.patch("/{campaign_id}")
async def toggle_campaign(
    campaign_id: UUID,
    toggle: CampaignToggle,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    row = await db.fetch_one(
        "UPDATE automated_push_campaigns SET is_active = $1 WHERE id = $2 RETURNING *",
        toggle.is_active,
        campaign_id,
    )
    if not row:
        raise HTTPException(status_code=404, detail="Campaign not found")

    await log_admin_action(
        db,
        admin_user.user_id,
        "enable_campaign" if toggle.is_active else "disable_campaign",
        "push_campaign",
        campaign_id,
    )
    return row


@campaigns_router.delete("/{campaign_id}")
async def delete_campaign(
    campaign_id: UUID,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    async with db.transaction() as conn:
        await conn.execute("DELETE FROM automated_push_logs WHERE campaign_id = $1", campaign_id)
        result = await conn.execute(
            "DELETE FROM automated_push_campaigns WHERE id = $1", campaign_id
        )
        if result == "DELETE 0":
            raise HTTPException(status_code=404, detail="Campaign not found")
        await log_admin_action(
            conn, admin_user.user_id, "delete_campaign", "push_campaign", campaign_id
        )

    return {"success": True}


@campaigns_router.get("/logs")
async def recent_campaign_logs(
    campaign_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    if campaign_id:
        logs = await db.fetch_all(
            """
            SELECT l.*, c.name AS campaign_name FROM automated_push_logs l
            JOIN automated_push_campaigns c ON c.id = l.campaign_id
            WHERE l.campaign_id = $1
            ORDER BY l.created_at DESC LIMIT $2
            """,
            campaign_id,
            limit,
        )
    else:
        logs = await db.fetch_all(
            """
            SELECT l.*, c.name AS campaign_name FROM automated_push_logs l
            JOIN automated_push_campaigns c ON c.id = l.campaign_id
            ORDER BY l.created_at DESC LIMIT $1
            """,
            limit,
        )
    return {"logs": logs}
