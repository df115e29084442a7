# services/admin/routes/tiers.py
import json
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from services.admin.audit import log_admin_action
from services.admin.models import TierUpdate
from shared.auth_middleware import TokenData, require_admin
from shared.database import Database, get_db
from shared.json_utils import parse_jsonb_field

tiers_router = APIRouter()

JSONB_COLUMNS = {"limits", "features"}


def _decode_tier(row: dict) -> dict:
    row["limits"] = parse_jsonb_field(row.get("limits"), {}, "limits")
    row["features"] = parse_jsonb_field(row.get("features"), [], "features")
    return row


@tiers_router.get("")
async def list_tiers(admin_user: TokenData = Depends(require_admin), db: Database = Depends(get_db)):
    rows = await db.fetch_all(
        """
        SELECT st.*,
               (SELECT COUNT(*) FROM user_subscriptions us
                WHERE us.tier_id = st.id AND us.status = 'active') AS active_subscribers
        FROM subscription_tiers st
        ORDER BY st.sort_order
        """
    )
    return {"tiers": [_decode_tier(row) for row in rows]}


@tiers_router.patch("/{tier_id}")
async def update_tier(
    tier_id: UUID,
    update: TierUpdate,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    data = update.model_dump(exclude_unset=True)
    if not data:
        raise HTTPException(status_code=400, detail="No fields to update")

    assignments = []
    params = []
    for column, value in data.items():
        params.append(json.dumps(value) if column in JSONB_COLUMNS else value)
        cast = "::jsonb" if column in JSONB_COLUMNS else ""
        assignments.append(f"{column} = ${len(params)}{cast}")
    assignments.append("updated_at = CURRENT_TIMESTAMP")

    row = await db.fetch_one(
        f"""
        UPDATE subscription_tiers SET {", ".join(assignments)}
        WHERE id = ${len(params) + 1}
        RETURNING *
        """,
        *params,
        tier_id,
    )
    if not row:
        raise HTTPException(status_code=404, detail="Tier not found")

    await log_admin_action(
        db, admin_user.user_id, "update_tier", "subscription_tier", tier_id, data
    )
    return _decode_tier(row)
