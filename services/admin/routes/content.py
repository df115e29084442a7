# services/admin/routes/content.py
"""CMS endpoints for the admin-editable content tables."""

import json
from dataclasses import dataclass
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, ValidationError

from services.admin.audit import log_admin_action
from services.admin.models import (
    BreathingExerciseCreate,
    BreathingExerciseUpdate,
    DailyAffirmationCreate,
    DailyAffirmationUpdate,
    DailyQuestionCreate,
    DailyQuestionUpdate,
    JournalTemplateCreate,
    JournalTemplateUpdate,
    MoodPromptCreate,
    MoodPromptUpdate,
    RelationshipTipCreate,
    RelationshipTipUpdate,
    SmsTemplateCreate,
    SmsTemplateUpdate,
)
from shared.auth_middleware import TokenData, require_admin
from shared.database import Database, get_db
from shared.json_utils import parse_jsonb_field

content_router = APIRouter()


@dataclass(frozen=True)
class ContentTable:
    table: str
    create_model: type[BaseModel]
    update_model: type[BaseModel]
    order_by: str = "sort_order, created_at DESC"
    soft_delete: bool = True
    has_updated_at: bool = False
    jsonb_fields: tuple[str, ...] = ()


CONTENT_TABLES = {
    "daily-questions": ContentTable(
        "daily_questions", DailyQuestionCreate, DailyQuestionUpdate
    ),
    "daily-affirmations": ContentTable(
        "daily_affirmation_templates", DailyAffirmationCreate, DailyAffirmationUpdate
    ),
    "relationship-tips": ContentTable(
        "relationship_tips", RelationshipTipCreate, RelationshipTipUpdate
    ),
    "breathing-exercises": ContentTable(
        "breathing_exercises",
        BreathingExerciseCreate,
        BreathingExerciseUpdate,
        has_updated_at=True,
    ),
    "journal-templates": ContentTable(
        "journal_templates",
        JournalTemplateCreate,
        JournalTemplateUpdate,
        has_updated_at=True,
        jsonb_fields=("prompts",),
    ),
    "mood-prompts": ContentTable(
        "mood_prompts", MoodPromptCreate, MoodPromptUpdate, has_updated_at=True
    ),
    "sms-templates": ContentTable(
        "sms_templates",
        SmsTemplateCreate,
        SmsTemplateUpdate,
        order_by="name",
        soft_delete=False,
        has_updated_at=True,
    ),
}


def get_content_table(content_type: str) -> ContentTable:
    config = CONTENT_TABLES.get(content_type)
    if not config:
        raise HTTPException(status_code=404, detail=f"Unknown content type: {content_type}")
    return config


def parse_payload(model: type[BaseModel], payload: dict) -> BaseModel:
    try:
        return model(**payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=422, detail=e.errors(include_url=False, include_context=False)
        )


def _encode(config: ContentTable, data: dict) -> dict:
    return {
        key: json.dumps(value) if key in config.jsonb_fields else value
        for key, value in data.items()
    }


def _column_value(config: ContentTable, key: str, index: int) -> str:
    return f"${index}::jsonb" if key in config.jsonb_fields else f"${index}"


def _decode(config: ContentTable, row: dict) -> dict:
    for field in config.jsonb_fields:
        row[field] = parse_jsonb_field(row.get(field), [], field)
    return row


@content_router.get("")
async def list_content_types(admin_user: TokenData = Depends(require_admin)):
    return {"content_types": sorted(CONTENT_TABLES)}


@content_router.get("/{content_type}")
async def list_content(
    content_type: str,
    include_inactive: bool = Query(False),
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    config = get_content_table(content_type)
    where = "" if include_inactive or not config.soft_delete else "WHERE is_active = true"
    rows = await db.fetch_all(f"SELECT * FROM {config.table} {where} ORDER BY {config.order_by}")
    return {"items": [_decode(config, row) for row in rows], "total": len(rows)}


@content_router.post("/{content_type}")
async def create_content(
    content_type: str,
    payload: dict = Body(...),
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    config = get_content_table(content_type)
    item = parse_payload(config.create_model, payload)
    data = _encode(config, item.model_dump())
    if config.table == "sms_templates":
        data["created_by"] = admin_user.user_id

    columns = list(data)
    placeholders = ", ".join(
        _column_value(config, column, i) for i, column in enumerate(columns, start=1)
    )
    row = await db.fetch_one(
        f"""
        INSERT INTO {config.table} ({", ".join(columns)})
        VALUES ({placeholders})
        RETURNING *
        """,
        *data.values(),
    )

    await log_admin_action(
        db, admin_user.user_id, f"create_{config.table}", config.table, row["id"]
    )
    return _decode(config, row)


@content_router.patch("/{content_type}/{item_id}")
async def update_content(
    content_type: str,
    item_id: UUID,
    payload: dict = Body(...),
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    config = get_content_table(content_type)
    update = parse_payload(config.update_model, payload)
    data = _encode(config, update.model_dump(exclude_unset=True))
    if not data:
        raise HTTPException(status_code=400, detail="No fields to update")

    assignments = [
        f"{column} = {_column_value(config, column, i)}"
        for i, column in enumerate(data, start=1)
    ]
    if config.has_updated_at:
        assignments.append("updated_at = CURRENT_TIMESTAMP")

    row = await db.fetch_one(
        f"""
        UPDATE {config.table} SET {", ".join(assignments)}
        WHERE id = ${len(data) + 1}
        RETURNING *
        """,
        *data.values(),
        item_id,
    )
    if not row:
        raise HTTPException(status_code=404, detail="Item not found")

    await log_admin_action(
        db,
        admin_user.user_id,
        f"update_{config.table}",
        config.table,
        item_id,
        {"fields": list(data)},
    )
    return _decode(config, row)


@content_router.delete("/{content_type}/{item_id}")
async def delete_content(
    content_type: str,
    item_id: UUID,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    """Deactivate an item. Tables without an active flag are deleted outright."""
    config = get_content_table(content_type)

    if config.soft_delete:
        result = await db.execute(
            f"UPDATE {config.table} SET is_active = false WHERE id = $1", item_id
        )
        deleted = result != "UPDATE 0"
    else:
        result = await db.execute(f"DELETE FROM {config.table} WHERE id = $1", item_id)
        deleted = result != "DELETE 0"

    if not deleted:
        raise HTTPException(status_code=404, detail="Item not found")

    await log_admin_action(
        db, admin_user.user_id, f"delete_{config.table}", config.table, item_id
    )
    return {"success": True, "soft_deleted": config.soft_delete}
