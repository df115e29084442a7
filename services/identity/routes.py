import json
import logging

from fastapi import APIRouter, Depends, HTTPException

from services.identity.models import (
    Profile,
    ProfileUpdate,
    RolesResponse,
    SendVerificationRequest,
    VerifyPhoneRequest,
)
from services.identity.verification import CODE_EXPIRE_MINUTES, PhoneVerificationService
from shared.auth_middleware import TokenData, get_current_user
from shared.code_utils import generate_code
from shared.database import Database, get_db
from shared.json_utils import parse_jsonb_field
from shared.sms_service import SmsError, send_sms

logger = logging.getLogger(__name__)

user_router = APIRouter()
phone_router = APIRouter()


def _profile_from_row(row: dict) -> Profile:
    row = dict(row)
    row["sms_notification_preferences"] = parse_jsonb_field(
        row.get("sms_notification_preferences"), {}, "sms_notification_preferences"
    )
    return Profile(**row)


async def get_or_create_profile(db: Database, user_id: str) -> dict:
    profile = await db.fetch_one("SELECT * FROM profiles WHERE user_id = $1", user_id)
    if profile:
        return profile

    # Profiles normally exist from signup; create one lazily otherwise
    await db.execute(
        """
        INSERT INTO profiles (user_id, referral_code)
        VALUES ($1, $2)
        ON CONFLICT (user_id) DO NOTHING
        """,
        user_id,
        generate_code(8),
    )
    return await db.fetch_one("SELECT * FROM profiles WHERE user_id = $1", user_id)


@user_router.get("/me", response_model=Profile)
async def get_my_profile(
    current_user: TokenData = Depends(get_current_user), db: Database = Depends(get_db)
):
    """Get current user profile"""
    profile = await get_or_create_profile(db, current_user.user_id)
    return _profile_from_row(profile)


@user_router.patch("/me", response_model=Profile)
async def update_my_profile(
    update_data: ProfileUpdate,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Update current user profile"""
    await get_or_create_profile(db, current_user.user_id)

    fields = update_data.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")

    updates = []
    values = []
    for index, (column, value) in enumerate(fields.items(), start=1):
        if column == "sms_notification_preferences":
            value = json.dumps(value)
        updates.append(f"{column} = ${index}")
        values.append(value)

    values.append(current_user.user_id)
    profile = await db.fetch_one(
        f"""
        UPDATE profiles
        SET {", ".join(updates)}, updated_at = CURRENT_TIMESTAMP
        WHERE user_id = ${len(values)}
        RETURNING *
        """,
        *values,
    )
    return _profile_from_row(profile)


@user_router.get("/me/roles", response_model=RolesResponse)
async def get_my_roles(
    current_user: TokenData = Depends(get_current_user), db: Database = Depends(get_db)
):
    rows = await db.fetch_all(
        "SELECT role FROM user_roles WHERE user_id = $1 ORDER BY role", current_user.user_id
    )
    roles = [row["role"] for row in rows]
    return RolesResponse(user_id=current_user.user_id, roles=roles, is_admin="admin" in roles)


@phone_router.post("/send-verification")
async def send_verification_code(
    request: SendVerificationRequest,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Text a 6-digit verification code to the phone number"""
    service = PhoneVerificationService(db)

    wait_seconds = await service.seconds_until_resend(current_user.user_id)
    if wait_seconds > 0:
        raise HTTPException(
            status_code=429,
            detail=f"Please wait {wait_seconds} seconds before requesting a new code",
        )

    code = await service.create_code(current_user.user_id, request.phone_number)

    try:
        await send_sms(
            request.phone_number,
            f"Your Luna verification code is: {code}. Valid for {CODE_EXPIRE_MINUTES} minutes.",
        )
    except SmsError as e:
        logger.error(f"Verification SMS to {request.phone_number} failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to send verification code")

    return {"success": True, "message": "Verification code sent"}


@phone_router.post("/verify")
async def verify_phone(
    request: VerifyPhoneRequest,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    service = PhoneVerificationService(db)

    if not await service.verify_code(current_user.user_id, request.phone_number, request.code):
        raise HTTPException(status_code=400, detail="Invalid or expired verification code")

    return {"success": True, "phone_number": request.phone_number, "phone_verified": True}
