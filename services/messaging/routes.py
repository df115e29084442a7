import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from services.messaging.campaigns import AutomatedPushProcessor, push_to_subscriptions
from services.messaging.dispatcher import ScheduledSmsDispatcher
from services.messaging.models import (
    AffirmationRunResult,
    CapsuleRunResult,
    DirectSmsRequest,
    DispatchResult,
    MilestoneReminderResponse,
    NotifyRequest,
    PartnerNotifyRequest,
    PushRunResult,
    PushSendRequest,
    PushSubscribeRequest,
    PushUnsubscribeRequest,
    SmsSendResponse,
    SubscriptionNotificationRequest,
    SubscriptionNotificationResponse,
    WelcomeSmsRequest,
)
from services.messaging.notifications import send_subscription_notifications
from services.messaging.reminders import (
    DailyAffirmationJob,
    MilestoneReminderJob,
    TimeCapsuleDelivery,
)
from shared import push_service, sms_service
from shared.auth_middleware import (
    TokenData,
    get_current_user,
    get_current_user_optional,
    require_admin,
)
from shared.database import Database, get_db
from shared.partner_notifications import notify_partner
from shared.sms_service import SmsError, count_recent_sends, log_delivery, send_sms

logger = logging.getLogger(__name__)

APP_BASE_URL = os.getenv("APP_BASE_URL", "https://talkswithluna.com")

DIRECT_SMS_HOURLY_LIMIT = 10
WELCOME_SMS_DAILY_LIMIT = 2

OPT_OUT_KEYWORDS = {"stop", "unsubscribe", "quit", "cancel", "end", "stopall"}
OPT_IN_KEYWORDS = {"start", "yes", "unstop", "subscribe"}

OPT_OUT_REPLY = "You've been unsubscribed from Luna SMS notifications. Reply START to re-subscribe."
OPT_IN_REPLY = (
    "Welcome back! You've been re-subscribed to Luna SMS notifications. Reply STOP to unsubscribe."
)

sms_router = APIRouter()
push_router = APIRouter()
jobs_router = APIRouter()
webhook_router = APIRouter()


def twiml_message(text: str) -> Response:
    body = f'<?xml version="1.0" encoding="UTF-8"?>\n<Response>\n  <Message>{text}</Message>\n</Response>'
    return Response(content=body, media_type="text/xml")


def welcome_text() -> str:
    return (
        "Welcome to Luna! 💜\n\n"
        "Your account is ready. Sign in with the email you registered.\n\n"
        f"Login at: {APP_BASE_URL}/auth\n\n"
        "Your emotional wellness journey starts now!"
    )


# SMS routes
@sms_router.post("/notify", response_model=SmsSendResponse)
async def send_notification(
    request: NotifyRequest,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    """Text a user at their verified phone number"""
    profile = await db.fetch_one(
        "SELECT phone_number, phone_verified FROM profiles WHERE user_id = $1", request.user_id
    )
    if not profile or not profile["phone_number"] or not profile["phone_verified"]:
        raise HTTPException(status_code=400, detail="User does not have a verified phone number")

    try:
        sid = await send_sms(profile["phone_number"], request.message)
    except SmsError as e:
        logger.error(f"Notification SMS to user {request.user_id} failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to send SMS")

    await log_delivery(
        db,
        profile["phone_number"],
        request.message,
        "delivered",
        template_name="notification",
        user_id=str(request.user_id),
        twilio_sid=sid,
        sent_by=admin_user.user_id,
    )
    logger.info(f"Notification sent to user {request.user_id}: {request.message[:50]}...")
    return SmsSendResponse(message="Notification sent", sid=sid)


@sms_router.post("/direct", response_model=SmsSendResponse)
async def send_direct_sms(
    request: DirectSmsRequest,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    """Admin text to an arbitrary number, capped per hour"""
    recent = await count_recent_sends(db, "admin_direct", 1)
    if recent >= DIRECT_SMS_HOURLY_LIMIT:
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Max {DIRECT_SMS_HOURLY_LIMIT} direct SMS per hour.",
        )

    try:
        sid = await send_sms(request.phone_number, request.message)
    except SmsError as e:
        logger.error(f"Direct SMS to {request.phone_number} failed: {e}")
        await log_delivery(
            db,
            request.phone_number,
            request.message[:100],
            "failed",
            template_name="admin_direct",
            error_message=str(e),
            sent_by=admin_user.user_id,
        )
        raise HTTPException(status_code=502, detail="Failed to send SMS")

    # Only the first 100 characters are kept for the audit trail
    await log_delivery(
        db,
        request.phone_number,
        request.message[:100],
        "delivered",
        template_name="admin_direct",
        twilio_sid=sid,
        sent_by=admin_user.user_id,
    )
    return SmsSendResponse(message="SMS sent", sid=sid)


@sms_router.post("/welcome", response_model=SmsSendResponse)
async def send_welcome_sms(
    request: WelcomeSmsRequest,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not current_user.email or current_user.email.lower() != request.email.lower():
        logger.warning(f"Welcome SMS email mismatch for user {current_user.user_id}")
        raise HTTPException(status_code=403, detail="Email does not match authenticated user")

    recent = await count_recent_sends(db, "welcome", 24, phone_number=request.phone_number)
    if recent >= WELCOME_SMS_DAILY_LIMIT:
        raise HTTPException(status_code=429, detail="Welcome SMS already sent to this number")

    message = welcome_text()
    try:
        sid = await send_sms(request.phone_number, message)
    except SmsError as e:
        logger.error(f"Welcome SMS to {request.phone_number} failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to send SMS")

    await log_delivery(
        db,
        request.phone_number,
        message,
        "delivered",
        template_name="welcome",
        user_id=current_user.user_id,
        twilio_sid=sid,
    )
    return SmsSendResponse(message="Welcome SMS sent", sid=sid)


@sms_router.post("/partner")
async def send_partner_notification(
    request: PartnerNotifyRequest,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if request.event == "love_message" and not request.message:
        raise HTTPException(status_code=400, detail="message is required for love_message")
    if request.event == "game_started" and not request.game_type:
        raise HTTPException(status_code=400, detail="game_type is required for game_started")

    result = await notify_partner(
        db,
        current_user.user_id,
        request.event,
        game_type=request.game_type,
        message=request.message,
    )
    if result["reason"] == "no_partner":
        raise HTTPException(status_code=404, detail="No linked partner found")

    return {"success": True, **result}


# Twilio inbound webhook
@webhook_router.post("/twilio/inbound")
async def twilio_inbound(request: Request, db: Database = Depends(get_db)):
    """Handle STOP/START style replies"""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        payload = await request.json()
    else:
        payload = dict(await request.form())

    sender: Optional[str] = payload.get("From") or payload.get("from")
    text = str(payload.get("Body") or payload.get("body") or "").strip().lower()

    if not sender:
        raise HTTPException(status_code=400, detail="Missing phone number")

    phone_number = sender if sender.startswith("+") else f"+{sender}"

    is_opt_out = text in OPT_OUT_KEYWORDS
    is_opt_in = text in OPT_IN_KEYWORDS
    if not is_opt_out and not is_opt_in:
        return {"message": "Not an opt-out/opt-in request", "received": text}

    profile = await db.fetch_one(
        "SELECT user_id FROM profiles WHERE phone_number = $1", phone_number
    )
    if not profile:
        logger.info(f"No profile found for inbound number {phone_number}")
        return {"message": "No matching user found"}

    await db.execute(
        """
        UPDATE profiles
        SET sms_notifications_enabled = $1, updated_at = CURRENT_TIMESTAMP
        WHERE user_id = $2
        """,
        is_opt_in,
        profile["user_id"],
    )
    await log_delivery(
        db,
        phone_number,
        "User opted out of SMS" if is_opt_out else "User opted back in to SMS",
        "delivered",
        template_name="opt_out" if is_opt_out else "opt_in",
        user_id=profile["user_id"],
    )

    logger.info(f"User {profile['user_id']} {'opted out' if is_opt_out else 'opted in'}")
    return twiml_message(OPT_OUT_REPLY if is_opt_out else OPT_IN_REPLY)


# Push routes
@push_router.get("/vapid-key")
async def get_vapid_key():
    if not push_service.VAPID_PUBLIC_KEY:
        raise HTTPException(status_code=503, detail="Push notifications not configured")
    return {"public_key": push_service.VAPID_PUBLIC_KEY}


@push_router.post("/subscribe")
async def subscribe(
    request: PushSubscribeRequest,
    current_user: Optional[TokenData] = Depends(get_current_user_optional),
    db: Database = Depends(get_db),
):
    """Register a browser push subscription, refreshing it if already known"""
    user_id = current_user.user_id if current_user else None
    if not user_id and not request.session_id:
        raise HTTPException(status_code=400, detail="session_id is required for anonymous subscriptions")

    existing = await db.fetch_one(
        """
        UPDATE push_subscriptions
        SET p256dh = $3, auth = $4, session_id = COALESCE($5, session_id),
            is_active = TRUE, updated_at = CURRENT_TIMESTAMP
        WHERE endpoint = $2 AND user_id IS NOT DISTINCT FROM $1
        RETURNING id
        """,
        user_id,
        request.endpoint,
        request.keys.p256dh,
        request.keys.auth,
        request.session_id,
    )
    if existing:
        return {"success": True, "subscription_id": str(existing["id"]), "created": False}

    created = await db.fetch_one(
        """
        INSERT INTO push_subscriptions (user_id, session_id, endpoint, p256dh, auth)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING id
        """,
        user_id,
        request.session_id,
        request.endpoint,
        request.keys.p256dh,
        request.keys.auth,
    )
    return {"success": True, "subscription_id": str(created["id"]), "created": True}


@push_router.post("/unsubscribe")
async def unsubscribe(
    request: PushUnsubscribeRequest,
    current_user: Optional[TokenData] = Depends(get_current_user_optional),
    db: Database = Depends(get_db),
):
    user_id = current_user.user_id if current_user else None
    result = await db.execute(
        """
        UPDATE push_subscriptions
        SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
        WHERE endpoint = $1 AND ($2::uuid IS NULL OR user_id = $2::uuid)
        """,
        request.endpoint,
        user_id,
    )
    return {"success": True, "updated": result != "UPDATE 0"}


@push_router.post("/send")
async def send_push(
    request: PushSendRequest,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    if not push_service.is_configured():
        raise HTTPException(status_code=500, detail="Push notifications not configured")

    subscriptions = await db.fetch_all(
        "SELECT * FROM push_subscriptions WHERE user_id = $1 AND is_active = TRUE",
        request.user_id,
    )
    if not subscriptions:
        raise HTTPException(status_code=404, detail="No active push subscriptions for user")

    payload = {"title": request.title, "body": request.body, "url": request.url or "/"}
    sent = await push_to_subscriptions(db, subscriptions, payload)

    return {"success": True, "sent": sent, "total": len(subscriptions)}


# Job routes
@jobs_router.post("/scheduled-sms", response_model=DispatchResult)
async def run_scheduled_sms(
    admin_user: TokenData = Depends(require_admin), db: Database = Depends(get_db)
):
    if not sms_service.is_configured():
        raise HTTPException(status_code=400, detail="Twilio credentials not configured")
    return await ScheduledSmsDispatcher(db).run()


@jobs_router.post("/automated-push", response_model=PushRunResult)
async def run_automated_push(
    admin_user: TokenData = Depends(require_admin), db: Database = Depends(get_db)
):
    if not push_service.is_configured():
        raise HTTPException(status_code=500, detail="Push notifications not configured")
    return await AutomatedPushProcessor(db).run()


@jobs_router.post("/subscription-notifications", response_model=SubscriptionNotificationResponse)
async def run_subscription_notifications(
    request: SubscriptionNotificationRequest,
    admin_user: TokenData = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return await send_subscription_notifications(db, request.type, check_all=request.check_all)


@jobs_router.post("/milestone-reminders", response_model=MilestoneReminderResponse)
async def run_milestone_reminders(
    admin_user: TokenData = Depends(require_admin), db: Database = Depends(get_db)
):
    if not sms_service.is_configured():
        raise HTTPException(status_code=400, detail="Twilio credentials not configured")
    return await MilestoneReminderJob(db).run()


@jobs_router.post("/daily-affirmations", response_model=AffirmationRunResult)
async def run_daily_affirmations(
    admin_user: TokenData = Depends(require_admin), db: Database = Depends(get_db)
):
    if not sms_service.is_configured():
        raise HTTPException(status_code=400, detail="Twilio credentials not configured")
    return await DailyAffirmationJob(db).run()


@jobs_router.post("/time-capsules", response_model=CapsuleRunResult)
async def run_time_capsules(
    admin_user: TokenData = Depends(require_admin), db: Database = Depends(get_db)
):
    return await TimeCapsuleDelivery(db).run()
