# shared/sms_service.py
import logging
import os
import re
from typing import Optional

import httpx

from shared.database import Database

logger = logging.getLogger(__name__)

TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER")

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")


class SmsError(Exception):
    """Raised when the SMS provider rejects or fails a send"""


def is_configured() -> bool:
    return all([TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER])


def is_valid_e164(phone_number: str) -> bool:
    return bool(E164_PATTERN.match(phone_number or ""))


def normalize_phone(phone_number: str) -> str:
    """Drop everything except digits and a leading plus"""
    return re.sub(r"[^\d+]", "", phone_number or "")


async def send_sms(
    to_number: str, message: str, client: Optional[httpx.AsyncClient] = None
) -> Optional[str]:
    """Send an SMS through Twilio and return the message sid.

    Returns None without sending when Twilio isn't configured (local development).
    """
    if not is_configured():
        print(f"📱 SMS not configured. Would send to {to_number}: {message}", flush=True)
        return None

    url = f"{TWILIO_API_BASE}/Accounts/{TWILIO_ACCOUNT_SID}/Messages.json"
    payload = {"From": TWILIO_PHONE_NUMBER, "To": to_number, "Body": message}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=15.0) as owned_client:
                response = await owned_client.post(
                    url, auth=(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN), data=payload
                )
        else:
            response = await client.post(
                url, auth=(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN), data=payload
            )
    except httpx.HTTPError as e:
        raise SmsError(f"Twilio request failed: {e}") from e

    if response.status_code not in (200, 201):
        try:
            detail = response.json().get("message", response.text)
        except ValueError:
            detail = response.text
        raise SmsError(f"Failed to send SMS: {detail}")

    return response.json().get("sid")


async def log_delivery(
    db: Database,
    phone_number: str,
    message: Optional[str],
    status: str,
    template_name: Optional[str] = None,
    user_id: Optional[str] = None,
    twilio_sid: Optional[str] = None,
    error_message: Optional[str] = None,
    sent_by: Optional[str] = None,
    scheduled_sms_id: Optional[str] = None,
) -> None:
    """Write one sms_delivery_logs row"""
    await db.execute(
        """
        INSERT INTO sms_delivery_logs
            (user_id, phone_number, message, template_name, status,
             twilio_sid, error_message, sent_by, scheduled_sms_id)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
        """,
        user_id,
        phone_number,
        message,
        template_name,
        status,
        twilio_sid,
        error_message,
        sent_by,
        scheduled_sms_id,
    )


async def count_recent_sends(
    db: Database, template_name: str, window_hours: int, phone_number: Optional[str] = None
) -> int:
    """Count delivery log rows for a template within the trailing window"""
    query = """
        SELECT COUNT(*) AS total FROM sms_delivery_logs
        WHERE template_name = $1
          AND sent_at >= CURRENT_TIMESTAMP - make_interval(hours => $2)
    """
    args = [template_name, window_hours]
    if phone_number:
        query += " AND phone_number = $3"
        args.append(phone_number)

    row = await db.fetch_one(query, *args)
    return int(row["total"]) if row else 0
