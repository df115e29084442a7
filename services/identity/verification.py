import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from shared.code_utils import generate_numeric_code
from shared.database import Database

logger = logging.getLogger(__name__)

CODE_EXPIRE_MINUTES = 10
RESEND_COOLDOWN_SECONDS = 60


class PhoneVerificationService:
    """Six-digit SMS codes stored in sms_verification_codes"""

    def __init__(self, db: Database):
        self.db = db

    async def seconds_until_resend(self, user_id: str) -> int:
        """0 when a new code may be sent, else the remaining cooldown"""
        latest = await self.db.fetch_one(
            """
            SELECT created_at FROM sms_verification_codes
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT 1
            """,
            user_id,
        )
        if not latest:
            return 0

        elapsed = (datetime.now(timezone.utc) - latest["created_at"]).total_seconds()
        return max(0, int(RESEND_COOLDOWN_SECONDS - elapsed))

    async def create_code(self, user_id: str, phone_number: str) -> str:
        code = generate_numeric_code()
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=CODE_EXPIRE_MINUTES)

        await self.db.execute(
            """
            INSERT INTO sms_verification_codes (user_id, phone_number, code, expires_at)
            VALUES ($1, $2, $3, $4)
            """,
            user_id,
            phone_number,
            code,
            expires_at,
        )
        return code

    async def verify_code(self, user_id: str, phone_number: str, code: str) -> bool:
        """Consume the newest matching unexpired code and mark the phone verified"""
        async with self.db.transaction() as conn:
            record: Optional[dict] = await conn.fetchrow(
                """
                SELECT id FROM sms_verification_codes
                WHERE phone_number = $1 AND code = $2 AND verified = FALSE
                  AND expires_at > CURRENT_TIMESTAMP
                ORDER BY created_at DESC
                LIMIT 1
                FOR UPDATE
                """,
                phone_number,
                code,
            )
            if not record:
                return False

            await conn.execute(
                "UPDATE sms_verification_codes SET verified = TRUE WHERE id = $1", record["id"]
            )
            await conn.execute(
                """
                UPDATE profiles
                SET phone_number = $1, phone_verified = TRUE, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = $2
                """,
                phone_number,
                user_id,
            )

        logger.info(f"Phone verified for user {user_id}")
        return True
