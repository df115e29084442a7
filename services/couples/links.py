# services/couples/links.py
import logging
from typing import Optional

import asyncpg
from fastapi import HTTPException

from services.couples.models import PartnerLink, PartnerLinkStatus
from shared.code_utils import generate_code
from shared.database import Database

logger = logging.getLogger(__name__)

INVITE_CODE_ATTEMPTS = 5


def other_member(link: dict, user_id: str) -> Optional[str]:
    partner = link["partner_id"] if str(link["user_id"]) == str(user_id) else link["user_id"]
    return str(partner) if partner else None


async def require_link_member(db: Database, link_id: str, user_id: str) -> dict:
    """Return the accepted link the caller belongs to, else 403"""
    link = await db.fetch_one(
        """
        SELECT * FROM partner_links
        WHERE id = $1 AND status = 'accepted' AND (user_id = $2 OR partner_id = $2)
        """,
        link_id,
        user_id,
    )
    if not link:
        raise HTTPException(status_code=403, detail="Not a member of this partner link")
    return link


class PartnerLinkService:
    def __init__(self, db: Database):
        self.db = db

    async def create_invite(self, user_id: str, email: Optional[str] = None) -> PartnerLink:
        active = await self.db.fetch_one(
            """
            SELECT id FROM partner_links
            WHERE status = 'accepted' AND (user_id = $1 OR partner_id = $1)
            """,
            user_id,
        )
        if active:
            raise HTTPException(status_code=400, detail="You are already linked with a partner")

        # Only one outstanding invite per user
        await self.db.execute(
            """
            UPDATE partner_links SET status = 'expired', updated_at = CURRENT_TIMESTAMP
            WHERE user_id = $1 AND status = 'pending'
            """,
            user_id,
        )

        for _ in range(INVITE_CODE_ATTEMPTS):
            try:
                row = await self.db.fetch_one(
                    """
                    INSERT INTO partner_links (user_id, invite_code, invite_email, status)
                    VALUES ($1, $2, $3, 'pending')
                    RETURNING *
                    """,
                    user_id,
                    generate_code(8),
                    email,
                )
                return PartnerLink(**row)
            except asyncpg.UniqueViolationError:
                logger.warning("Invite code collision, retrying")

        raise HTTPException(status_code=500, detail="Could not generate an invite code")

    async def accept_invite(self, user_id: str, invite_code: str) -> PartnerLink:
        invite = await self.db.fetch_one(
            "SELECT * FROM partner_links WHERE invite_code = $1 AND status = 'pending'",
            invite_code.upper(),
        )
        if not invite:
            raise HTTPException(status_code=404, detail="Invalid or expired invite code")
        if str(invite["user_id"]) == str(user_id):
            raise HTTPException(status_code=400, detail="You cannot accept your own invite")

        row = await self.db.fetch_one(
            """
            UPDATE partner_links
            SET partner_id = $1, status = 'accepted', accepted_at = CURRENT_TIMESTAMP,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = $2 AND status = 'pending'
            RETURNING *
            """,
            user_id,
            invite["id"],
        )
        if not row:
            raise HTTPException(status_code=409, detail="Invite was already used")

        logger.info(f"Partner link {row['id']} accepted by {user_id}")
        return PartnerLink(**row)

    async def get_status(self, user_id: str) -> PartnerLinkStatus:
        link = await self.db.fetch_one(
            """
            SELECT * FROM partner_links
            WHERE status = 'accepted' AND (user_id = $1 OR partner_id = $1)
            ORDER BY accepted_at DESC NULLS LAST
            LIMIT 1
            """,
            user_id,
        )
        if link:
            partner = await self.db.fetch_one(
                "SELECT display_name FROM profiles WHERE user_id = $1", other_member(link, user_id)
            )
            return PartnerLinkStatus(
                link=PartnerLink(**link),
                partner_name=(partner or {}).get("display_name"),
                is_linked=True,
            )

        pending = await self.db.fetch_one(
            """
            SELECT * FROM partner_links
            WHERE user_id = $1 AND status = 'pending'
            ORDER BY created_at DESC LIMIT 1
            """,
            user_id,
        )
        return PartnerLinkStatus(pending_invite=PartnerLink(**pending) if pending else None)

    async def unlink(self, link_id: str, user_id: str) -> PartnerLink:
        await require_link_member(self.db, link_id, user_id)
        row = await self.db.fetch_one(
            """
            UPDATE partner_links SET status = 'ended', updated_at = CURRENT_TIMESTAMP
            WHERE id = $1
            RETURNING *
            """,
            link_id,
        )
        logger.info(f"Partner link {link_id} ended by {user_id}")
        return PartnerLink(**row)
