# services/chat/conversations.py
from typing import Optional

from fastapi import HTTPException

from shared.database import Database

TITLE_LENGTH = 50


def title_from_message(content: str) -> str:
    text = " ".join(content.split())
    return text if len(text) <= TITLE_LENGTH else text[: TITLE_LENGTH - 3].rstrip() + "..."


class ConversationStore:
    def __init__(self, db: Database):
        self.db = db

    async def create(self, user_id: str, title: Optional[str] = None) -> dict:
        return await self.db.fetch_one(
            "INSERT INTO conversations (user_id, title) VALUES ($1, $2) RETURNING *",
            user_id,
            title,
        )

    async def get_owned(self, conversation_id: str, user_id: str) -> dict:
        conversation = await self.db.fetch_one(
            "SELECT * FROM conversations WHERE id = $1 AND user_id = $2",
            conversation_id,
            user_id,
        )
        if not conversation:
            raise HTTPException(status_code=404, detail="Conversation not found")
        return conversation

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[dict]:
        return await self.db.fetch_all(
            """
            SELECT * FROM conversations WHERE user_id = $1
            ORDER BY updated_at DESC LIMIT $2
            """,
            user_id,
            limit,
        )

    async def messages(self, conversation_id: str) -> list[dict]:
        return await self.db.fetch_all(
            """
            SELECT * FROM messages WHERE conversation_id = $1
            ORDER BY created_at ASC
            """,
            conversation_id,
        )

    async def add_message(self, conversation_id: str, role: str, content: str) -> dict:
        async with self.db.transaction() as conn:
            message = await conn.fetchrow(
                """
                INSERT INTO messages (conversation_id, role, content)
                VALUES ($1, $2, $3)
                RETURNING *
                """,
                conversation_id,
                role,
                content,
            )
            await conn.execute(
                "UPDATE conversations SET updated_at = CURRENT_TIMESTAMP WHERE id = $1",
                conversation_id,
            )
        return dict(message)
