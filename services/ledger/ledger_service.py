# services/ledger/ledger_service.py
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis.asyncio as redis
from fastapi import HTTPException

from services.ledger.models import (
    CoinBalance,
    CoinTransaction,
    CoinTransactionList,
    CoinTransactionResponse,
    CoinTransactionType,
    MinuteBalance,
    MinuteTransactionType,
)
from shared.database import Database
from shared.redis_client import RedisCache, publish_json

logger = logging.getLogger(__name__)

# Free voice minutes granted to paid plans once per period
PLAN_FREE_MINUTES = {"pro": 5, "couples": 10}
SUBSCRIPTION_GRANT_PERIOD = timedelta(days=30)


async def credit_coins(
    conn,
    user_id: str,
    amount: int,
    transaction_type: str,
    description: str,
    reference_id: Optional[str] = None,
) -> tuple[int, dict]:
    """Add coins inside an open transaction. Returns (new_balance, transaction_row)."""
    row = await conn.fetchrow(
        """
        INSERT INTO user_coins (user_id, balance, lifetime_earned)
        VALUES ($1, $2, $2)
        ON CONFLICT (user_id) DO UPDATE
        SET balance = user_coins.balance + EXCLUDED.balance,
            lifetime_earned = user_coins.lifetime_earned + EXCLUDED.balance,
            updated_at = CURRENT_TIMESTAMP
        RETURNING balance
        """,
        user_id,
        amount,
    )
    transaction = await conn.fetchrow(
        """
        INSERT INTO coin_transactions (user_id, amount, transaction_type, description, reference_id)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING *
        """,
        user_id,
        amount,
        transaction_type,
        description,
        reference_id,
    )
    return row["balance"], dict(transaction)


async def credit_minutes(
    conn,
    user_id: str,
    minutes: int,
    transaction_type: str,
    description: str,
    package_id: Optional[str] = None,
    payment_intent_id: Optional[str] = None,
    purchased: bool = True,
) -> int:
    """Add minutes inside an open transaction and return the new balance"""
    row = await conn.fetchrow(
        """
        INSERT INTO user_minutes (user_id, minutes_balance, lifetime_purchased)
        VALUES ($1, $2, $3)
        ON CONFLICT (user_id) DO UPDATE
        SET minutes_balance = user_minutes.minutes_balance + EXCLUDED.minutes_balance,
            lifetime_purchased = user_minutes.lifetime_purchased + EXCLUDED.lifetime_purchased,
            updated_at = CURRENT_TIMESTAMP
        RETURNING minutes_balance
        """,
        user_id,
        minutes,
        minutes if purchased else 0,
    )
    await conn.execute(
        """
        INSERT INTO minute_transactions
            (user_id, amount, transaction_type, description, package_id, stripe_payment_intent_id)
        VALUES ($1, $2, $3, $4, $5, $6)
        """,
        user_id,
        minutes,
        transaction_type,
        description,
        package_id,
        payment_intent_id,
    )
    return row["minutes_balance"]


def subscription_grant_due(
    last_grant: Optional[datetime], now: Optional[datetime] = None
) -> bool:
    """Monthly plan minutes are granted at most once per 30 days"""
    if last_grant is None:
        return True
    now = now or datetime.now(timezone.utc)
    return now - last_grant >= SUBSCRIPTION_GRANT_PERIOD


class LedgerService:
    """Coin and minute balances"""

    def __init__(self, db: Database, redis_client: redis.Redis):
        self.db = db
        self.redis = redis_client
        self.balance_cache = RedisCache(redis_client, "balance")

    async def _publish_balance(self, user_id: str, old_balance: int, new_balance: int) -> None:
        await self.balance_cache.delete(f"coins:{user_id}")
        await publish_json(
            self.redis,
            f"balance_update:{user_id}",
            {"user_id": user_id, "old_balance": old_balance, "new_balance": new_balance},
        )

    # Coins

    async def get_coin_balance(self, user_id: str, use_cache: bool = True) -> CoinBalance:
        if use_cache:
            cached = await self.balance_cache.get(f"coins:{user_id}")
            if cached:
                return CoinBalance(**json.loads(cached))

        row = await self.db.fetch_one(
            "SELECT user_id, balance, lifetime_earned FROM user_coins WHERE user_id = $1", user_id
        )
        balance = CoinBalance(**row) if row else CoinBalance(user_id=user_id, balance=0)

        await self.balance_cache.set(f"coins:{user_id}", balance.model_dump_json(), ttl=300)
        return balance

    async def earn_coins(
        self,
        user_id: str,
        amount: int,
        description: str,
        reference_id: Optional[str] = None,
        transaction_type: str = CoinTransactionType.EARN.value,
    ) -> CoinTransactionResponse:
        async with self.db.transaction() as conn:
            new_balance, transaction = await credit_coins(
                conn, user_id, amount, transaction_type, description, reference_id
            )

        await self._publish_balance(user_id, new_balance - amount, new_balance)
        return CoinTransactionResponse(
            transaction=CoinTransaction(**transaction),
            new_balance=new_balance,
            previous_balance=new_balance - amount,
        )

    async def spend_coins(
        self, user_id: str, amount: int, description: str, reference_id: Optional[str] = None
    ) -> CoinTransactionResponse:
        """Deduct coins. The balance row stays locked until the debit is written."""
        async with self.db.transaction() as conn:
            row = await conn.fetchrow(
                "SELECT balance FROM user_coins WHERE user_id = $1 FOR UPDATE", user_id
            )
            current_balance = row["balance"] if row else 0

            if current_balance < amount:
                raise HTTPException(status_code=400, detail="Insufficient coins")

            new_balance = current_balance - amount
            await conn.execute(
                """
                UPDATE user_coins SET balance = $1, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = $2
                """,
                new_balance,
                user_id,
            )
            transaction = await conn.fetchrow(
                """
                INSERT INTO coin_transactions
                    (user_id, amount, transaction_type, description, reference_id)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING *
                """,
                user_id,
                -amount,
                CoinTransactionType.SPEND.value,
                description,
                reference_id,
            )

        await self._publish_balance(user_id, current_balance, new_balance)
        logger.info(f"User {user_id} spent {amount} coins: {description}")
        return CoinTransactionResponse(
            transaction=CoinTransaction(**dict(transaction)),
            new_balance=new_balance,
            previous_balance=current_balance,
        )

    async def get_coin_transactions(
        self, user_id: str, page: int = 1, limit: int = 20, transaction_type: Optional[str] = None
    ) -> CoinTransactionList:
        conditions = ["user_id = $1"]
        params: list = [user_id]

        if transaction_type:
            params.append(transaction_type)
            conditions.append(f"transaction_type = ${len(params)}")

        where_clause = " AND ".join(conditions)

        count_row = await self.db.fetch_one(
            f"SELECT COUNT(*) AS total FROM coin_transactions WHERE {where_clause}", *params
        )
        total = count_row["total"] if count_row else 0

        offset = (page - 1) * limit
        rows = await self.db.fetch_all(
            f"""
            SELECT * FROM coin_transactions
            WHERE {where_clause}
            ORDER BY created_at DESC
            LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            """,
            *params,
            limit,
            offset,
        )

        return CoinTransactionList(
            transactions=[CoinTransaction(**row) for row in rows],
            total=total,
            page=page,
            limit=limit,
            has_more=offset + len(rows) < total,
        )

    # Minutes

    async def get_minute_balance(self, user_id: str) -> MinuteBalance:
        row = await self.db.fetch_one(
            """
            SELECT user_id, minutes_balance, lifetime_purchased, lifetime_used,
                   last_subscription_grant
            FROM user_minutes WHERE user_id = $1
            """,
            user_id,
        )
        return MinuteBalance(**row) if row else MinuteBalance(user_id=user_id, minutes_balance=0)

    async def consume_minutes(
        self, user_id: str, minutes: int, description: Optional[str] = None
    ) -> MinuteBalance:
        async with self.db.transaction() as conn:
            row = await conn.fetchrow(
                "SELECT minutes_balance FROM user_minutes WHERE user_id = $1 FOR UPDATE", user_id
            )
            if not row or row["minutes_balance"] < minutes:
                raise HTTPException(status_code=400, detail="Insufficient minutes")

            updated = await conn.fetchrow(
                """
                UPDATE user_minutes
                SET minutes_balance = minutes_balance - $1,
                    lifetime_used = lifetime_used + $1,
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_id = $2
                RETURNING user_id, minutes_balance, lifetime_purchased, lifetime_used,
                          last_subscription_grant
                """,
                minutes,
                user_id,
            )
            await conn.execute(
                """
                INSERT INTO minute_transactions (user_id, amount, transaction_type, description)
                VALUES ($1, $2, $3, $4)
                """,
                user_id,
                -minutes,
                MinuteTransactionType.USAGE.value,
                description or f"Used {minutes} minutes",
            )

        return MinuteBalance(**dict(updated))

    async def grant_subscription_minutes(self, user_id: str, plan: str) -> int:
        """Grant the plan's monthly free minutes if due. Returns minutes granted."""
        minutes = PLAN_FREE_MINUTES.get(plan)
        if not minutes:
            return 0

        async with self.db.transaction() as conn:
            row = await conn.fetchrow(
                "SELECT last_subscription_grant FROM user_minutes WHERE user_id = $1 FOR UPDATE",
                user_id,
            )
            if row and not subscription_grant_due(row["last_subscription_grant"]):
                return 0

            await credit_minutes(
                conn,
                user_id,
                minutes,
                MinuteTransactionType.SUBSCRIPTION_BONUS.value,
                f"Monthly {plan} subscription bonus - {minutes} free minutes",
                purchased=False,
            )
            await conn.execute(
                """
                UPDATE user_minutes SET last_subscription_grant = CURRENT_TIMESTAMP
                WHERE user_id = $1
                """,
                user_id,
            )

        logger.info(f"Granted {minutes} subscription minutes to {user_id} ({plan})")
        return minutes
