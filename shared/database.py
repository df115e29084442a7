# shared/database.py
import logging
import os
import ssl
from contextlib import asynccontextmanager
from typing import Any, Optional

import asyncpg

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    # Build from individual components if DATABASE_URL not provided
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "luna")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")

    DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
elif DATABASE_URL.startswith("postgres://"):
    # asyncpg only accepts the postgresql:// scheme
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# Connection pool
_pool: Optional[asyncpg.Pool] = None

# Pool sizing per service, overridable via DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE
POOL_SIZES = {
    "identity": (3, 10),
    "messaging": (2, 8),
    "ledger": (4, 12),
    "couples": (3, 10),
    "chat": (3, 10),
    "tracking": (2, 8),
    "admin": (1, 3),
}


class Database:
    """Database wrapper for asyncpg with connection pooling"""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def fetch_one(self, query: str, *args) -> Optional[dict[str, Any]]:
        """Fetch a single row"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
            return dict(row) if row else None

    async def fetch_all(self, query: str, *args) -> list[dict[str, Any]]:
        """Fetch multiple rows"""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
            return [dict(row) for row in rows]

    async def fetch_val(self, query: str, *args) -> Any:
        """Fetch the first column of the first row"""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def execute(self, query: str, *args) -> str:
        """Execute a query without returning results"""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def execute_schema(self, query: str, *args) -> str:
        """Execute a schema/DDL query with extended timeout"""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args, timeout=300)

    async def execute_many(self, query: str, args_list: list[tuple]) -> None:
        """Execute a query multiple times with different arguments"""
        async with self.pool.acquire() as conn:
            await conn.executemany(query, args_list)

    @asynccontextmanager
    async def transaction(self):
        """Context manager for database transactions"""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn


async def init_db():
    """Initialize database connection pool"""
    global _pool

    try:
        logger.info("Starting database initialization...")

        ssl_context = None
        environment = os.getenv("ENVIRONMENT", "development")

        if environment in ["production", "staging"]:
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        service_name = os.getenv("SERVICE_NAME", "unknown")
        default_min_size, default_max_size = POOL_SIZES.get(service_name, (2, 8))

        min_size = int(os.getenv("DB_POOL_MIN_SIZE", default_min_size))
        max_size = int(os.getenv("DB_POOL_MAX_SIZE", default_max_size))

        logger.info(
            f"Creating database connection pool for {service_name} service (min: {min_size}, max: {max_size})..."
        )
        _pool = await asyncpg.create_pool(
            DATABASE_URL,
            ssl=ssl_context,
            min_size=min_size,
            max_size=max_size,
            max_queries=50000,
            max_cached_statement_lifetime=300,
            command_timeout=30,
            max_inactive_connection_lifetime=300,
        )
        logger.info("Database connection pool created successfully")

        skip_schema_init = os.getenv("SKIP_SCHEMA_INIT", "false").lower() == "true"
        if not skip_schema_init:
            logger.info("Starting schema creation/update...")
            await create_tables()
            logger.info("Schema creation/update completed")
        else:
            logger.info("Skipping schema initialization (SKIP_SCHEMA_INIT=true)")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        if _pool:
            await _pool.close()
            _pool = None
        raise


async def close_db():
    """Close database connection pool"""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None


async def get_db() -> Database:
    """Dependency to get database instance"""
    if not _pool:
        await init_db()
    return Database(_pool)


async def create_tables():
    """Create database tables if they don't exist"""
    db = await get_db()
    await db.execute("SELECT 1")
    logger.info("Database connection verified")

    # Profiles and roles
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS profiles (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID UNIQUE NOT NULL,
            display_name VARCHAR(100),
            avatar_url TEXT,
            gender VARCHAR(50),
            phone_number VARCHAR(20),
            phone_verified BOOLEAN DEFAULT FALSE,
            sms_notifications_enabled BOOLEAN DEFAULT TRUE,
            sms_notification_preferences JSONB DEFAULT '{}',
            reminder_enabled BOOLEAN DEFAULT FALSE,
            reminder_time VARCHAR(5),
            weekly_insights_enabled BOOLEAN DEFAULT TRUE,
            referral_code VARCHAR(16) UNIQUE,
            suspended BOOLEAN DEFAULT FALSE,
            suspended_at TIMESTAMP WITH TIME ZONE,
            suspended_reason TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_profiles_phone ON profiles(phone_number);

        CREATE TABLE IF NOT EXISTS user_roles (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            role VARCHAR(20) NOT NULL,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(user_id, role)
        );

        CREATE TABLE IF NOT EXISTS admin_action_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            admin_id UUID NOT NULL,
            action VARCHAR(100) NOT NULL,
            target_type VARCHAR(50),
            target_id VARCHAR(100),
            details JSONB DEFAULT '{}',
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """
    )

    # SMS
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS sms_verification_codes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            phone_number VARCHAR(20) NOT NULL,
            code VARCHAR(6) NOT NULL,
            verified BOOLEAN DEFAULT FALSE,
            expires_at TIMESTAMP WITH TIME ZONE NOT NULL,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_sms_codes_lookup
        ON sms_verification_codes(phone_number, code, verified);

        CREATE TABLE IF NOT EXISTS scheduled_sms (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            created_by UUID NOT NULL,
            user_id UUID,
            phone_number VARCHAR(20),
            recipient_type VARCHAR(20) NOT NULL DEFAULT 'single',
            message TEXT NOT NULL,
            scheduled_at TIMESTAMP WITH TIME ZONE NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            sent_at TIMESTAMP WITH TIME ZONE,
            claimed_at TIMESTAMP WITH TIME ZONE,
            error_message TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_scheduled_sms_due
        ON scheduled_sms(status, scheduled_at);

        CREATE TABLE IF NOT EXISTS sms_delivery_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID,
            phone_number VARCHAR(20) NOT NULL,
            message TEXT,
            template_name VARCHAR(50),
            status VARCHAR(20) NOT NULL,
            twilio_sid VARCHAR(64),
            error_message TEXT,
            sent_by UUID,
            scheduled_sms_id UUID,
            sent_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_sms_logs_template
        ON sms_delivery_logs(template_name, sent_at DESC);

        CREATE TABLE IF NOT EXISTS sms_templates (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(100) NOT NULL,
            message TEXT NOT NULL,
            category VARCHAR(50),
            created_by UUID,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """
    )

    # Push and tracking
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS push_subscriptions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID,
            session_id VARCHAR(100),
            endpoint TEXT NOT NULL,
            p256dh TEXT NOT NULL,
            auth TEXT NOT NULL,
            is_active BOOLEAN DEFAULT TRUE,
            subscribed_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(user_id, endpoint)
        );

        CREATE TABLE IF NOT EXISTS automated_push_campaigns (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(100) NOT NULL,
            trigger_type VARCHAR(30) NOT NULL,
            title VARCHAR(200) NOT NULL,
            body TEXT,
            delay_minutes INTEGER NOT NULL DEFAULT 60,
            is_active BOOLEAN DEFAULT TRUE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS automated_push_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            campaign_id UUID NOT NULL,
            subscription_id UUID NOT NULL,
            session_id VARCHAR(100),
            status VARCHAR(20) NOT NULL,
            error_message TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_push_logs_pair
        ON automated_push_logs(campaign_id, subscription_id, created_at DESC);

        CREATE TABLE IF NOT EXISTS visitor_locations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            session_id VARCHAR(100) NOT NULL,
            user_id UUID,
            ip_address VARCHAR(64),
            city VARCHAR(100),
            region VARCHAR(100),
            country VARCHAR(100),
            country_code VARCHAR(5),
            latitude DOUBLE PRECISION,
            longitude DOUBLE PRECISION,
            timezone VARCHAR(64),
            user_agent TEXT,
            referrer TEXT,
            page_path TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS tracking_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            session_id VARCHAR(100) NOT NULL,
            user_id UUID,
            event_type VARCHAR(50) NOT NULL,
            event_name VARCHAR(100) NOT NULL,
            page_path TEXT,
            element_id VARCHAR(100),
            element_text TEXT,
            ip_address VARCHAR(64),
            city VARCHAR(100),
            region VARCHAR(100),
            country VARCHAR(100),
            country_code VARCHAR(5),
            user_agent TEXT,
            referrer TEXT,
            event_data JSONB DEFAULT '{}',
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_tracking_events_session
        ON tracking_events(session_id, event_type, created_at DESC);
    """
    )

    # Subscriptions, coins, minutes
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS subscription_tiers (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            slug VARCHAR(30) UNIQUE NOT NULL,
            name VARCHAR(100) NOT NULL,
            description TEXT,
            price_monthly NUMERIC(10, 2) NOT NULL DEFAULT 0,
            features JSONB DEFAULT '[]',
            limits JSONB DEFAULT '{}',
            is_active BOOLEAN DEFAULT TRUE,
            sort_order INTEGER DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS user_subscriptions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            tier_id UUID NOT NULL REFERENCES subscription_tiers(id),
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            source VARCHAR(20) NOT NULL DEFAULT 'stripe',
            started_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            expires_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_user_subscriptions_user
        ON user_subscriptions(user_id, status);

        CREATE TABLE IF NOT EXISTS user_coins (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID UNIQUE NOT NULL,
            balance INTEGER NOT NULL DEFAULT 0,
            lifetime_earned INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT check_coin_balance CHECK (balance >= 0)
        );

        CREATE TABLE IF NOT EXISTS coin_transactions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            amount INTEGER NOT NULL,
            transaction_type VARCHAR(50) NOT NULL,
            description TEXT,
            reference_id VARCHAR(255),
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_coin_transactions_user
        ON coin_transactions(user_id, created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_coin_transactions_reference
        ON coin_transactions(reference_id);

        CREATE TABLE IF NOT EXISTS user_minutes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID UNIQUE NOT NULL,
            minutes_balance INTEGER NOT NULL DEFAULT 0,
            lifetime_purchased INTEGER NOT NULL DEFAULT 0,
            lifetime_used INTEGER NOT NULL DEFAULT 0,
            last_subscription_grant TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT check_minutes_balance CHECK (minutes_balance >= 0)
        );

        CREATE TABLE IF NOT EXISTS minute_transactions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            amount INTEGER NOT NULL,
            transaction_type VARCHAR(50) NOT NULL,
            description TEXT,
            package_id VARCHAR(100),
            stripe_payment_intent_id VARCHAR(255),
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS minute_packages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(100) NOT NULL,
            minutes INTEGER NOT NULL,
            price_cents INTEGER NOT NULL,
            is_active BOOLEAN DEFAULT TRUE,
            sort_order INTEGER DEFAULT 0
        );
    """
    )

    # Referrals
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS referrals (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            referrer_id UUID NOT NULL,
            referred_user_id UUID UNIQUE NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            points_awarded INTEGER NOT NULL DEFAULT 0,
            converted_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS referral_points (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID UNIQUE NOT NULL,
            balance INTEGER NOT NULL DEFAULT 0,
            lifetime_earned INTEGER NOT NULL DEFAULT 0,
            total_referrals INTEGER NOT NULL DEFAULT 0,
            successful_conversions INTEGER NOT NULL DEFAULT 0,
            level VARCHAR(20) DEFAULT 'starter',
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT check_points_balance CHECK (balance >= 0)
        );

        CREATE TABLE IF NOT EXISTS referral_point_transactions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            amount INTEGER NOT NULL,
            transaction_type VARCHAR(50) NOT NULL,
            description TEXT,
            reference_id UUID,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS referral_redemptions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            points_spent INTEGER NOT NULL,
            reward_type VARCHAR(50) NOT NULL,
            months_granted INTEGER,
            subscription_extended_to TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """
    )

    # Couples
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS partner_links (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            partner_id UUID,
            invite_code VARCHAR(8) UNIQUE NOT NULL,
            invite_email VARCHAR(255),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            accepted_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS couples_game_sessions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            partner_link_id UUID NOT NULL REFERENCES partner_links(id) ON DELETE CASCADE,
            game_type VARCHAR(50) NOT NULL,
            current_card_index INTEGER NOT NULL DEFAULT 0,
            game_state JSONB NOT NULL DEFAULT '{}',
            started_by UUID NOT NULL,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(partner_link_id, game_type)
        );

        CREATE TABLE IF NOT EXISTS couples_game_history (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            partner_link_id UUID NOT NULL REFERENCES partner_links(id) ON DELETE CASCADE,
            game_type VARCHAR(50) NOT NULL,
            score INTEGER DEFAULT 0,
            matches INTEGER DEFAULT 0,
            total_questions INTEGER DEFAULT 0,
            played_by UUID NOT NULL,
            partner_played BOOLEAN DEFAULT FALSE,
            details JSONB DEFAULT '{}',
            completed_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS mood_entries (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            mood_level INTEGER NOT NULL,
            mood_label VARCHAR(50) NOT NULL,
            notes TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS shared_mood_entries (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            partner_link_id UUID NOT NULL REFERENCES partner_links(id) ON DELETE CASCADE,
            user_id UUID NOT NULL,
            mood_level INTEGER NOT NULL,
            mood_label VARCHAR(50) NOT NULL,
            notes TEXT,
            is_visible_to_partner BOOLEAN DEFAULT TRUE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS relationship_milestones (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            partner_link_id UUID NOT NULL REFERENCES partner_links(id) ON DELETE CASCADE,
            created_by UUID NOT NULL,
            title VARCHAR(200) NOT NULL,
            description TEXT,
            category VARCHAR(50) NOT NULL DEFAULT 'anniversary',
            icon VARCHAR(20),
            milestone_date DATE NOT NULL,
            is_recurring BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS time_capsule_messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            partner_link_id UUID NOT NULL REFERENCES partner_links(id) ON DELETE CASCADE,
            sender_id UUID NOT NULL,
            recipient_id UUID NOT NULL,
            title VARCHAR(200),
            message TEXT NOT NULL,
            deliver_at TIMESTAMP WITH TIME ZONE NOT NULL,
            is_delivered BOOLEAN NOT NULL DEFAULT FALSE,
            delivered_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_time_capsules_due
        ON time_capsule_messages(is_delivered, deliver_at);
    """
    )

    # Chat
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS conversations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            title VARCHAR(200),
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            role VARCHAR(20) NOT NULL,
            content TEXT NOT NULL,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_messages_conversation
        ON messages(conversation_id, created_at);
    """
    )

    # Admin-editable content
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS daily_questions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            question_text TEXT NOT NULL,
            category VARCHAR(50) NOT NULL,
            difficulty VARCHAR(20),
            is_active BOOLEAN DEFAULT TRUE,
            sort_order INTEGER DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS daily_affirmation_templates (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            message TEXT NOT NULL,
            account_type VARCHAR(20) NOT NULL DEFAULT 'personal',
            is_active BOOLEAN DEFAULT TRUE,
            sort_order INTEGER DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS relationship_tips (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title VARCHAR(200) NOT NULL,
            content TEXT NOT NULL,
            category VARCHAR(50) NOT NULL,
            author VARCHAR(100),
            is_active BOOLEAN DEFAULT TRUE,
            sort_order INTEGER DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS breathing_exercises (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title VARCHAR(200) NOT NULL,
            description TEXT,
            category VARCHAR(50),
            difficulty VARCHAR(20),
            inhale_seconds INTEGER NOT NULL,
            hold_seconds INTEGER NOT NULL DEFAULT 0,
            exhale_seconds INTEGER NOT NULL,
            cycles INTEGER NOT NULL DEFAULT 4,
            duration_seconds INTEGER NOT NULL,
            is_premium BOOLEAN DEFAULT FALSE,
            is_active BOOLEAN DEFAULT TRUE,
            sort_order INTEGER DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS journal_templates (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title VARCHAR(200) NOT NULL,
            description TEXT,
            category VARCHAR(50),
            prompts JSONB DEFAULT '[]',
            is_premium BOOLEAN DEFAULT FALSE,
            is_active BOOLEAN DEFAULT TRUE,
            sort_order INTEGER DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS mood_prompts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            prompt_text TEXT NOT NULL,
            mood_category VARCHAR(50),
            is_premium BOOLEAN DEFAULT FALSE,
            is_active BOOLEAN DEFAULT TRUE,
            sort_order INTEGER DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """
    )

    # Default tiers
    await db.execute_schema(
        """
        INSERT INTO subscription_tiers (slug, name, price_monthly, limits, sort_order)
        VALUES
            ('free', 'Free', 0, '{"messages_per_day": 5}', 0),
            ('pro', 'Pro', 4.99, '{"messages_per_day": -1}', 1),
            ('couples', 'Couples', 9.99, '{"messages_per_day": -1}', 2)
        ON CONFLICT (slug) DO NOTHING;
    """
    )

    logger.info("Database schema creation/update completed successfully")
