"""SQLite database schema and initialization for the action agent.

Tables (JSON columns are TEXT holding serialized JSON, timestamps are ISO-8601):
- app_users: user identities every other table references
- app_user_profile: locale, timezone, location, personalization
- app_user_portrait: dynamically computed user metrics
- app_user_orders: subscription orders
- app_user_jobs: async job records (e.g. task generation)
- app_agents: agent configurations
- app_user_memories: actions/memories/facts/tasks, unique per channel + ref
- app_oauth2_providers / app_oauth2_connections: OAuth provider configs and
  per-user connections
- app_activity_logs: user-facing audit trail
- app_device_tokens: push tokens per user device
- app_whatsapp_binding: one-time WhatsApp binding tokens
- app_processed_messages: idempotency markers for inbound messages
- app_invite_codes: invite codes
- llm_request_log: Claude API call logging for debugging

Usage:
    from action_agent.db.models import init_database

    await init_database("data/action_agent.db")
"""

import stat
from pathlib import Path

import aiosqlite

from action_agent.core.errors import DatabaseError
from action_agent.core.logging import get_logger

logger = get_logger(__name__)

# Schema version for migrations (increment when schema changes)
SCHEMA_VERSION = 1

REQUIRED_TABLES = (
    "app_users",
    "app_user_profile",
    "app_user_portrait",
    "app_user_orders",
    "app_user_jobs",
    "app_agents",
    "app_user_memories",
    "app_oauth2_providers",
    "app_oauth2_connections",
    "app_activity_logs",
    "app_device_tokens",
    "app_whatsapp_binding",
    "app_processed_messages",
    "app_invite_codes",
    "llm_request_log",
)

SCHEMA_SQL = """
-- MUST be set before creating tables. Persists across connections.
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS app_users (
    id TEXT PRIMARY KEY,
    name TEXT,
    email TEXT UNIQUE,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS app_user_profile (
    user_id TEXT PRIMARY KEY REFERENCES app_users(id) ON DELETE CASCADE,
    avatar_url TEXT,
    bio TEXT,
    locale TEXT DEFAULT 'en',
    timezone TEXT,
    location TEXT,                          -- JSON: UserLocation
    metadata TEXT,                          -- JSON: name, email, ...
    notification_settings TEXT,             -- JSON: push, phone, whatsapp
    personalized_settings TEXT,             -- JSON: PersonalizedSettings
    sub_data TEXT,                          -- JSON: subscription summary
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS app_user_portrait (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES app_users(id) ON DELETE CASCADE,
    data TEXT NOT NULL,                     -- JSON: PortraitData
    version TEXT,
    source TEXT,                            -- 'scheduled_job', 'manual_calculation', 'api_trigger'
    calculated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS user_portrait_user_id_idx ON app_user_portrait(user_id);
CREATE INDEX IF NOT EXISTS user_portrait_version_idx ON app_user_portrait(version);
CREATE INDEX IF NOT EXISTS user_portrait_source_idx ON app_user_portrait(source);

CREATE TABLE IF NOT EXISTS app_user_orders (
    id TEXT PRIMARY KEY,                    -- Order number, e.g. 'ORD-2024-001'
    user_id TEXT REFERENCES app_users(id) ON DELETE CASCADE,
    subscription_id TEXT NOT NULL,
    plan_id TEXT NOT NULL,
    amount TEXT NOT NULL,                   -- String for exact decimal amounts
    currency TEXT NOT NULL DEFAULT 'CNY',
    status TEXT NOT NULL DEFAULT 'pending', -- 'pending', 'active', 'expired', 'cancelled'
    start_date DATETIME NOT NULL,
    end_date DATETIME NOT NULL,
    auto_renew INTEGER NOT NULL DEFAULT 0,
    metadata TEXT,                          -- JSON: payment provider details
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS user_orders_user_id_idx ON app_user_orders(user_id);
CREATE INDEX IF NOT EXISTS user_orders_subscription_id_idx ON app_user_orders(subscription_id);
CREATE INDEX IF NOT EXISTS user_orders_status_idx ON app_user_orders(status);
CREATE INDEX IF NOT EXISTS user_orders_start_date_idx ON app_user_orders(start_date);

CREATE TABLE IF NOT EXISTS app_user_jobs (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES app_users(id) ON DELETE CASCADE,
    job_type TEXT NOT NULL DEFAULT 'task_generation',
    status TEXT NOT NULL DEFAULT 'pending', -- 'pending', 'processing', 'completed', 'failed'
    context TEXT,                           -- JSON: source, ...
    result TEXT,                            -- JSON
    error_message TEXT,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    completed_at DATETIME
);

CREATE INDEX IF NOT EXISTS user_jobs_user_id_idx ON app_user_jobs(user_id);
CREATE INDEX IF NOT EXISTS user_jobs_status_idx ON app_user_jobs(status);
CREATE INDEX IF NOT EXISTS user_jobs_job_type_idx ON app_user_jobs(job_type);
CREATE INDEX IF NOT EXISTS user_jobs_created_at_idx ON app_user_jobs(created_at);

CREATE TABLE IF NOT EXISTS app_agents (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    configuration TEXT NOT NULL,            -- JSON: AgentConfiguration
    is_active INTEGER NOT NULL DEFAULT 1,
    created_by TEXT NOT NULL REFERENCES app_users(id) ON DELETE CASCADE,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT agents_name_unique UNIQUE (name)
);

CREATE INDEX IF NOT EXISTS agents_created_by_idx ON app_agents(created_by);
CREATE INDEX IF NOT EXISTS agents_is_active_idx ON app_agents(is_active);

CREATE TABLE IF NOT EXISTS app_user_memories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES app_users(id) ON DELETE CASCADE,
    channel_label TEXT NOT NULL,            -- e.g. 'Gmail'
    ref_id TEXT NOT NULL,                   -- Provider reference ID (e.g. Gmail message ID)
    metadata TEXT,                          -- JSON
    type TEXT NOT NULL CHECK (type IN ('action', 'memory', 'fact', 'task')),
    title TEXT NOT NULL,
    content TEXT NOT NULL,                  -- JSON: MemoryContent
    due_date DATETIME,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK (status IN ('active', 'done', 'ignored', 'overridden')),
    labels TEXT DEFAULT '[]',               -- JSON: list[str]
    tags TEXT DEFAULT '[]',                 -- JSON: list[str]
    priority INTEGER DEFAULT 0,
    description TEXT,
    statistics TEXT DEFAULT '{}',           -- JSON: dict[str, number]
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT user_memories_channel_ref_unique UNIQUE (channel_label, ref_id)
);

CREATE INDEX IF NOT EXISTS user_memories_user_id_idx ON app_user_memories(user_id);
CREATE INDEX IF NOT EXISTS user_memories_channel_label_idx ON app_user_memories(channel_label);
CREATE INDEX IF NOT EXISTS user_memories_ref_id_idx ON app_user_memories(ref_id);
CREATE INDEX IF NOT EXISTS user_memories_type_idx ON app_user_memories(type);
CREATE INDEX IF NOT EXISTS user_memories_status_idx ON app_user_memories(status);
CREATE INDEX IF NOT EXISTS user_memories_priority_idx ON app_user_memories(priority);
CREATE INDEX IF NOT EXISTS user_memories_created_at_idx ON app_user_memories(created_at);

CREATE TABLE IF NOT EXISTS app_oauth2_providers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,              -- google, microsoft, notion, github, ...
    display_name TEXT NOT NULL,
    logo TEXT,
    config TEXT NOT NULL,                   -- JSON: OAuth2ProviderConfig
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS app_oauth2_connections (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES app_users(id) ON DELETE CASCADE,
    provider_id TEXT NOT NULL REFERENCES app_oauth2_providers(id) ON DELETE CASCADE,
    credentials TEXT NOT NULL,              -- JSON: OAuth2 credentials
    status TEXT NOT NULL DEFAULT 'active',  -- 'active', 'expired', 'revoked', 'error'
    expires_at DATETIME,
    error_message TEXT,
    error_count INTEGER NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT user_provider_unique UNIQUE (user_id, provider_id)
);

CREATE INDEX IF NOT EXISTS oauth2_connections_user_id_idx ON app_oauth2_connections(user_id);
CREATE INDEX IF NOT EXISTS oauth2_connections_provider_id_idx
    ON app_oauth2_connections(provider_id);
CREATE INDEX IF NOT EXISTS oauth2_connections_status_idx ON app_oauth2_connections(status);
CREATE INDEX IF NOT EXISTS oauth2_connections_expires_at_idx
    ON app_oauth2_connections(expires_at);

CREATE TABLE IF NOT EXISTS app_activity_logs (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES app_users(id) ON DELETE CASCADE,
    action TEXT NOT NULL,
    integration_id TEXT NOT NULL,
    metadata TEXT,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS activity_logs_user_id_idx ON app_activity_logs(user_id);

CREATE TABLE IF NOT EXISTS app_device_tokens (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES app_users(id) ON DELETE CASCADE,
    device_id TEXT NOT NULL,
    token TEXT NOT NULL,
    platform TEXT NOT NULL,                 -- 'ios', 'android', 'web', 'desktop'
    device_name TEXT,
    last_used_at INTEGER NOT NULL,          -- Epoch milliseconds
    is_active INTEGER NOT NULL DEFAULT 1,
    is_trusted INTEGER NOT NULL DEFAULT 0,
    metadata TEXT,                          -- JSON: ip_address, user_agent, device_type, location
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT user_device_unique UNIQUE (user_id, device_id)
);

CREATE INDEX IF NOT EXISTS device_user_id_idx ON app_device_tokens(user_id);
CREATE INDEX IF NOT EXISTS device_platform_idx ON app_device_tokens(platform);
CREATE INDEX IF NOT EXISTS device_last_used_idx ON app_device_tokens(last_used_at);

CREATE TABLE IF NOT EXISTS app_whatsapp_binding (
    id TEXT PRIMARY KEY,
    token TEXT NOT NULL UNIQUE,
    phone_number TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',  -- 'active', 'used', 'expired'
    expires_at INTEGER NOT NULL,            -- Epoch milliseconds
    used_by TEXT REFERENCES app_users(id) ON DELETE CASCADE,
    used_at INTEGER,                        -- Epoch milliseconds
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS app_processed_messages (
    message_id TEXT PRIMARY KEY,
    phone_number TEXT NOT NULL,
    body TEXT NOT NULL,                     -- JSON
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS processed_messages_phone_number_idx
    ON app_processed_messages(phone_number);

CREATE TABLE IF NOT EXISTS app_invite_codes (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    identifier TEXT,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK (status IN ('active', 'used', 'expired', 'disabled')),
    used_at DATETIME,
    expires_at DATETIME,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    created_by TEXT REFERENCES app_users(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS invite_codes_status_idx ON app_invite_codes(status);
CREATE INDEX IF NOT EXISTS invite_codes_identifier_idx ON app_invite_codes(identifier);
CREATE INDEX IF NOT EXISTS invite_codes_created_at_idx ON app_invite_codes(created_at);

-- LLM request/response log for debugging extraction issues
CREATE TABLE IF NOT EXISTS llm_request_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
    task_type TEXT,                         -- 'action_extraction'
    model TEXT,
    ref_id TEXT,                            -- Provider reference ID of the message
    run_id TEXT,                            -- Correlation ID
    prompt_json TEXT,
    response_json TEXT,
    tool_call_json TEXT,
    input_tokens INTEGER,
    output_tokens INTEGER,
    duration_ms INTEGER,
    error TEXT                              -- NULL on success
);

CREATE INDEX IF NOT EXISTS idx_llm_log_timestamp ON llm_request_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_llm_log_ref ON llm_request_log(ref_id);
CREATE INDEX IF NOT EXISTS idx_llm_log_run ON llm_request_log(run_id);
"""


async def init_database(db_path: str | Path) -> None:
    """Initialize the SQLite database with schema and WAL mode.

    Creates the database file if it doesn't exist, enables WAL mode for
    concurrent access, and creates all tables and indexes.

    Args:
        db_path: Path to the SQLite database file

    Raises:
        DatabaseError: If database initialization fails
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            journal_mode = await db.execute("PRAGMA journal_mode")
            mode = await journal_mode.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning(
                    "WAL mode not enabled",
                    requested="wal",
                    actual=mode[0],
                    db_path=str(db_path),
                )

            await db.executescript(SCHEMA_SQL)
            await db.commit()

            cursor = await db.execute("SELECT COUNT(*) FROM sqlite_master WHERE type='table'")
            table_count = (await cursor.fetchone())[0]

        # Owner read/write only: profiles and OAuth credentials live here
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        for suffix in ["-wal", "-shm"]:
            wal_file = db_path.with_suffix(db_path.suffix + suffix)
            if wal_file.exists():
                wal_file.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info(
            "Database initialized",
            db_path=str(db_path),
            schema_version=SCHEMA_VERSION,
            tables_created=table_count,
        )

    except aiosqlite.Error as e:
        logger.error(
            "Database initialization failed",
            db_path=str(db_path),
            error=str(e),
        )
        raise DatabaseError(
            f"Failed to initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the database file is not corrupted."
        ) from e


async def verify_schema(db_path: str | Path) -> bool:
    """Verify that the database has all required tables.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        True if all tables exist, False otherwise
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing_tables = {row[0] for row in await cursor.fetchall()}

            missing = set(REQUIRED_TABLES) - existing_tables
            if missing:
                logger.warning(
                    "Missing database tables",
                    missing=sorted(missing),
                    db_path=str(db_path),
                )
                return False

            return True

    except aiosqlite.Error as e:
        logger.error(
            "Schema verification failed",
            db_path=str(db_path),
            error=str(e),
        )
        return False
