"""Database store with CRUD operations for all tables.

This module provides the DatabaseStore class that encapsulates all database
operations for the action agent. It uses aiosqlite for async access and
provides type-safe operations with dataclasses.

Usage:
    from action_agent.db.store import DatabaseStore

    store = DatabaseStore("data/action_agent.db")
    await store.initialize()

    # Memory operations
    memory_id = await store.upsert_memory(memory)
    memories = await store.list_memories("user-1", status="active")

    # Invite codes
    codes = await store.create_invite_codes(count=5)
    await store.redeem_invite_code(codes[0].code, user_id="user-1")
"""

from __future__ import annotations

import json
import secrets
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Literal

import aiosqlite

from action_agent.agent.models import UserPortrait, UserProfile
from action_agent.core.errors import DatabaseError, InviteCodeError, MemoryConflictError
from action_agent.core.logging import get_correlation_id, get_logger
from action_agent.db.models import init_database

logger = get_logger(__name__)

# Invite codes avoid look-alike characters (0/O, 1/I/L)
INVITE_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"

# Format CURRENT_TIMESTAMP writes, so string comparisons in SQL line up
SQLITE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Type aliases
MemoryType = Literal["action", "memory", "fact", "task"]
MemoryStatus = Literal["active", "done", "ignored", "overridden"]
JobStatus = Literal["pending", "processing", "completed", "failed"]
OrderStatus = Literal["pending", "active", "expired", "cancelled"]
ConnectionStatus = Literal["active", "expired", "revoked", "error"]
InviteCodeStatus = Literal["active", "used", "expired", "disabled"]
DevicePlatform = Literal["ios", "android", "web", "desktop"]

MEMORY_STATUSES: tuple[str, ...] = ("active", "done", "ignored", "overridden")
MEMORY_TYPES: tuple[str, ...] = ("action", "memory", "fact", "task")


def _now() -> datetime:
    return datetime.now(UTC)


def _timestamp(value: datetime | None = None) -> str:
    """Render a datetime in SQLite CURRENT_TIMESTAMP format (UTC)."""
    value = value or _now()
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.strftime(SQLITE_TIMESTAMP_FORMAT)


def _epoch_ms(value: datetime | None = None) -> int:
    return int((value or _now()).timestamp() * 1000)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


def _loads(value: str | None, default: Any = None) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class User:
    """User record from the database."""

    id: str
    name: str | None = None
    email: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Memory:
    """User memory record (app_user_memories).

    One row per (channel_label, ref_id). `content` holds the action record
    in its stored camelCase shape.
    """

    user_id: str
    channel_label: str
    ref_id: str
    type: MemoryType
    title: str
    content: dict[str, Any]
    id: str | None = None
    metadata: dict[str, Any] | None = None
    due_date: datetime | None = None
    status: MemoryStatus = "active"
    labels: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    priority: int = 0
    description: str | None = None
    statistics: dict[str, float] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ActivityLogEntry:
    """Activity log entry from the database."""

    id: str
    user_id: str
    action: str
    integration_id: str
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = None


@dataclass
class InviteCode:
    """Invite code record from the database."""

    id: str
    code: str
    identifier: str | None = None
    status: InviteCodeStatus = "active"
    used_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None
    created_by: str | None = None


@dataclass
class DeviceToken:
    """Push token registered for a user device."""

    id: str
    user_id: str
    device_id: str
    token: str
    platform: DevicePlatform
    last_used_at: int
    device_name: str | None = None
    is_active: bool = True
    is_trusted: bool = False
    metadata: dict[str, Any] | None = None


@dataclass
class OAuth2Provider:
    """OAuth2 provider configuration."""

    id: str
    name: str
    display_name: str
    config: dict[str, Any]
    logo: str | None = None
    is_active: bool = True


@dataclass
class OAuth2Connection:
    """A user's connection to an OAuth2 provider."""

    id: str
    user_id: str
    provider_id: str
    credentials: dict[str, Any]
    status: ConnectionStatus = "active"
    expires_at: datetime | None = None
    error_message: str | None = None
    error_count: int = 0
    updated_at: datetime | None = None


@dataclass
class UserJob:
    """Async job record (app_user_jobs)."""

    id: str
    user_id: str
    job_type: str = "task_generation"
    status: JobStatus = "pending"
    context: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class UserOrder:
    """Subscription order record."""

    id: str
    user_id: str | None
    subscription_id: str
    plan_id: str
    amount: str
    start_date: datetime
    end_date: datetime
    currency: str = "CNY"
    status: OrderStatus = "pending"
    auto_renew: bool = False
    metadata: dict[str, Any] | None = None


@dataclass
class Agent:
    """Agent configuration record."""

    id: str
    name: str
    configuration: dict[str, Any]
    created_by: str
    description: str | None = None
    is_active: bool = True


@dataclass
class WhatsAppBinding:
    """One-time token binding a WhatsApp number to a user."""

    id: str
    token: str
    phone_number: str
    expires_at: int
    status: str = "active"
    used_by: str | None = None
    used_at: int | None = None


@dataclass
class LLMLogEntry:
    """LLM request log entry from the database."""

    id: int
    timestamp: datetime
    task_type: str | None = None
    model: str | None = None
    ref_id: str | None = None
    run_id: str | None = None
    prompt_json: dict[str, Any] | None = None
    response_json: dict[str, Any] | None = None
    tool_call_json: dict[str, Any] | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    duration_ms: int | None = None
    error: str | None = None


class DatabaseStore:
    """Database store for all action agent data.

    This class provides async CRUD operations for all database tables.
    It handles connection management, JSON serialization, and type conversion.

    Attributes:
        db_path: Path to the SQLite database file
        _initialized: Whether the database has been initialized
    """

    def __init__(self, db_path: str | Path):
        """Initialize the database store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed.

        This must be called before any other operations.
        """
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured database connection.

        Sets all required PRAGMAs for reliability and performance:
        - busy_timeout: 10s to handle concurrent access from CLI + API
        - foreign_keys: ON to enforce referential integrity
        - synchronous: NORMAL (safe with WAL, faster writes)
        - cache_size: 64MB for better read performance
        - temp_store: MEMORY for faster temp operations

        Usage:
            async with self._db() as db:
                await db.execute(...)
        """
        async with aiosqlite.connect(self.db_path) as db:
            # Reliability PRAGMAs
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA foreign_keys = ON")

            # Performance PRAGMAs (safe with WAL mode)
            await db.execute("PRAGMA synchronous = NORMAL")
            await db.execute("PRAGMA cache_size = -64000")  # 64MB
            await db.execute("PRAGMA temp_store = MEMORY")

            db.row_factory = aiosqlite.Row
            yield db

    async def checkpoint_wal(self) -> None:
        """Run a WAL checkpoint to keep WAL file size bounded."""
        try:
            async with self._db() as db:
                await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            logger.debug("wal_checkpoint_complete")
        except aiosqlite.Error as e:
            logger.warning("wal_checkpoint_failed", error=str(e))

    # =========================================================================
    # User Operations
    # =========================================================================

    async def upsert_user(
        self,
        user_id: str,
        name: str | None = None,
        email: str | None = None,
    ) -> None:
        """Insert a user or update its name/email.

        Args:
            user_id: User ID
            name: Display name
            email: Email address (unique across users)
        """
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_users (id, name, email)
                    VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = COALESCE(excluded.name, name),
                        email = COALESCE(excluded.email, email),
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (user_id, name, email),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to upsert user", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to upsert user {user_id}: {e}") from e

    async def get_user(self, user_id: str) -> User | None:
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM app_users WHERE id = ?", (user_id,))
                row = await cursor.fetchone()
                if row is None:
                    return None
                return User(
                    id=row["id"],
                    name=row["name"],
                    email=row["email"],
                    created_at=_parse_datetime(row["created_at"]),
                    updated_at=_parse_datetime(row["updated_at"]),
                )

        except aiosqlite.Error as e:
            logger.error("Failed to get user", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get user {user_id}: {e}") from e

    # =========================================================================
    # Profile and Portrait Operations
    # =========================================================================

    async def save_profile(self, profile: UserProfile) -> None:
        """Insert or replace a user's profile.

        JSON columns are written from the pydantic models, so extra keys in
        personalized_settings and location survive the round trip.

        Args:
            profile: UserProfile to persist (the user must exist)
        """

        def dump(model: Any) -> str | None:
            return model.model_dump_json() if model is not None else None

        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_user_profile (
                        user_id, avatar_url, bio, locale, timezone, location,
                        metadata, notification_settings, personalized_settings, sub_data
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        avatar_url = excluded.avatar_url,
                        bio = excluded.bio,
                        locale = excluded.locale,
                        timezone = excluded.timezone,
                        location = excluded.location,
                        metadata = excluded.metadata,
                        notification_settings = excluded.notification_settings,
                        personalized_settings = excluded.personalized_settings,
                        sub_data = excluded.sub_data,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        profile.user_id,
                        profile.avatar_url,
                        profile.bio,
                        profile.locale,
                        profile.timezone,
                        dump(profile.location),
                        dump(profile.metadata),
                        dump(profile.notification_settings),
                        dump(profile.personalized_settings),
                        dump(profile.sub_data),
                    ),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to save profile", user_id=profile.user_id, error=str(e))
            raise DatabaseError(f"Failed to save profile for {profile.user_id}: {e}") from e

    async def get_profile(self, user_id: str) -> UserProfile | None:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM app_user_profile WHERE user_id = ?", (user_id,)
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                return UserProfile.model_validate(
                    {
                        "user_id": row["user_id"],
                        "avatar_url": row["avatar_url"],
                        "bio": row["bio"],
                        "locale": row["locale"],
                        "timezone": row["timezone"],
                        "location": _loads(row["location"]),
                        "metadata": _loads(row["metadata"]),
                        "notification_settings": _loads(row["notification_settings"]),
                        "personalized_settings": _loads(row["personalized_settings"]),
                        "sub_data": _loads(row["sub_data"]),
                        "created_at": _parse_datetime(row["created_at"]),
                        "updated_at": _parse_datetime(row["updated_at"]),
                    }
                )

        except aiosqlite.Error as e:
            logger.error("Failed to get profile", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get profile for {user_id}: {e}") from e

    async def save_portrait(self, portrait: UserPortrait) -> None:
        """Insert or replace a portrait snapshot."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_user_portrait (
                        id, user_id, data, version, source, calculated_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        data = excluded.data,
                        version = excluded.version,
                        source = excluded.source,
                        calculated_at = excluded.calculated_at,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        portrait.id,
                        portrait.user_id,
                        portrait.data.model_dump_json(),
                        portrait.version,
                        portrait.source,
                        _timestamp(portrait.calculated_at),
                    ),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to save portrait", portrait_id=portrait.id, error=str(e))
            raise DatabaseError(f"Failed to save portrait {portrait.id}: {e}") from e

    async def get_latest_portrait(self, user_id: str) -> UserPortrait | None:
        """Get the most recently calculated portrait for a user."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM app_user_portrait
                    WHERE user_id = ?
                    ORDER BY calculated_at DESC, created_at DESC
                    LIMIT 1
                    """,
                    (user_id,),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                return UserPortrait(
                    id=row["id"],
                    user_id=row["user_id"],
                    data=_loads(row["data"], {}),
                    version=row["version"],
                    source=row["source"],
                    calculated_at=_parse_datetime(row["calculated_at"]),
                )

        except aiosqlite.Error as e:
            logger.error("Failed to get portrait", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get portrait for {user_id}: {e}") from e

    # =========================================================================
    # Memory Operations
    # =========================================================================

    async def upsert_memory(self, memory: Memory) -> str:
        """Insert a memory or update the row with the same (channel_label, ref_id).

        Args:
            memory: Memory to persist; `id` is generated when missing

        Returns:
            The ID of the stored row (the existing ID on update)

        Raises:
            MemoryConflictError: If another user already owns the (channel_label, ref_id) row
        """
        memory_id = memory.id or _new_id()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_user_memories (
                        id, user_id, channel_label, ref_id, metadata, type, title,
                        content, due_date, status, labels, tags, priority,
                        description, statistics
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(channel_label, ref_id) DO UPDATE SET
                        metadata = excluded.metadata,
                        type = excluded.type,
                        title = excluded.title,
                        content = excluded.content,
                        due_date = excluded.due_date,
                        labels = excluded.labels,
                        tags = excluded.tags,
                        priority = excluded.priority,
                        description = excluded.description,
                        statistics = excluded.statistics,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE app_user_memories.user_id = excluded.user_id
                    """,
                    (
                        memory_id,
                        memory.user_id,
                        memory.channel_label,
                        memory.ref_id,
                        _dumps(memory.metadata),
                        memory.type,
                        memory.title,
                        _dumps(memory.content),
                        _timestamp(memory.due_date) if memory.due_date else None,
                        memory.status,
                        _dumps(memory.labels),
                        _dumps(memory.tags),
                        memory.priority,
                        memory.description,
                        _dumps(memory.statistics),
                    ),
                )
                await db.commit()

                cursor = await db.execute(
                    """
                    SELECT id, user_id FROM app_user_memories
                    WHERE channel_label = ? AND ref_id = ?
                    """,
                    (memory.channel_label, memory.ref_id),
                )
                row = await cursor.fetchone()
                if row["user_id"] != memory.user_id:
                    raise MemoryConflictError(memory.channel_label, memory.ref_id)
                return row["id"]

        except aiosqlite.Error as e:
            logger.error(
                "Failed to upsert memory",
                channel_label=memory.channel_label,
                ref_id=memory.ref_id,
                error=str(e),
            )
            raise DatabaseError(
                f"Failed to upsert memory {memory.channel_label}/{memory.ref_id}: {e}"
            ) from e

    async def get_memory(self, memory_id: str) -> Memory | None:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM app_user_memories WHERE id = ?", (memory_id,)
                )
                row = await cursor.fetchone()
                return self._row_to_memory(row) if row else None

        except aiosqlite.Error as e:
            logger.error("Failed to get memory", memory_id=memory_id, error=str(e))
            raise DatabaseError(f"Failed to get memory {memory_id}: {e}") from e

    async def get_memory_by_ref(self, channel_label: str, ref_id: str) -> Memory | None:
        """Get the memory ingested from a given provider message."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM app_user_memories WHERE channel_label = ? AND ref_id = ?",
                    (channel_label, ref_id),
                )
                row = await cursor.fetchone()
                return self._row_to_memory(row) if row else None

        except aiosqlite.Error as e:
            logger.error(
                "Failed to get memory by ref",
                channel_label=channel_label,
                ref_id=ref_id,
                error=str(e),
            )
            raise DatabaseError(f"Failed to get memory {channel_label}/{ref_id}: {e}") from e

    async def list_memories(
        self,
        user_id: str,
        status: MemoryStatus | None = None,
        memory_type: MemoryType | None = None,
        limit: int = 50,
    ) -> list[Memory]:
        """List a user's memories, highest priority first.

        Args:
            user_id: User ID
            status: Filter by status
            memory_type: Filter by type
            limit: Maximum number of rows

        Returns:
            List of Memory dataclasses
        """
        try:
            async with self._db() as db:
                query = "SELECT * FROM app_user_memories WHERE user_id = ?"
                params: list[Any] = [user_id]

                if status:
                    query += " AND status = ?"
                    params.append(status)

                if memory_type:
                    query += " AND type = ?"
                    params.append(memory_type)

                query += " ORDER BY priority DESC, created_at DESC LIMIT ?"
                params.append(limit)

                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
                return [self._row_to_memory(row) for row in rows]

        except aiosqlite.Error as e:
            logger.error("Failed to list memories", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to list memories for {user_id}: {e}") from e

    async def update_memory_status(self, memory_id: str, status: MemoryStatus) -> bool:
        """Set a memory's status.

        Returns:
            True if a row was updated, False if the memory does not exist

        Raises:
            ValueError: If status is not a known memory status
        """
        if status not in MEMORY_STATUSES:
            raise ValueError(f"Invalid memory status: {status!r}")

        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE app_user_memories
                    SET status = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (status, memory_id),
                )
                await db.commit()
                updated = cursor.rowcount > 0

            if updated:
                logger.info("memory_status_updated", memory_id=memory_id, status=status)
            return updated

        except aiosqlite.Error as e:
            logger.error("Failed to update memory status", memory_id=memory_id, error=str(e))
            raise DatabaseError(f"Failed to update memory {memory_id}: {e}") from e

    def _row_to_memory(self, row: aiosqlite.Row) -> Memory:
        """Convert a database row to a Memory dataclass."""
        return Memory(
            id=row["id"],
            user_id=row["user_id"],
            channel_label=row["channel_label"],
            ref_id=row["ref_id"],
            metadata=_loads(row["metadata"]),
            type=row["type"],
            title=row["title"],
            content=_loads(row["content"], {}),
            due_date=_parse_datetime(row["due_date"]),
            status=row["status"],
            labels=_loads(row["labels"], []),
            tags=_loads(row["tags"], []),
            priority=row["priority"] or 0,
            description=row["description"],
            statistics=_loads(row["statistics"], {}),
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )

    # =========================================================================
    # Activity Log Operations
    # =========================================================================

    async def log_activity(
        self,
        user_id: str,
        action: str,
        integration_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Record a user-facing activity entry.

        Args:
            user_id: User the activity belongs to
            action: What happened (e.g. 'action_ingested')
            integration_id: Source integration (channel label)
            metadata: Additional details

        Returns:
            The activity log ID
        """
        entry_id = _new_id()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_activity_logs (id, user_id, action, integration_id, metadata)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (entry_id, user_id, action, integration_id, _dumps(metadata)),
                )
                await db.commit()
                return entry_id

        except aiosqlite.Error as e:
            logger.error("Failed to log activity", user_id=user_id, action=action, error=str(e))
            raise DatabaseError(f"Failed to log activity: {e}") from e

    async def get_activity_logs(self, user_id: str, limit: int = 100) -> list[ActivityLogEntry]:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM app_activity_logs
                    WHERE user_id = ?
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT ?
                    """,
                    (user_id, limit),
                )
                rows = await cursor.fetchall()
                return [
                    ActivityLogEntry(
                        id=row["id"],
                        user_id=row["user_id"],
                        action=row["action"],
                        integration_id=row["integration_id"],
                        metadata=_loads(row["metadata"]),
                        created_at=_parse_datetime(row["created_at"]),
                    )
                    for row in rows
                ]

        except aiosqlite.Error as e:
            logger.error("Failed to get activity logs", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get activity logs: {e}") from e

    # =========================================================================
    # Invite Code Operations
    # =========================================================================

    async def create_invite_codes(
        self,
        count: int = 1,
        code_length: int = 8,
        expire_after_days: int | None = 30,
        identifier: str | None = None,
        created_by: str | None = None,
    ) -> list[InviteCode]:
        """Generate unique invite codes.

        Args:
            count: Number of codes to create
            code_length: Characters per code
            expire_after_days: Days until expiry (None for no expiry)
            identifier: Free-form tag (e.g. campaign name)
            created_by: User who created the codes

        Returns:
            The created InviteCode records
        """
        expires_at = _now() + timedelta(days=expire_after_days) if expire_after_days else None
        created: list[InviteCode] = []

        try:
            async with self._db() as db:
                while len(created) < count:
                    code = "".join(
                        secrets.choice(INVITE_CODE_ALPHABET) for _ in range(code_length)
                    )
                    invite = InviteCode(
                        id=_new_id(),
                        code=code,
                        identifier=identifier,
                        expires_at=expires_at,
                        created_by=created_by,
                    )
                    cursor = await db.execute(
                        """
                        INSERT OR IGNORE INTO app_invite_codes (
                            id, code, identifier, status, expires_at, created_by
                        ) VALUES (?, ?, ?, 'active', ?, ?)
                        """,
                        (
                            invite.id,
                            invite.code,
                            invite.identifier,
                            _timestamp(expires_at) if expires_at else None,
                            invite.created_by,
                        ),
                    )
                    # Collision on the unique code: draw again
                    if cursor.rowcount:
                        created.append(invite)
                await db.commit()

            logger.info("invite_codes_created", count=len(created), identifier=identifier)
            return created

        except aiosqlite.Error as e:
            logger.error("Failed to create invite codes", error=str(e))
            raise DatabaseError(f"Failed to create invite codes: {e}") from e

    async def get_invite_code(self, code: str) -> InviteCode | None:
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM app_invite_codes WHERE code = ?", (code,))
                row = await cursor.fetchone()
                return self._row_to_invite_code(row) if row else None

        except aiosqlite.Error as e:
            logger.error("Failed to get invite code", error=str(e))
            raise DatabaseError(f"Failed to get invite code: {e}") from e

    async def redeem_invite_code(self, code: str, user_id: str | None = None) -> InviteCode:
        """Mark an active invite code as used.

        An active code past its expiry is flipped to 'expired' and rejected.

        Args:
            code: The invite code
            user_id: Redeeming user (recorded in the identifier when given)

        Returns:
            The updated InviteCode

        Raises:
            InviteCodeError: If the code is unknown, used, disabled or expired
        """
        invite = await self.get_invite_code(code)
        if invite is None:
            raise InviteCodeError(f"Invite code {code} does not exist", code, "not_found")
        if invite.status != "active":
            raise InviteCodeError(f"Invite code {code} is {invite.status}", code, invite.status)

        now = _now()
        try:
            async with self._db() as db:
                if invite.expires_at is not None and invite.expires_at <= now:
                    await db.execute(
                        "UPDATE app_invite_codes SET status = 'expired' WHERE id = ?",
                        (invite.id,),
                    )
                    await db.commit()
                    raise InviteCodeError(f"Invite code {code} has expired", code, "expired")

                cursor = await db.execute(
                    """
                    UPDATE app_invite_codes
                    SET status = 'used', used_at = ?, identifier = COALESCE(?, identifier)
                    WHERE id = ? AND status = 'active'
                    """,
                    (_timestamp(now), user_id, invite.id),
                )
                await db.commit()
                # Lost a race with another redemption
                if cursor.rowcount == 0:
                    raise InviteCodeError(f"Invite code {code} is used", code, "used")

        except aiosqlite.Error as e:
            logger.error("Failed to redeem invite code", error=str(e))
            raise DatabaseError(f"Failed to redeem invite code: {e}") from e

        logger.info("invite_code_redeemed", invite_id=invite.id, user_id=user_id)
        invite.status = "used"
        invite.used_at = now
        if user_id:
            invite.identifier = user_id
        return invite

    async def disable_invite_code(self, code: str) -> bool:
        """Disable an active code. Returns False if no active code matched."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE app_invite_codes SET status = 'disabled'
                    WHERE code = ? AND status = 'active'
                    """,
                    (code,),
                )
                await db.commit()
                return cursor.rowcount > 0

        except aiosqlite.Error as e:
            logger.error("Failed to disable invite code", error=str(e))
            raise DatabaseError(f"Failed to disable invite code: {e}") from e

    def _row_to_invite_code(self, row: aiosqlite.Row) -> InviteCode:
        return InviteCode(
            id=row["id"],
            code=row["code"],
            identifier=row["identifier"],
            status=row["status"],
            used_at=_parse_datetime(row["used_at"]),
            expires_at=_parse_datetime(row["expires_at"]),
            created_at=_parse_datetime(row["created_at"]),
            created_by=row["created_by"],
        )

    # =========================================================================
    # Device Token Operations
    # =========================================================================

    async def register_device(
        self,
        user_id: str,
        device_id: str,
        token: str,
        platform: DevicePlatform,
        device_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DeviceToken:
        """Register a device token, or refresh it for a known (user, device).

        Re-registering reactivates a previously deactivated device.

        Returns:
            The stored DeviceToken
        """
        last_used_at = _epoch_ms()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_device_tokens (
                        id, user_id, device_id, token, platform, device_name,
                        last_used_at, is_active, metadata
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?)
                    ON CONFLICT(user_id, device_id) DO UPDATE SET
                        token = excluded.token,
                        platform = excluded.platform,
                        device_name = COALESCE(excluded.device_name, device_name),
                        last_used_at = excluded.last_used_at,
                        is_active = 1,
                        metadata = COALESCE(excluded.metadata, metadata),
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        _new_id(),
                        user_id,
                        device_id,
                        token,
                        platform,
                        device_name,
                        last_used_at,
                        _dumps(metadata),
                    ),
                )
                await db.commit()

                cursor = await db.execute(
                    "SELECT * FROM app_device_tokens WHERE user_id = ? AND device_id = ?",
                    (user_id, device_id),
                )
                row = await cursor.fetchone()
                return self._row_to_device(row)

        except aiosqlite.Error as e:
            logger.error(
                "Failed to register device", user_id=user_id, device_id=device_id, error=str(e)
            )
            raise DatabaseError(f"Failed to register device {device_id}: {e}") from e

    async def touch_device(self, user_id: str, device_id: str) -> None:
        """Update a device's last_used_at to now."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    UPDATE app_device_tokens
                    SET last_used_at = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE user_id = ? AND device_id = ?
                    """,
                    (_epoch_ms(), user_id, device_id),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to touch device", device_id=device_id, error=str(e))
            raise DatabaseError(f"Failed to touch device {device_id}: {e}") from e

    async def deactivate_device(self, user_id: str, device_id: str) -> bool:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE app_device_tokens
                    SET is_active = 0, updated_at = CURRENT_TIMESTAMP
                    WHERE user_id = ? AND device_id = ?
                    """,
                    (user_id, device_id),
                )
                await db.commit()
                return cursor.rowcount > 0

        except aiosqlite.Error as e:
            logger.error("Failed to deactivate device", device_id=device_id, error=str(e))
            raise DatabaseError(f"Failed to deactivate device {device_id}: {e}") from e

    async def get_active_devices(self, user_id: str) -> list[DeviceToken]:
        """Get a user's active devices, most recently used first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM app_device_tokens
                    WHERE user_id = ? AND is_active = 1
                    ORDER BY last_used_at DESC
                    """,
                    (user_id,),
                )
                rows = await cursor.fetchall()
                return [self._row_to_device(row) for row in rows]

        except aiosqlite.Error as e:
            logger.error("Failed to get devices", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get devices for {user_id}: {e}") from e

    def _row_to_device(self, row: aiosqlite.Row) -> DeviceToken:
        return DeviceToken(
            id=row["id"],
            user_id=row["user_id"],
            device_id=row["device_id"],
            token=row["token"],
            platform=row["platform"],
            device_name=row["device_name"],
            last_used_at=row["last_used_at"],
            is_active=bool(row["is_active"]),
            is_trusted=bool(row["is_trusted"]),
            metadata=_loads(row["metadata"]),
        )

    # =========================================================================
    # OAuth2 Operations
    # =========================================================================

    async def upsert_oauth_provider(self, provider: OAuth2Provider) -> str:
        """Insert or update a provider by name. Returns the provider ID."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_oauth2_providers (
                        id, name, display_name, logo, config, is_active
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        display_name = excluded.display_name,
                        logo = excluded.logo,
                        config = excluded.config,
                        is_active = excluded.is_active,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        provider.id,
                        provider.name,
                        provider.display_name,
                        provider.logo,
                        _dumps(provider.config),
                        int(provider.is_active),
                    ),
                )
                await db.commit()

                cursor = await db.execute(
                    "SELECT id FROM app_oauth2_providers WHERE name = ?", (provider.name,)
                )
                row = await cursor.fetchone()
                return row["id"]

        except aiosqlite.Error as e:
            logger.error("Failed to upsert OAuth provider", name=provider.name, error=str(e))
            raise DatabaseError(f"Failed to upsert OAuth provider {provider.name}: {e}") from e

    async def get_oauth_provider(self, name: str) -> OAuth2Provider | None:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM app_oauth2_providers WHERE name = ?", (name,)
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                return OAuth2Provider(
                    id=row["id"],
                    name=row["name"],
                    display_name=row["display_name"],
                    logo=row["logo"],
                    config=_loads(row["config"], {}),
                    is_active=bool(row["is_active"]),
                )

        except aiosqlite.Error as e:
            logger.error("Failed to get OAuth provider", name=name, error=str(e))
            raise DatabaseError(f"Failed to get OAuth provider {name}: {e}") from e

    async def upsert_oauth_connection(
        self,
        user_id: str,
        provider_id: str,
        credentials: dict[str, Any],
        expires_at: datetime | None = None,
    ) -> OAuth2Connection:
        """Store fresh credentials for a (user, provider) pair.

        Resets status to 'active' and clears any recorded error.
        """
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_oauth2_connections (
                        id, user_id, provider_id, credentials, status, expires_at
                    ) VALUES (?, ?, ?, ?, 'active', ?)
                    ON CONFLICT(user_id, provider_id) DO UPDATE SET
                        credentials = excluded.credentials,
                        status = 'active',
                        expires_at = excluded.expires_at,
                        error_message = NULL,
                        error_count = 0,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        _new_id(),
                        user_id,
                        provider_id,
                        _dumps(credentials),
                        _timestamp(expires_at) if expires_at else None,
                    ),
                )
                await db.commit()

            connection = await self.get_oauth_connection(user_id, provider_id)
            if connection is None:
                raise DatabaseError(
                    f"OAuth connection for {user_id}/{provider_id} missing after upsert"
                )
            return connection

        except aiosqlite.Error as e:
            logger.error(
                "Failed to upsert OAuth connection",
                user_id=user_id,
                provider_id=provider_id,
                error=str(e),
            )
            raise DatabaseError(f"Failed to upsert OAuth connection: {e}") from e

    async def get_oauth_connection(self, user_id: str, provider_id: str) -> OAuth2Connection | None:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM app_oauth2_connections
                    WHERE user_id = ? AND provider_id = ?
                    """,
                    (user_id, provider_id),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                return OAuth2Connection(
                    id=row["id"],
                    user_id=row["user_id"],
                    provider_id=row["provider_id"],
                    credentials=_loads(row["credentials"], {}),
                    status=row["status"],
                    expires_at=_parse_datetime(row["expires_at"]),
                    error_message=row["error_message"],
                    error_count=row["error_count"],
                    updated_at=_parse_datetime(row["updated_at"]),
                )

        except aiosqlite.Error as e:
            logger.error("Failed to get OAuth connection", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get OAuth connection: {e}") from e

    async def record_connection_error(self, connection_id: str, error_message: str) -> int:
        """Record a provider error on a connection.

        Returns:
            The new error count
        """
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    UPDATE app_oauth2_connections
                    SET status = 'error', error_message = ?, error_count = error_count + 1,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (error_message, connection_id),
                )
                await db.commit()

                cursor = await db.execute(
                    "SELECT error_count FROM app_oauth2_connections WHERE id = ?",
                    (connection_id,),
                )
                row = await cursor.fetchone()
                count = row["error_count"] if row else 0

            logger.warning(
                "oauth_connection_error",
                connection_id=connection_id,
                error_count=count,
                error=error_message,
            )
            return count

        except aiosqlite.Error as e:
            logger.error("Failed to record connection error", connection_id=connection_id)
            raise DatabaseError(f"Failed to record connection error: {e}") from e

    async def set_connection_status(
        self, connection_id: str, status: Literal["expired", "revoked"]
    ) -> None:
        """Mark a connection expired or revoked."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    UPDATE app_oauth2_connections
                    SET status = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (status, connection_id),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to set connection status", connection_id=connection_id)
            raise DatabaseError(f"Failed to set connection status: {e}") from e

    # =========================================================================
    # Job Operations
    # =========================================================================

    async def create_job(
        self,
        user_id: str,
        job_type: str = "task_generation",
        context: dict[str, Any] | None = None,
    ) -> str:
        """Create a pending job. Returns the job ID."""
        job_id = _new_id()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_user_jobs (id, user_id, job_type, status, context)
                    VALUES (?, ?, ?, 'pending', ?)
                    """,
                    (job_id, user_id, job_type, _dumps(context)),
                )
                await db.commit()
                return job_id

        except aiosqlite.Error as e:
            logger.error("Failed to create job", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to create job: {e}") from e

    async def start_job(self, job_id: str) -> bool:
        """Move a pending job to processing. Returns False if it was not pending."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE app_user_jobs
                    SET status = 'processing', updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND status = 'pending'
                    """,
                    (job_id,),
                )
                await db.commit()
                return cursor.rowcount > 0

        except aiosqlite.Error as e:
            logger.error("Failed to start job", job_id=job_id, error=str(e))
            raise DatabaseError(f"Failed to start job {job_id}: {e}") from e

    async def complete_job(self, job_id: str, result: dict[str, Any] | None = None) -> None:
        await self._finish_job(job_id, "completed", result=result)

    async def fail_job(self, job_id: str, error_message: str) -> None:
        await self._finish_job(job_id, "failed", error_message=error_message)

    async def _finish_job(
        self,
        job_id: str,
        status: Literal["completed", "failed"],
        result: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    UPDATE app_user_jobs
                    SET status = ?, result = ?, error_message = ?,
                        completed_at = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (status, _dumps(result), error_message, _timestamp(), job_id),
                )
                await db.commit()

            logger.info("job_finished", job_id=job_id, status=status)

        except aiosqlite.Error as e:
            logger.error("Failed to finish job", job_id=job_id, error=str(e))
            raise DatabaseError(f"Failed to finish job {job_id}: {e}") from e

    async def get_job(self, job_id: str) -> UserJob | None:
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM app_user_jobs WHERE id = ?", (job_id,))
                row = await cursor.fetchone()
                if row is None:
                    return None
                return UserJob(
                    id=row["id"],
                    user_id=row["user_id"],
                    job_type=row["job_type"],
                    status=row["status"],
                    context=_loads(row["context"]),
                    result=_loads(row["result"]),
                    error_message=row["error_message"],
                    created_at=_parse_datetime(row["created_at"]),
                    completed_at=_parse_datetime(row["completed_at"]),
                )

        except aiosqlite.Error as e:
            logger.error("Failed to get job", job_id=job_id, error=str(e))
            raise DatabaseError(f"Failed to get job {job_id}: {e}") from e

    # =========================================================================
    # Order Operations
    # =========================================================================

    async def save_order(self, order: UserOrder) -> None:
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_user_orders (
                        id, user_id, subscription_id, plan_id, amount, currency,
                        status, start_date, end_date, auto_renew, metadata
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        order.id,
                        order.user_id,
                        order.subscription_id,
                        order.plan_id,
                        order.amount,
                        order.currency,
                        order.status,
                        _timestamp(order.start_date),
                        _timestamp(order.end_date),
                        int(order.auto_renew),
                        _dumps(order.metadata),
                    ),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to save order", order_id=order.id, error=str(e))
            raise DatabaseError(f"Failed to save order {order.id}: {e}") from e

    async def get_user_orders(self, user_id: str) -> list[UserOrder]:
        """Get a user's orders, newest first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM app_user_orders
                    WHERE user_id = ?
                    ORDER BY start_date DESC
                    """,
                    (user_id,),
                )
                rows = await cursor.fetchall()
                return [
                    UserOrder(
                        id=row["id"],
                        user_id=row["user_id"],
                        subscription_id=row["subscription_id"],
                        plan_id=row["plan_id"],
                        amount=row["amount"],
                        currency=row["currency"],
                        status=row["status"],
                        start_date=_parse_datetime(row["start_date"]),
                        end_date=_parse_datetime(row["end_date"]),
                        auto_renew=bool(row["auto_renew"]),
                        metadata=_loads(row["metadata"]),
                    )
                    for row in rows
                ]

        except aiosqlite.Error as e:
            logger.error("Failed to get orders", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to get orders for {user_id}: {e}") from e

    async def update_order_status(self, order_id: str, status: OrderStatus) -> bool:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE app_user_orders
                    SET status = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (status, order_id),
                )
                await db.commit()
                return cursor.rowcount > 0

        except aiosqlite.Error as e:
            logger.error("Failed to update order", order_id=order_id, error=str(e))
            raise DatabaseError(f"Failed to update order {order_id}: {e}") from e

    # =========================================================================
    # Agent Operations
    # =========================================================================

    async def save_agent(self, agent: Agent) -> None:
        """Insert or update an agent configuration by name."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_agents (
                        id, name, description, configuration, is_active, created_by
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        description = excluded.description,
                        configuration = excluded.configuration,
                        is_active = excluded.is_active,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        agent.id,
                        agent.name,
                        agent.description,
                        _dumps(agent.configuration),
                        int(agent.is_active),
                        agent.created_by,
                    ),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to save agent", name=agent.name, error=str(e))
            raise DatabaseError(f"Failed to save agent {agent.name}: {e}") from e

    async def get_agent(self, name: str) -> Agent | None:
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM app_agents WHERE name = ?", (name,))
                row = await cursor.fetchone()
                if row is None:
                    return None
                return Agent(
                    id=row["id"],
                    name=row["name"],
                    description=row["description"],
                    configuration=_loads(row["configuration"], {}),
                    is_active=bool(row["is_active"]),
                    created_by=row["created_by"],
                )

        except aiosqlite.Error as e:
            logger.error("Failed to get agent", name=name, error=str(e))
            raise DatabaseError(f"Failed to get agent {name}: {e}") from e

    # =========================================================================
    # Messaging Operations
    # =========================================================================

    async def mark_message_processed(
        self, message_id: str, phone_number: str, body: dict[str, Any]
    ) -> bool:
        """Record an inbound message as processed.

        Returns:
            True if newly recorded, False if the message was already processed
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT OR IGNORE INTO app_processed_messages (message_id, phone_number, body)
                    VALUES (?, ?, ?)
                    """,
                    (message_id, phone_number, _dumps(body)),
                )
                await db.commit()
                return cursor.rowcount > 0

        except aiosqlite.Error as e:
            logger.error("Failed to mark message processed", message_id=message_id)
            raise DatabaseError(f"Failed to mark message {message_id} processed: {e}") from e

    async def create_whatsapp_binding(
        self, phone_number: str, ttl_minutes: int = 15
    ) -> WhatsAppBinding:
        """Create a one-time binding token for a phone number."""
        binding = WhatsAppBinding(
            id=_new_id(),
            token=secrets.token_urlsafe(16),
            phone_number=phone_number,
            expires_at=_epoch_ms(_now() + timedelta(minutes=ttl_minutes)),
        )
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_whatsapp_binding (id, token, phone_number, status, expires_at)
                    VALUES (?, ?, ?, 'active', ?)
                    """,
                    (binding.id, binding.token, binding.phone_number, binding.expires_at),
                )
                await db.commit()
                return binding

        except aiosqlite.Error as e:
            logger.error("Failed to create WhatsApp binding", error=str(e))
            raise DatabaseError(f"Failed to create WhatsApp binding: {e}") from e

    async def consume_whatsapp_binding(self, token: str, user_id: str) -> WhatsAppBinding | None:
        """Bind a token to a user.

        Returns:
            The updated binding, or None if the token is unknown, used or expired
        """
        now_ms = _epoch_ms()
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE app_whatsapp_binding
                    SET status = 'used', used_by = ?, used_at = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE token = ? AND status = 'active' AND expires_at > ?
                    """,
                    (user_id, now_ms, token, now_ms),
                )
                await db.commit()
                if cursor.rowcount == 0:
                    return None

                cursor = await db.execute(
                    "SELECT * FROM app_whatsapp_binding WHERE token = ?", (token,)
                )
                row = await cursor.fetchone()
                return WhatsAppBinding(
                    id=row["id"],
                    token=row["token"],
                    phone_number=row["phone_number"],
                    expires_at=row["expires_at"],
                    status=row["status"],
                    used_by=row["used_by"],
                    used_at=row["used_at"],
                )

        except aiosqlite.Error as e:
            logger.error("Failed to consume WhatsApp binding", error=str(e))
            raise DatabaseError(f"Failed to consume WhatsApp binding: {e}") from e

    # =========================================================================
    # LLM Log Operations
    # =========================================================================

    async def log_llm_request(
        self,
        task_type: str,
        model: str,
        prompt: dict[str, Any] | list[dict[str, Any]],
        response: dict[str, Any] | None = None,
        tool_call: dict[str, Any] | None = None,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
        duration_ms: int | None = None,
        ref_id: str | None = None,
        error: str | None = None,
    ) -> int:
        """Log an LLM request for debugging.

        Args:
            task_type: Type of task ('action_extraction')
            model: Model string used
            prompt: The prompt sent to Claude
            response: The response from Claude
            tool_call: Extracted tool call result
            input_tokens: Input token count
            output_tokens: Output token count
            duration_ms: Request duration in milliseconds
            ref_id: Provider reference ID of the message (if applicable)
            error: Error message (if failed)

        Returns:
            The log entry ID
        """
        try:
            run_id = get_correlation_id()

            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO llm_request_log (
                        task_type, model, ref_id, run_id,
                        prompt_json, response_json, tool_call_json,
                        input_tokens, output_tokens, duration_ms, error
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task_type,
                        model,
                        ref_id,
                        run_id,
                        json.dumps(prompt),
                        json.dumps(response) if response else None,
                        json.dumps(tool_call) if tool_call else None,
                        input_tokens,
                        output_tokens,
                        duration_ms,
                        error,
                    ),
                )
                await db.commit()
                return cursor.lastrowid

        except aiosqlite.Error as e:
            logger.error("Failed to log LLM request", task_type=task_type, error=str(e))
            raise DatabaseError(f"Failed to log LLM request: {e}") from e

    async def get_llm_logs(
        self,
        limit: int = 100,
        ref_id: str | None = None,
        run_id: str | None = None,
    ) -> list[LLMLogEntry]:
        """Get LLM request logs with optional filters, newest first."""
        try:
            async with self._db() as db:
                query = "SELECT * FROM llm_request_log WHERE 1=1"
                params: list[Any] = []

                if ref_id:
                    query += " AND ref_id = ?"
                    params.append(ref_id)

                if run_id:
                    query += " AND run_id = ?"
                    params.append(run_id)

                query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
                params.append(limit)

                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
                return [self._row_to_llm_log(row) for row in rows]

        except aiosqlite.Error as e:
            logger.error("Failed to get LLM logs", error=str(e))
            raise DatabaseError(f"Failed to get LLM logs: {e}") from e

    async def prune_llm_logs(self, retention_days: int) -> int:
        """Delete LLM logs older than the retention period.

        Returns:
            Number of entries deleted
        """
        try:
            cutoff = _timestamp(_now() - timedelta(days=retention_days))

            async with self._db() as db:
                cursor = await db.execute(
                    "DELETE FROM llm_request_log WHERE timestamp < ?",
                    (cutoff,),
                )
                await db.commit()

                deleted = cursor.rowcount
                if deleted:
                    logger.info(
                        "Pruned LLM logs",
                        deleted=deleted,
                        retention_days=retention_days,
                    )
                return deleted

        except aiosqlite.Error as e:
            logger.error("Failed to prune LLM logs", error=str(e))
            raise DatabaseError(f"Failed to prune LLM logs: {e}") from e

    def _row_to_llm_log(self, row: aiosqlite.Row) -> LLMLogEntry:
        """Convert a database row to an LLMLogEntry dataclass."""
        return LLMLogEntry(
            id=row["id"],
            timestamp=_parse_datetime(row["timestamp"]) or _now(),
            task_type=row["task_type"],
            model=row["model"],
            ref_id=row["ref_id"],
            run_id=row["run_id"],
            prompt_json=_loads(row["prompt_json"]),
            response_json=_loads(row["response_json"]),
            tool_call_json=_loads(row["tool_call_json"]),
            input_tokens=row["input_tokens"],
            output_tokens=row["output_tokens"],
            duration_ms=row["duration_ms"],
            error=row["error"],
        )
