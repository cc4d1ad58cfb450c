"""Database layer for the action agent.

This module provides SQLite database access with async operations.

Usage:
    from action_agent.db import DatabaseStore, Memory

    store = DatabaseStore("data/action_agent.db")
    await store.initialize()

    memory_id = await store.upsert_memory(
        Memory(
            user_id="user-1",
            channel_label="Gmail",
            ref_id="18c2f0a1",
            type="action",
            title="Pay the invoice by Friday",
            content={"text": "...", "importanceRating": 72},
        )
    )
"""

from action_agent.db.models import SCHEMA_VERSION, init_database, verify_schema
from action_agent.db.store import (
    ActivityLogEntry,
    Agent,
    DatabaseStore,
    DeviceToken,
    InviteCode,
    LLMLogEntry,
    Memory,
    OAuth2Connection,
    OAuth2Provider,
    User,
    UserJob,
    UserOrder,
    WhatsAppBinding,
)

__all__ = [
    # Models
    "SCHEMA_VERSION",
    "init_database",
    "verify_schema",
    # Store
    "DatabaseStore",
    # Dataclasses
    "ActivityLogEntry",
    "Agent",
    "DeviceToken",
    "InviteCode",
    "LLMLogEntry",
    "Memory",
    "OAuth2Connection",
    "OAuth2Provider",
    "User",
    "UserJob",
    "UserOrder",
    "WhatsAppBinding",
]
