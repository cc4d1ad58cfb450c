"""Ingest service: run the agent on one inbound message and persist the action.

Pipeline per message:
1. Resolve the channel (fails fast on unknown labels)
2. Skip if (channel, ref_id) has already been ingested
3. Load the user's profile and latest portrait
4. Normalize and extract via run_action_agent
5. Store the action as a user memory (upsert on channel + ref_id)
6. Write an activity log entry

Every run gets a UUID4 run_id set as the logging correlation ID, so log
lines and llm_request_log rows of one ingest share it.

Usage:
    from action_agent.engine.ingest import IngestService

    service = IngestService(extractor=extractor, store=db_store)
    result = await service.ingest(
        user_id="user-1",
        channel="Gmail",
        raw_input=gmail_message,
        ref_id=gmail_message["id"],
    )
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from action_agent.agent.channels import parse_channel
from action_agent.agent.models import UserProfile
from action_agent.agent.pipeline import run_action_agent
from action_agent.core.errors import MemoryConflictError, UserNotFoundError
from action_agent.core.logging import correlation_scope, get_logger
from action_agent.db.store import Memory

if TYPE_CHECKING:
    from action_agent.agent.channels import Channel
    from action_agent.agent.extractor import ActionExtractor
    from action_agent.agent.models import ActionRecord
    from action_agent.db.store import DatabaseStore

logger = get_logger(__name__)

ACTIVITY_ACTION_INGESTED = "action_ingested"

IngestStatus = Literal["ingested", "extracted", "no_content", "skipped"]


@dataclass
class IngestResult:
    """Result of ingesting a single message.

    status is 'ingested' (stored), 'extracted' (save=False), 'no_content'
    (nothing to extract) or 'skipped' (already ingested).
    """

    run_id: str
    channel: Channel
    status: IngestStatus
    ref_id: str | None = None
    action: ActionRecord | None = None
    estimate: int = 0
    memory_id: str | None = None
    duration_ms: int = 0


class IngestService:
    """Runs the action agent for stored users and persists the outcome.

    Attributes:
        _extractor: ActionExtractor used for every message
        _store: DatabaseStore for profiles, memories and activity logs
    """

    def __init__(self, extractor: ActionExtractor, store: DatabaseStore):
        self._extractor = extractor
        self._store = store

    async def ingest(
        self,
        user_id: str,
        channel: Channel | str,
        raw_input: Any,
        ref_id: str | None = None,
        save: bool = True,
    ) -> IngestResult:
        """Extract an action from one message and optionally store it.

        Args:
            user_id: Owner of the message (must exist in app_users)
            channel: Source channel or its label
            raw_input: Channel-specific raw message
            ref_id: Provider reference ID; defaults to raw_input["id"] when present
            save: Persist the action as a memory

        Returns:
            IngestResult describing what happened

        Raises:
            UnsupportedChannelError: If the channel label is unknown
            UserNotFoundError: If the user does not exist
            ValueError: If save is requested without any ref_id
            anthropic.APIError: If the model call fails
            ActionValidationError: If the model output is invalid
            DatabaseError: If persistence fails
        """
        run_id = str(uuid.uuid4())
        with correlation_scope(run_id):
            return await self._run(run_id, user_id, channel, raw_input, ref_id, save)

    async def _run(
        self,
        run_id: str,
        user_id: str,
        channel: Channel | str,
        raw_input: Any,
        ref_id: str | None,
        save: bool,
    ) -> IngestResult:
        start_time = time.monotonic()
        try:
            resolved = parse_channel(channel)
            ref_id = ref_id or _ref_from_input(raw_input)
            if save and not ref_id:
                raise ValueError(
                    "ref_id is required to save an action. "
                    "Pass the provider message ID (e.g. the Gmail message id)."
                )

            result = IngestResult(run_id=run_id, channel=resolved, status="extracted", ref_id=ref_id)
            logger.info("ingest_start", user_id=user_id, channel=str(resolved), ref_id=ref_id)

            existing = await self._store.get_memory_by_ref(str(resolved), ref_id) if save else None
            if existing is not None:
                if existing.user_id != user_id:
                    raise MemoryConflictError(str(resolved), ref_id)
                result.status = "skipped"
                logger.info("ingest_skipped_existing", channel=str(resolved), ref_id=ref_id)
                return result

            profile = await self._load_profile(user_id)
            portrait = await self._store.get_latest_portrait(user_id)

            outcome = await run_action_agent(
                channel=resolved,
                raw_input=raw_input,
                profile=profile,
                extractor=self._extractor,
                portrait=portrait,
                ref_id=ref_id,
            )
            result.estimate = outcome.estimate
            result.action = outcome.action

            if outcome.action is None:
                result.status = "no_content"
                return result

            if save:
                result.memory_id = await self._persist(
                    user_id, resolved, ref_id, outcome.action, outcome.estimate, run_id
                )
                result.status = "ingested"

            return result

        except Exception as e:
            logger.error(
                "ingest_failed",
                user_id=user_id,
                ref_id=ref_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        finally:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            logger.info("ingest_complete", user_id=user_id, ref_id=ref_id, duration_ms=duration_ms)

    async def _load_profile(self, user_id: str) -> UserProfile:
        """Load the stored profile, falling back to a bare one for known users."""
        profile = await self._store.get_profile(user_id)
        if profile is not None:
            return profile

        user = await self._store.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        logger.warning("profile_missing", user_id=user_id)
        return UserProfile(
            user_id=user_id,
            metadata={"name": user.name, "email": user.email},
        )

    async def _persist(
        self,
        user_id: str,
        channel: Channel,
        ref_id: str,
        action: ActionRecord,
        estimate: int,
        run_id: str,
    ) -> str:
        memory = Memory(
            user_id=user_id,
            channel_label=str(channel),
            ref_id=ref_id,
            type="action",
            title=action.summary,
            content=action.to_content(),
            labels=list(action.labels),
            priority=estimate,
            metadata={"run_id": run_id, "estimate": estimate},
        )
        memory_id = await self._store.upsert_memory(memory)
        await self._store.log_activity(
            user_id=user_id,
            action=ACTIVITY_ACTION_INGESTED,
            integration_id=str(channel),
            metadata={
                "memory_id": memory_id,
                "ref_id": ref_id,
                "importance_rating": action.importance_rating,
            },
        )
        logger.info(
            "action_stored",
            memory_id=memory_id,
            ref_id=ref_id,
            estimate=estimate,
        )
        return memory_id


def _ref_from_input(raw_input: Any) -> str | None:
    """Provider ID carried in the raw message itself (Gmail 'id')."""
    if isinstance(raw_input, dict):
        value = raw_input.get("id")
        if value is not None and str(value).strip():
            return str(value)
    return None
