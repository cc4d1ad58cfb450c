"""Agent entry point: normalize a raw message, then extract an action.

Usage:
    from action_agent.agent.pipeline import run_action_agent

    outcome = await run_action_agent(
        channel="Gmail",
        raw_input=gmail_message,
        profile=profile,
        extractor=extractor,
    )
    if outcome.action is None:
        ...  # nothing to extract, outcome.estimate == 0
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from action_agent.agent.channels import Channel, parse_channel
from action_agent.agent.normalizer import normalize
from action_agent.core.logging import get_logger

if TYPE_CHECKING:
    from action_agent.agent.extractor import ActionExtractor
    from action_agent.agent.models import ActionRecord, UserPortrait, UserProfile

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AgentOutcome:
    """Result of one agent call. action is None when there was nothing to extract."""

    action: ActionRecord | None
    estimate: int
    channel: Channel
    input_text: str | None = None


async def run_action_agent(
    *,
    channel: Channel | str,
    raw_input: Any,
    profile: UserProfile,
    extractor: ActionExtractor,
    portrait: UserPortrait | None = None,
    ref_id: str | None = None,
) -> AgentOutcome:
    """Convert one raw message into an action record and estimate.

    Args:
        channel: Source channel (Channel or its label)
        raw_input: Channel-specific raw message
        profile: User profile used as prompt context
        extractor: ActionExtractor bound to a model client
        portrait: Latest user portrait, if any
        ref_id: Provider reference ID (for logging only)

    Returns:
        AgentOutcome; action=None and estimate=0 when the input has no content

    Raises:
        UnsupportedChannelError: If `channel` is not a known channel
        anthropic.APIError: If the model call fails
        ActionValidationError: If the model output violates the schema
    """
    resolved = parse_channel(channel)

    input_text = normalize(resolved, raw_input)
    if input_text is None:
        logger.info("agent_no_content", channel=str(resolved), ref_id=ref_id)
        return AgentOutcome(action=None, estimate=0, channel=resolved)

    result = await extractor.extract(
        resolved,
        input_text,
        profile,
        portrait=portrait,
        ref_id=ref_id,
    )
    return AgentOutcome(
        action=result.action,
        estimate=result.estimate,
        channel=resolved,
        input_text=input_text,
    )
