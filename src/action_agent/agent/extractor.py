"""Claude action extractor using forced tool use for structured output.

Combines the user-profile block and the normalized input into a prompt,
calls Claude with the record_action tool forced, validates the tool input
against ActionRecord and derives the 0-5 estimate.

Error handling strategy:
- Transient errors (429, 5xx, network): handled by the Anthropic SDK
  (client max_retries); no app-level retry
- Model API errors after SDK retries: logged, then re-raised unmodified
- The synchronous client is called through asyncio.to_thread, so the
  event loop keeps serving while a request is in flight
- Missing tool call or schema violations: ActionValidationError

Usage:
    from action_agent.agent.extractor import ActionExtractor

    extractor = ActionExtractor(anthropic_client=client, config=app_config, store=db_store)
    result = await extractor.extract(Channel.GMAIL, input_text, profile)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import anthropic
from pydantic import ValidationError

from action_agent.agent.estimate import estimate
from action_agent.agent.models import ActionRecord
from action_agent.agent.policy import ScoringPolicy
from action_agent.agent.prompts import RECORD_ACTION_TOOL, PromptAssembler
from action_agent.core.errors import ActionValidationError
from action_agent.core.logging import get_logger

if TYPE_CHECKING:
    from action_agent.agent.channels import Channel
    from action_agent.agent.models import UserPortrait, UserProfile
    from action_agent.config_schema import AppConfig
    from action_agent.db.store import DatabaseStore

logger = get_logger(__name__)

TASK_TYPE = "action_extraction"


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """Validated action plus its derived estimate."""

    action: ActionRecord
    estimate: int
    model: str


class ActionExtractor:
    """Extracts one ActionRecord per input with Claude.

    The extractor holds no per-call state, so concurrent extract() calls
    do not interact.

    Attributes:
        _client: Anthropic API client
        _config: Application configuration
        _store: Optional database store for LLM request logging
        _prompt_assembler: Prompt builder bound to the extraction config
        _policy: Scoring rules applied after validation
    """

    def __init__(
        self,
        anthropic_client: anthropic.Anthropic,
        config: AppConfig,
        store: DatabaseStore | None = None,
    ):
        self._client = anthropic_client
        self._config = config
        self._store = store
        self._prompt_assembler = PromptAssembler(config.extraction)
        self._policy = ScoringPolicy.from_config(config.extraction)

    async def extract(
        self,
        channel: Channel,
        input_text: str,
        profile: UserProfile,
        portrait: UserPortrait | None = None,
        model: str | None = None,
        ref_id: str | None = None,
    ) -> ExtractionResult:
        """Extract a structured action from normalized input text.

        Args:
            channel: Source channel (names the extractor in the system prompt)
            input_text: Normalized message text
            profile: User profile for prompt context
            portrait: Latest user portrait (optional statistics)
            model: Override model (defaults to config.models.extraction)
            ref_id: Provider reference ID of the message (for logging)

        Returns:
            ExtractionResult with the validated action and estimate

        Raises:
            anthropic.APIError: If the model call fails (propagated unmodified)
            ActionValidationError: If the response lacks a valid record_action call
        """
        model_name = model or self._config.models.extraction
        system_prompt = self._prompt_assembler.build_system_prompt(channel)
        user_message = self._prompt_assembler.build_user_message(input_text, profile, portrait)
        messages = [{"role": "user", "content": user_message}]

        start_time = time.monotonic()
        try:
            # Blocking SDK call stays off the event loop
            api_response = await asyncio.to_thread(
                self._client.messages.create,
                model=model_name,
                max_tokens=self._config.models.max_tokens,
                system=system_prompt,
                messages=messages,
                tools=[RECORD_ACTION_TOOL],
                tool_choice={"type": "tool", "name": RECORD_ACTION_TOOL["name"]},
            )
        except anthropic.APIError as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            logger.error(
                "extraction_api_error",
                channel=str(channel),
                ref_id=ref_id,
                status_code=getattr(e, "status_code", None),
                error=str(e),
            )
            await self._log_request(
                model=model_name,
                system_prompt=system_prompt,
                messages=messages,
                response=None,
                tool_call=None,
                duration_ms=duration_ms,
                ref_id=ref_id,
                error=f"{type(e).__name__}: {e}",
            )
            raise

        duration_ms = int((time.monotonic() - start_time) * 1000)
        tool_call = _extract_tool_call(api_response)

        error: str | None = None
        record: ActionRecord | None = None
        errors: list[str] = []
        if tool_call is None:
            error = "No record_action tool call in response"
        else:
            try:
                record = ActionRecord.model_validate(tool_call)
            except ValidationError as e:
                errors = _format_validation_errors(e)
                error = "Invalid action record: " + "; ".join(errors)

        await self._log_request(
            model=model_name,
            system_prompt=system_prompt,
            messages=messages,
            response=api_response,
            tool_call=tool_call,
            duration_ms=duration_ms,
            ref_id=ref_id,
            error=error,
        )

        if record is None:
            logger.warning(
                "extraction_invalid_response",
                channel=str(channel),
                ref_id=ref_id,
                error=error,
            )
            raise ActionValidationError(error or "Invalid action record", tool_call, errors)

        if self._config.extraction.enforce_policy:
            record = self._policy.apply(record, input_text)

        result = ExtractionResult(action=record, estimate=estimate(record), model=model_name)
        logger.info(
            "action_extracted",
            channel=str(channel),
            ref_id=ref_id,
            importance_rating=record.importance_rating,
            estimate=result.estimate,
            duration_ms=duration_ms,
        )
        return result

    async def _log_request(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict[str, Any]],
        response: anthropic.types.Message | None,
        tool_call: dict[str, Any] | None,
        duration_ms: int,
        ref_id: str | None = None,
        error: str | None = None,
    ) -> None:
        """Log an LLM request to the database (never raises)."""
        if self._store is None or not self._config.llm_logging.enabled:
            return

        try:
            prompt_data: dict[str, Any] = {"messages": messages}
            if self._config.llm_logging.log_prompts:
                prompt_data["system"] = system_prompt

            response_data: dict[str, Any] | None = None
            input_tokens: int | None = None
            output_tokens: int | None = None

            if response is not None:
                usage = getattr(response, "usage", None)
                if usage is not None:
                    input_tokens = usage.input_tokens
                    output_tokens = usage.output_tokens
                if self._config.llm_logging.log_responses:
                    response_data = {
                        "id": getattr(response, "id", None),
                        "model": getattr(response, "model", None),
                        "stop_reason": getattr(response, "stop_reason", None),
                        "content": [_content_block_to_dict(block) for block in response.content],
                    }

            await self._store.log_llm_request(
                task_type=TASK_TYPE,
                model=model,
                prompt=prompt_data,
                response=response_data,
                tool_call=tool_call,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                duration_ms=duration_ms,
                ref_id=ref_id,
                error=error,
            )
        except Exception as e:
            # Logging failures should never block extraction
            logger.warning("llm_log_failed", error=str(e), ref_id=ref_id)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _extract_tool_call(response: anthropic.types.Message) -> dict[str, Any] | None:
    """Return the record_action tool input, or None if absent."""
    for block in response.content:
        if block.type == "tool_use" and block.name == RECORD_ACTION_TOOL["name"]:
            return block.input if isinstance(block.input, dict) else None
    return None


def _format_validation_errors(error: ValidationError) -> list[str]:
    messages = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"]) or "record"
        messages.append(f"{field_path}: {err['msg']}")
    return messages


def _content_block_to_dict(block: Any) -> dict[str, Any]:
    """Convert an Anthropic content block to a serializable dict."""
    if block.type == "text":
        return {"type": "text", "text": block.text}
    elif block.type == "tool_use":
        return {
            "type": "tool_use",
            "id": block.id,
            "name": block.name,
            "input": block.input,
        }
    return {"type": block.type}
