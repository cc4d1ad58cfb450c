"""Tests for the Claude action extractor and the agent entry point."""

import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import anthropic
import pytest

from action_agent.agent.channels import Channel
from action_agent.agent.extractor import TASK_TYPE, ActionExtractor
from action_agent.agent.models import UserProfile
from action_agent.agent.pipeline import run_action_agent
from action_agent.config_schema import AppConfig
from action_agent.core.errors import ActionValidationError, UnsupportedChannelError
from action_agent.core.logging import correlation_scope
from action_agent.db.store import DatabaseStore
from conftest import make_action_input, make_gmail_message, make_tool_response


@pytest.fixture
def extractor(mock_anthropic: MagicMock, sample_config: AppConfig) -> ActionExtractor:
    return ActionExtractor(anthropic_client=mock_anthropic, config=sample_config)


# ---------------------------------------------------------------------------
# ActionExtractor
# ---------------------------------------------------------------------------


class TestExtract:
    """Tests for ActionExtractor.extract()."""

    async def test_returns_validated_action_and_estimate(
        self, extractor: ActionExtractor, profile: UserProfile
    ) -> None:
        result = await extractor.extract(Channel.GMAIL, "title: Invoice Due", profile)

        assert result.action.summary == "Pay invoice by Friday"
        assert result.action.importance_rating == 82
        assert result.estimate == 4
        assert result.model == "claude-test-model"

    async def test_forces_record_action_tool(
        self, extractor: ActionExtractor, mock_anthropic: MagicMock, profile: UserProfile
    ) -> None:
        await extractor.extract(Channel.GMAIL, "title: Invoice Due", profile)

        kwargs = mock_anthropic.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test-model"
        assert kwargs["tool_choice"] == {"type": "tool", "name": "record_action"}
        assert kwargs["tools"][0]["name"] == "record_action"
        assert kwargs["system"].startswith("You are a Gmail structured action extractor.")
        user_content = kwargs["messages"][0]["content"]
        assert "- User ID: user-1" in user_content
        assert "title: Invoice Due" in user_content

    async def test_model_override(
        self, extractor: ActionExtractor, mock_anthropic: MagicMock, profile: UserProfile
    ) -> None:
        await extractor.extract(Channel.NOTION, "{}", profile, model="claude-other")
        assert mock_anthropic.messages.create.call_args.kwargs["model"] == "claude-other"

    async def test_policy_applied_to_model_output(
        self, extractor: ActionExtractor, profile: UserProfile
    ) -> None:
        result = await extractor.extract(Channel.GMAIL, "title: Your Uber receipt", profile)

        assert result.action.importance_rating == 0
        assert result.estimate == 0
        assert result.action.suggestions == ["No action needed"]

    async def test_policy_can_be_disabled(
        self, mock_anthropic: MagicMock, sample_config: AppConfig, profile: UserProfile
    ) -> None:
        config = sample_config.model_copy(
            update={
                "extraction": sample_config.extraction.model_copy(
                    update={"enforce_policy": False}
                )
            }
        )
        extractor = ActionExtractor(anthropic_client=mock_anthropic, config=config)

        result = await extractor.extract(Channel.GMAIL, "title: Your Uber receipt", profile)

        assert result.action.importance_rating == 82

    async def test_api_error_propagates_unmodified(
        self, extractor: ActionExtractor, mock_anthropic: MagicMock, profile: UserProfile
    ) -> None:
        error = anthropic.APIConnectionError(request=MagicMock())
        mock_anthropic.messages.create = MagicMock(side_effect=error)

        with pytest.raises(anthropic.APIConnectionError) as exc_info:
            await extractor.extract(Channel.GMAIL, "title: x", profile)

        assert exc_info.value is error

    async def test_model_call_runs_off_event_loop_thread(
        self, extractor: ActionExtractor, mock_anthropic: MagicMock, profile: UserProfile
    ) -> None:
        response = mock_anthropic.messages.create.return_value
        callers: list[threading.Thread] = []

        def create(**kwargs):
            callers.append(threading.current_thread())
            return response

        mock_anthropic.messages.create = MagicMock(side_effect=create)

        await extractor.extract(Channel.GMAIL, "title: Invoice Due", profile)

        assert callers
        assert callers[0] is not threading.current_thread()

    async def test_missing_tool_call_raises(
        self, extractor: ActionExtractor, mock_anthropic: MagicMock, profile: UserProfile
    ) -> None:
        mock_anthropic.messages.create = MagicMock(return_value=make_tool_response(None))

        with pytest.raises(ActionValidationError) as exc_info:
            await extractor.extract(Channel.GMAIL, "title: x", profile)

        assert exc_info.value.payload is None

    async def test_schema_violation_raises_with_errors(
        self, extractor: ActionExtractor, mock_anthropic: MagicMock, profile: UserProfile
    ) -> None:
        bad = make_action_input(keywords=["only", "two"])
        mock_anthropic.messages.create = MagicMock(return_value=make_tool_response(bad))

        with pytest.raises(ActionValidationError) as exc_info:
            await extractor.extract(Channel.GMAIL, "title: x", profile)

        assert exc_info.value.payload == bad
        assert any(err.startswith("keywords") for err in exc_info.value.errors)

    async def test_logging_failure_does_not_block(
        self, mock_anthropic: MagicMock, sample_config: AppConfig, profile: UserProfile
    ) -> None:
        store = MagicMock()
        store.log_llm_request = AsyncMock(side_effect=RuntimeError("disk full"))
        extractor = ActionExtractor(anthropic_client=mock_anthropic, config=sample_config, store=store)

        result = await extractor.extract(Channel.GMAIL, "title: Invoice Due", profile)

        assert result.action.importance_rating == 82
        store.log_llm_request.assert_awaited_once()


class TestLLMRequestLogging:
    """Extractor calls are written to llm_request_log."""

    async def test_success_logged_with_ref_and_run_id(
        self,
        mock_anthropic: MagicMock,
        sample_config: AppConfig,
        profile: UserProfile,
        store: DatabaseStore,
    ) -> None:
        extractor = ActionExtractor(anthropic_client=mock_anthropic, config=sample_config, store=store)

        with correlation_scope("run-123"):
            await extractor.extract(Channel.GMAIL, "title: Invoice Due", profile, ref_id="msg-9")

        logs = await store.get_llm_logs(ref_id="msg-9")
        assert len(logs) == 1
        entry = logs[0]
        assert entry.task_type == TASK_TYPE
        assert entry.run_id == "run-123"
        assert entry.input_tokens == 120
        assert entry.tool_call_json["importanceRating"] == 82
        assert entry.error is None
        assert "system" in entry.prompt_json

    async def test_api_error_logged(
        self,
        mock_anthropic: MagicMock,
        sample_config: AppConfig,
        profile: UserProfile,
        store: DatabaseStore,
    ) -> None:
        mock_anthropic.messages.create = MagicMock(
            side_effect=anthropic.APIConnectionError(request=MagicMock())
        )
        extractor = ActionExtractor(anthropic_client=mock_anthropic, config=sample_config, store=store)

        with pytest.raises(anthropic.APIConnectionError):
            await extractor.extract(Channel.GMAIL, "title: x", profile, ref_id="msg-err")

        logs = await store.get_llm_logs(ref_id="msg-err")
        assert len(logs) == 1
        assert logs[0].error.startswith("APIConnectionError")
        assert logs[0].response_json is None

    async def test_logging_disabled(
        self,
        mock_anthropic: MagicMock,
        sample_config_dict: dict,
        profile: UserProfile,
        store: DatabaseStore,
    ) -> None:
        config = AppConfig(**{**sample_config_dict, "llm_logging": {"enabled": False}})
        extractor = ActionExtractor(anthropic_client=mock_anthropic, config=config, store=store)

        await extractor.extract(Channel.GMAIL, "title: x", profile, ref_id="msg-off")

        assert await store.get_llm_logs(ref_id="msg-off") == []


# ---------------------------------------------------------------------------
# run_action_agent
# ---------------------------------------------------------------------------


class TestRunActionAgent:
    """Tests for the agent entry point."""

    async def test_gmail_message_produces_action(
        self, extractor: ActionExtractor, mock_anthropic: MagicMock, profile: UserProfile
    ) -> None:
        outcome = await run_action_agent(
            channel="Gmail",
            raw_input=make_gmail_message(),
            profile=profile,
            extractor=extractor,
        )

        assert outcome.channel is Channel.GMAIL
        assert outcome.action is not None
        assert outcome.estimate == 4
        assert outcome.input_text.startswith("title: Invoice Due")
        mock_anthropic.messages.create.assert_called_once()

    async def test_no_content_short_circuits(
        self, extractor: ActionExtractor, mock_anthropic: MagicMock, profile: UserProfile
    ) -> None:
        outcome = await run_action_agent(
            channel=Channel.GMAIL,
            raw_input=make_gmail_message(subject=None, snippet=None),
            profile=profile,
            extractor=extractor,
        )

        assert outcome.action is None
        assert outcome.estimate == 0
        mock_anthropic.messages.create.assert_not_called()

    async def test_unsupported_channel_fails_fast(
        self, extractor: ActionExtractor, mock_anthropic: MagicMock, profile: UserProfile
    ) -> None:
        with pytest.raises(UnsupportedChannelError):
            await run_action_agent(
                channel="Teams",
                raw_input={"subject": "hi"},
                profile=profile,
                extractor=extractor,
            )
        mock_anthropic.messages.create.assert_not_called()

    async def test_promotional_gmail_is_filtered(
        self, extractor: ActionExtractor, profile: UserProfile
    ) -> None:
        message = make_gmail_message(
            subject="Exclusive coupon inside",
            snippet="Read this week's newsletter",
            sender="Deals <deals@shop.example>",
            label_ids=["CATEGORY_PROMOTIONS"],
        )

        outcome = await run_action_agent(
            channel="Gmail", raw_input=message, profile=profile, extractor=extractor
        )

        assert 3 <= outcome.action.importance_rating <= 10
        assert outcome.action.suggestions == ["No action needed"]
        assert outcome.estimate == 0

    async def test_concurrent_calls_are_independent(
        self, extractor: ActionExtractor, mock_anthropic: MagicMock, profile: UserProfile
    ) -> None:
        mock_anthropic.messages.create = MagicMock(
            side_effect=[
                make_tool_response(make_action_input(importanceRating=20)),
                make_tool_response(make_action_input(importanceRating=100)),
            ]
        )

        first, second = await asyncio.gather(
            run_action_agent(
                channel="Notion", raw_input={"a": 1}, profile=profile, extractor=extractor
            ),
            run_action_agent(
                channel="Notion", raw_input={"b": 2}, profile=profile, extractor=extractor
            ),
        )

        assert sorted([first.estimate, second.estimate]) == [1, 5]

