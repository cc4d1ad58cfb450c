"""Tests for the deterministic scoring rules."""

import pytest

from action_agent.agent.models import ActionRecord
from action_agent.agent.normalizer import normalize_gmail_message
from action_agent.agent.policy import ScoringPolicy, compile_keywords, find_keyword
from action_agent.config_schema import ExtractionConfig
from conftest import make_action_input, make_gmail_message


@pytest.fixture
def policy() -> ScoringPolicy:
    return ScoringPolicy.from_config(ExtractionConfig())


def _record(**overrides) -> ActionRecord:
    return ActionRecord.model_validate(make_action_input(**overrides))


class TestKeywordMatching:
    """Tests for compile_keywords() / find_keyword()."""

    def test_case_insensitive(self) -> None:
        pattern = compile_keywords(["Uber"])
        assert find_keyword(pattern, "your UBER trip") == "UBER"

    def test_whole_words_only(self) -> None:
        pattern = compile_keywords(["sale"])
        assert find_keyword(pattern, "wholesale pricing") is None
        assert find_keyword(pattern, "Big sale!") == "sale"

    def test_phrase_tolerates_whitespace(self) -> None:
        pattern = compile_keywords(["afternoon catch up"])
        assert find_keyword(pattern, "quick afternoon  catch\nup?") is not None

    def test_dotted_keyword(self) -> None:
        pattern = compile_keywords(["booking.com"])
        assert find_keyword(pattern, "Your booking.com reservation") == "booking.com"
        assert find_keyword(pattern, "bookingXcom") is None

    def test_empty_list_never_matches(self) -> None:
        assert compile_keywords([]) is None
        assert find_keyword(None, "anything") is None


class TestZeroScoreRule:
    """A zero-score keyword forces importanceRating to 0."""

    def test_uber_forces_zero_despite_urgency(self, policy: ScoringPolicy) -> None:
        text = "URGENT: your Uber receipt is due today, respond within the hour"
        record = _record(importanceRating=95)

        result = policy.apply(record, text)

        assert result.importance_rating == 0
        assert result.suggestions == ["No action needed"]

    def test_zero_score_wins_over_finance(self, policy: ScoringPolicy) -> None:
        result = policy.apply(_record(importanceRating=70), "Invoice for your lunch order")
        assert result.importance_rating == 0

    def test_zero_score_keyword_in_gmail_text(self, policy: ScoringPolicy) -> None:
        text = normalize_gmail_message(
            make_gmail_message(subject="Your trip with Uber", snippet="Thanks for riding")
        )
        assert policy.decide(text).rule == "zero_score"


class TestPromotionalRule:
    """Promotional content without finance terms is clamped to [3, 10]."""

    @pytest.mark.parametrize("model_rating", [0, 1, 5, 40, 100])
    def test_coupon_newsletter_clamped(self, policy: ScoringPolicy, model_rating: int) -> None:
        text = "Get a coupon when you sign up for our newsletter!"

        result = policy.apply(_record(importanceRating=model_rating), text)

        assert 3 <= result.importance_rating <= 10
        assert result.suggestions == ["No action needed"]

    def test_in_range_rating_is_kept(self, policy: ScoringPolicy) -> None:
        result = policy.apply(_record(importanceRating=7), "weekly newsletter")
        assert result.importance_rating == 7

    def test_finance_term_exempts_promotion(self, policy: ScoringPolicy) -> None:
        text = "Newsletter: your invoice is attached, payment due Friday"
        record = _record(importanceRating=80)

        result = policy.apply(record, text)

        assert result is record

    def test_gmail_promotions_category_flag(self, policy: ScoringPolicy) -> None:
        text = normalize_gmail_message(
            make_gmail_message(
                subject="New arrivals",
                snippet="See what's new this week",
                sender="Shop <hello@shop.example>",
                label_ids=["CATEGORY_PROMOTIONS"],
            )
        )
        assert policy.decide(text).rule == "promotional"


class TestNoRule:
    def test_regular_content_untouched(self, policy: ScoringPolicy) -> None:
        record = _record(importanceRating=64)
        assert policy.apply(record, "Design review today at 15:30") is record

    def test_custom_no_action_suggestion(self) -> None:
        policy = ScoringPolicy(
            zero_score_keywords=["spam"],
            promotional_keywords=[],
            finance_keywords=[],
            no_action_suggestion="Nothing to do",
        )
        result = policy.apply(_record(), "this is spam")
        assert result.suggestions == ["Nothing to do"]
