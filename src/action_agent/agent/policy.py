"""Deterministic scoring rules applied to an extracted ActionRecord.

The system prompt asks the model to follow these rules; this module makes
them hold regardless of what the model returned:

1. Zero-score rule: a zero-score keyword anywhere in the input forces
   importanceRating to 0. It wins over everything else.
2. Promotional rule: promotional markers (or the Gmail promotions
   category flag) without any finance term clamp importanceRating into
   [3, 10] and replace the suggestions with the no-action suggestion.
3. Otherwise the record is returned as is.

All matching uses the `regex` library with a timeout because the input is
untrusted message content.

Usage:
    from action_agent.agent.policy import ScoringPolicy

    policy = ScoringPolicy.from_config(config.extraction)
    record = policy.apply(record, input_text)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import regex

from action_agent.core.logging import get_logger

if TYPE_CHECKING:
    from action_agent.agent.models import ActionRecord
    from action_agent.config_schema import ExtractionConfig

logger = get_logger(__name__)

# Regex timeout in seconds for matching against message content
REGEX_TIMEOUT = 1.0

PROMOTIONAL_MIN_RATING = 3
PROMOTIONAL_MAX_RATING = 10

PROMOTIONS_FLAG_PATTERN = regex.compile(r"^\s*isCategoryPromotions:\s*true\s*$", regex.MULTILINE)


def compile_keywords(keywords: list[str]) -> regex.Pattern[str] | None:
    """Build a case-insensitive whole-word alternation for `keywords`.

    Multi-word phrases match with any run of whitespace between words.
    Returns None for an empty list.
    """
    if not keywords:
        return None
    alternatives = []
    # Longest first so "afternoon catch up" wins over a shorter overlap
    for keyword in sorted(keywords, key=len, reverse=True):
        words = keyword.split()
        alternatives.append(r"\s+".join(regex.escape(word) for word in words))
    return regex.compile(
        r"(?<!\w)(?:" + "|".join(alternatives) + r")(?![\w])",
        regex.IGNORECASE,
    )


def find_keyword(pattern: regex.Pattern[str] | None, text: str) -> str | None:
    """Return the first keyword match in `text`, or None.

    A regex timeout counts as no match.
    """
    if pattern is None or not text:
        return None
    try:
        match = pattern.search(text, timeout=REGEX_TIMEOUT)
    except TimeoutError:
        logger.warning("keyword_match_timeout", text_length=len(text))
        return None
    return match.group(0) if match else None


@dataclass(frozen=True)
class PolicyDecision:
    """Which rule (if any) fired for an input."""

    rule: str  # 'zero_score', 'promotional', 'none'
    matched: str | None = None


class ScoringPolicy:
    """Zero-score and promotional rules for ActionRecords."""

    def __init__(
        self,
        zero_score_keywords: list[str],
        promotional_keywords: list[str],
        finance_keywords: list[str],
        no_action_suggestion: str = "No action needed",
    ):
        self.zero_score_keywords = list(zero_score_keywords)
        self.promotional_keywords = list(promotional_keywords)
        self.finance_keywords = list(finance_keywords)
        self.no_action_suggestion = no_action_suggestion
        self._zero_score = compile_keywords(self.zero_score_keywords)
        self._promotional = compile_keywords(self.promotional_keywords)
        self._finance = compile_keywords(self.finance_keywords)

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> ScoringPolicy:
        return cls(
            zero_score_keywords=config.zero_score_keywords,
            promotional_keywords=config.promotional_keywords,
            finance_keywords=config.finance_keywords,
            no_action_suggestion=config.no_action_suggestion,
        )

    def decide(self, input_text: str) -> PolicyDecision:
        """Classify the input text against the rules, in precedence order."""
        hit = find_keyword(self._zero_score, input_text)
        if hit:
            return PolicyDecision(rule="zero_score", matched=hit)

        promo = find_keyword(self._promotional, input_text)
        if promo is None:
            try:
                if PROMOTIONS_FLAG_PATTERN.search(input_text, timeout=REGEX_TIMEOUT):
                    promo = "isCategoryPromotions"
            except TimeoutError:
                logger.warning("keyword_match_timeout", text_length=len(input_text))
        if promo and not find_keyword(self._finance, input_text):
            return PolicyDecision(rule="promotional", matched=promo)

        return PolicyDecision(rule="none")

    def apply(self, record: ActionRecord, input_text: str) -> ActionRecord:
        """Return `record` adjusted so the scoring rules hold.

        Args:
            record: Validated model output
            input_text: The normalized text the record was extracted from

        Returns:
            The same record if no rule fired or it already complies,
            otherwise an adjusted copy
        """
        decision = self.decide(input_text)

        if decision.rule == "zero_score":
            rating = 0
        elif decision.rule == "promotional":
            rating = min(
                max(record.importance_rating, PROMOTIONAL_MIN_RATING),
                PROMOTIONAL_MAX_RATING,
            )
        else:
            return record

        suggestions = [self.no_action_suggestion]
        if record.importance_rating == rating and record.suggestions == suggestions:
            return record

        logger.info(
            "scoring_rule_applied",
            rule=decision.rule,
            matched=decision.matched,
            model_rating=record.importance_rating,
            rating=rating,
        )
        return record.model_copy(update={"importance_rating": rating, "suggestions": suggestions})
