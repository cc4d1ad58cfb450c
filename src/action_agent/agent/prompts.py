"""Prompt assembly and tool definition for action extraction.

The user message is the profile block followed by the content block. The
system prompt is the fixed extraction policy, parameterized by the channel
label and the configured keyword lists. The record_action tool carries the
ActionRecord JSON schema; the extractor forces Claude to call it.

Usage:
    from action_agent.agent.prompts import PromptAssembler, RECORD_ACTION_TOOL

    assembler = PromptAssembler(config.extraction)
    system = assembler.build_system_prompt(Channel.GMAIL)
    message = assembler.build_user_message(input_text, profile, portrait)
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from action_agent.agent.models import KEYWORD_COUNT, MAX_LABELS, MAX_SUGGESTIONS

if TYPE_CHECKING:
    from action_agent.agent.channels import Channel
    from action_agent.agent.models import UserLocation, UserPortrait, UserProfile
    from action_agent.config_schema import ExtractionConfig

# ---------------------------------------------------------------------------
# Tool definition
# ---------------------------------------------------------------------------

RECORD_ACTION_TOOL: dict[str, Any] = {
    "name": "record_action",
    "description": "Record the ONE structured action extracted from the content",
    "input_schema": {
        "type": "object",
        "properties": {
            "text": {
                "type": "string",
                "minLength": 1,
                "description": "The detailed action content. Full sentence. Not empty.",
            },
            "summary": {
                "type": "string",
                "description": "A short and concise summary of the action.",
            },
            "keywords": {
                "type": "array",
                "items": {"type": "string"},
                "minItems": KEYWORD_COUNT,
                "maxItems": KEYWORD_COUNT,
                "description": "Exactly 3 concise keywords capturing the core meaning.",
            },
            "suggestions": {
                "anyOf": [
                    {
                        "type": "array",
                        "items": {"type": "string"},
                        "minItems": 1,
                        "maxItems": MAX_SUGGESTIONS,
                    },
                    {"type": "string"},
                ],
                "description": "Recommended steps; prefer an array of 1-3 actionable steps.",
            },
            "labels": {
                "type": "array",
                "items": {"type": "string"},
                "maxItems": MAX_LABELS,
                "description": "Up to 4 tags: time bucket, priority, source type.",
            },
            "importanceRating": {
                "type": "integer",
                "minimum": 0,
                "maximum": 100,
                "description": "Integer 0-100. Higher = higher priority and urgency.",
            },
        },
        "required": ["text", "summary", "keywords", "suggestions", "labels", "importanceRating"],
    },
}


# ---------------------------------------------------------------------------
# Prompt assembler
# ---------------------------------------------------------------------------


class PromptAssembler:
    """Builds the extraction system prompt and user message."""

    def __init__(self, config: ExtractionConfig):
        self._config = config

    def build_system_prompt(self, channel: Channel | str) -> str:
        """Assemble the extraction policy for `channel`."""
        return _SYSTEM_PROMPT_TEMPLATE.format(
            channel_label=str(channel),
            zero_score_keywords=json.dumps(self._config.zero_score_keywords, ensure_ascii=False),
            promotional_keywords=", ".join(self._config.promotional_keywords),
            finance_keywords=", ".join(self._config.finance_keywords),
            no_action=self._config.no_action_suggestion,
        )

    def build_user_message(
        self,
        input_text: str,
        profile: UserProfile,
        portrait: UserPortrait | None = None,
        now: datetime | None = None,
    ) -> str:
        """Profile context block followed by the content block."""
        return build_profile_block(profile, portrait, now) + build_input_block(input_text)


def build_profile_block(
    profile: UserProfile,
    portrait: UserPortrait | None = None,
    now: datetime | None = None,
) -> str:
    """Render the user profile as the prompt context block.

    Args:
        profile: User profile
        portrait: Latest computed portrait (adds a Statistics line)
        now: Current time override (defaults to now in the user's timezone)

    Returns:
        Profile block text
    """
    metadata = profile.metadata
    settings = profile.personalized_settings

    lines = [
        " #Current User Information:",
        f"- User ID: {profile.user_id}",
        f"- Name: {_text(metadata.name if metadata else None)}",
        f"- Email: {_text(metadata.email if metadata else None)}",
        f"- Language: {_text(profile.locale)}",
        f"- Timezone: {_text(profile.timezone)}",
        f"- Location: {_format_location(profile.location)}",
        f"- Exclude Keywords: {_join(settings.exclude_keywords if settings else None)}",
        f"- Labels: {_join(settings.labels if settings else None)}",
        f"- Tags: {_join(settings.tags if settings else None)}",
        f"- Topic Preferences: {_join(settings.topic_preferences if settings else None)}",
        f"- Current Time: {_current_time(profile.timezone, now)}",
    ]
    if portrait is not None and portrait.data.metrics:
        metrics = {
            name: metric.model_dump(exclude_none=True)
            for name, metric in portrait.data.metrics.items()
        }
        lines.append(f"- Statistics: {json.dumps(metrics, ensure_ascii=False, default=str)}")

    return "\n".join(lines) + "\n"


def build_input_block(input_text: str) -> str:
    """Wrap the normalized input in the content block."""
    return (
        "\n#Analyze the following text and produce ONE structured action.\n"
        "  <content>\n"
        f"    {input_text}\n"
        "  </content>\n"
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _text(value: str | None) -> str:
    return value if value else ""


def _join(values: list[str] | None) -> str:
    return ", ".join(values) if values else ""


def _format_location(location: UserLocation | None) -> str:
    if location is None:
        return ""
    data = location.model_dump(exclude_none=True)
    return json.dumps(data, ensure_ascii=False, default=str) if data else ""


def _current_time(timezone: str | None, now: datetime | None) -> str:
    tz = UTC
    if timezone:
        try:
            tz = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    current = (now or datetime.now(UTC)).astimezone(tz)
    return current.strftime("%Y-%m-%d %H:%M:%S %Z")


# ---------------------------------------------------------------------------
# System prompt template
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT_TEMPLATE = """\
You are a {channel_label} structured action extractor. Record exactly ONE action \
using the record_action tool.
The tool input must match the following schema and field semantics (hide details \
such as amounts, account numbers, and passwords by replacing them with [*REDACTED*]):

{{
  "text": string,            // The detailed action content. Full sentence. Not empty.
  "summary": string,         // A short and concise summary of the action.
  "keywords": string[],      // Exactly 3 concise keywords capturing the core meaning.
  "suggestions": string[] | string, // Recommended steps. Prefer an array of 1-3 actionable steps.
  "labels": string[],        // Up to 4 category tags. Should reflect:
                             //   - Time bucket (intraday/daily/weekly/monthly)
                             //   - Priority (low/medium/high)
                             //   - Source type (email/work plan/calendar/note/chat)
                             // If any dimension is unclear, infer reasonably and fill.
  "importanceRating": number // Integer 0-100 (inclusive). Higher = higher priority & urgency.
}}

HARD CONSTRAINTS (in order of precedence):
1) OUTPUT FORMAT:
   - Call record_action exactly once.
   - Ensure "keywords" has EXACTLY 3 items.
   - "labels" has at most 4 items.
   - "importanceRating" must be an INTEGER between 0 and 100. If you produced a \
float, round to nearest integer.

2) KEYWORD ZERO-SCORE RULE (OVERRIDES ALL OTHER RULES):
   - If the input text contains ANY of the following keywords/phrases \
(case-insensitive; match whole words or obvious brand tokens):
     {zero_score_keywords}
   - Then:
     * importanceRating = 0
     * Keep a neutral, factual "text" and "summary".
     * "suggestions" = ["{no_action}"]
     * "labels" should reasonably include a time bucket and "low" priority plus a \
source type (e.g., ["monthly", "low", "email"]).
   - This ZERO-SCORE rule ALWAYS wins, even if other rules (finance/work/deadline) \
suggest high priority.

3) FILTERING POLICY (PROMOTIONAL):
   - Promotional/marketing content ({promotional_keywords}) -> produce a "no-op" task:
     * Neutral "text"/"summary"
     * keywords like ["promotional","filtered","email"]
     * "suggestions" = ["{no_action}"]
     * "labels" include "email" + "low" + reasonable time bucket
     * importanceRating very low (3-10)
   - EXCEPTION: Finance/billing content ({finance_keywords}) is NOT promotional. \
(But see ZERO-SCORE RULE above; if it contains a zero-score keyword, importanceRating = 0.)

SCORING RULES (APPLY ONLY IF ZERO-SCORE RULE DID NOT TRIGGER):
- Importance is a CONTINUOUS 0-100 scale; higher priority -> higher score.
- Additively consider:
  1) Meeting-first & Calendar-first:
     - If it involves a meeting/sync/standup/1:1/review OR originates from a \
calendar source -> significantly higher score.
  2) Money / Work / Code:
     - Finance (payment, invoice, billing, bank, receipt, tax), project/work \
deliverables, code (PR, merge, deploy, build, regression) -> higher score.
  3) Deadline urgency:
     - Stated/implied deadline (e.g., today, tomorrow, HH:MM) -> higher score; \
the closer the deadline, the higher the score.

FORMATTING & CONTENT GUIDELINES:
- "text": a clear, single-sentence description of the action (no placeholders, no empties).
- "summary": concise; do not repeat "text" verbatim.
- "keywords": exactly 3 short tokens capturing the essence; no punctuation-heavy phrases.
- "suggestions": prefer 1-3 concrete steps. If nothing actionable, provide ["{no_action}"].
- "labels": include time bucket + priority + source type; optionally 1 extra tag if helpful.
- If information is missing, infer conservatively and stay consistent.

EXAMPLES:

### EXAMPLE A: Promotional (-> low-importance no-op)
Input:
"Big Sale! This weekend only, get 40% off if you subscribe to our newsletter."
Output:
{{
  "text": "Promotional email detected; no action is required.",
  "summary": "Promotional content filtered.",
  "keywords": ["promotional", "filtered", "email"],
  "suggestions": ["{no_action}"],
  "labels": ["monthly", "low", "email"],
  "importanceRating": 5
}}

### EXAMPLE B: Finance-related (-> high importance, if ZERO-SCORE not triggered)
Input:
"Your invoice #2023-884 is due tomorrow. Please submit the $1,200 payment before 18:00."
Output:
{{
  "text": "Review and pay the invoice before 18:00.",
  "summary": "Settle the outstanding invoice by its deadline.",
  "keywords": ["invoice", "payment", "due"],
  "suggestions": [
    "Open the billing page",
    "Verify invoice details",
    "Complete payment and save the receipt"
  ],
  "labels": ["intraday", "high", "email"],
  "importanceRating": 88
}}

### EXAMPLE C: Meeting / Calendar (-> high importance, if ZERO-SCORE not triggered)
Input:
"Reminder: Design review today at 15:30. Prepare notes on PR#421 before joining."
Output:
{{
  "text": "Attend the 15:30 design review and prepare notes on PR#421.",
  "summary": "Prepare and join the scheduled design review.",
  "keywords": ["meeting", "review", "PR"],
  "suggestions": [
    "Review PR#421 changes",
    "List decision points",
    "Join the meeting on time"
  ],
  "labels": ["intraday", "high", "calendar"],
  "importanceRating": 90
}}

### EXAMPLE D: ZERO-SCORE (keyword hit -> importanceRating=0)
Input:
"Let's do a quick afternoon catch up tomorrow."
Output:
{{
  "text": "Casual catch-up detected; no action is required.",
  "summary": "Informal catch-up filtered.",
  "keywords": ["casual", "catch-up", "filtered"],
  "suggestions": ["{no_action}"],
  "labels": ["daily", "low", "chat"],
  "importanceRating": 0
}}

### EXAMPLE E: ZERO-SCORE (brand keyword -> importanceRating=0)
Input:
"Uber trip receipt available."
Output:
{{
  "text": "Brand-triggered item detected; no action is required.",
  "summary": "Filtered by zero-score keyword.",
  "keywords": ["brand", "filtered", "receipt"],
  "suggestions": ["{no_action}"],
  "labels": ["monthly", "low", "email"],
  "importanceRating": 0
}}\
"""
