"""Input normalization: channel-specific raw message to prompt text.

The normalized text replaces the <content> block of the extraction prompt.
Gmail messages get bespoke field extraction; every other known channel is
serialized as JSON with escaped newlines and quotes restored so the prompt
reads naturally.

None means "nothing to extract": the caller must short-circuit with a zero
estimate and no action. Field extraction never raises; absent fields render
as empty text.

Usage:
    from action_agent.agent.normalizer import normalize

    text = normalize(Channel.GMAIL, gmail_message)
    if text is None:
        ...  # nothing to extract
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any

from action_agent.agent.channels import Channel

IMPORTANT_LABEL = "IMPORTANT"
PROMOTIONS_LABEL = "CATEGORY_PROMOTIONS"
NOREPLY_MARKER = "noreply"


def _header(headers: Any, name: str) -> str | None:
    """Return the value of the first header called `name` (case-insensitive)."""
    if not isinstance(headers, list):
        return None
    wanted = name.lower()
    for header in headers:
        if isinstance(header, Mapping) and str(header.get("name", "")).lower() == wanted:
            value = header.get("value")
            return None if value is None else str(value)
    return None


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def normalize_gmail_message(message: Any) -> str | None:
    """Render a Gmail API message resource as prompt text.

    Args:
        message: users.messages resource (dict with payload.headers,
            snippet and labelIds)

    Returns:
        Descriptive text block, or None if both subject and snippet are empty
    """
    if not isinstance(message, Mapping):
        return None

    payload = message.get("payload")
    headers = payload.get("headers") if isinstance(payload, Mapping) else None

    subject = _header(headers, "Subject")
    sender = _header(headers, "From")
    recipient = _header(headers, "To")
    content = message.get("snippet")

    if not subject and not content:
        return None

    raw_labels = message.get("labelIds")
    label_ids = [str(label) for label in raw_labels] if isinstance(raw_labels, list) else []

    has_important_label = IMPORTANT_LABEL in label_ids
    is_noreply = NOREPLY_MARKER in sender.lower() if sender else False
    is_category_promotions = PROMOTIONS_LABEL in label_ids

    lines = [
        f"title: {_render(subject)}",
        f"content: {_render(content)}",
        f"from: {_render(sender)}",
        f"to: {_render(recipient)}",
        f"labels: {', '.join(label_ids)}",
        f"hasImportantLabel: {_render(has_important_label)}",
        f"isNoreply: {_render(is_noreply)}",
        f"isCategoryPromotions: {_render(is_category_promotions)}",
    ]
    return "\n".join(lines)


def normalize_json_payload(payload: Any) -> str:
    """Serialize an arbitrary payload as readable JSON text.

    Literal backslash-n and backslash-quote sequences produced by JSON
    escaping are turned back into newlines and quotes.
    """
    text = json.dumps(payload, ensure_ascii=False, default=str)
    return text.replace("\\n", "\n").replace('\\"', '"')


# Every Channel member has an entry; normalize() never falls through.
_NORMALIZERS: dict[Channel, Callable[[Any], str | None]] = {
    Channel.GMAIL: normalize_gmail_message,
    Channel.GOOGLE_CALENDAR: normalize_json_payload,
    Channel.GOOGLE_DRIVE: normalize_json_payload,
    Channel.NOTION: normalize_json_payload,
    Channel.GOOGLE_TASKS: normalize_json_payload,
}


def normalize(channel: Channel, raw_input: Any) -> str | None:
    """Convert a raw message from `channel` into prompt text.

    Args:
        channel: Source channel (already resolved via parse_channel)
        raw_input: Channel-specific raw message

    Returns:
        Prompt text, or None when there is nothing to extract
    """
    text = _NORMALIZERS[channel](raw_input)
    if text is not None and not text.strip():
        return None
    return text
