"""Known source channels for inbound messages.

A channel label names the data source a raw message came from. The set is
closed: anything outside it is rejected by parse_channel() rather than
silently falling through to generic handling.
"""

from __future__ import annotations

from enum import StrEnum

from action_agent.core.errors import UnsupportedChannelError


class Channel(StrEnum):
    """Supported channel labels (values are the stored channel_label)."""

    GMAIL = "Gmail"
    GOOGLE_CALENDAR = "Google_Calendar"
    GOOGLE_DRIVE = "Google_Drive"
    NOTION = "Notion"
    GOOGLE_TASKS = "Google_Tasks"


def parse_channel(label: str | Channel) -> Channel:
    """Resolve a channel label to a Channel.

    Args:
        label: Channel member or its string value (exact, case-sensitive)

    Returns:
        The matching Channel

    Raises:
        UnsupportedChannelError: If the label is not a known channel
    """
    if isinstance(label, Channel):
        return label
    try:
        return Channel(label)
    except ValueError:
        raise UnsupportedChannelError(str(label)) from None
