"""Custom exception types for the action agent.

Error messages follow one layout:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance, where there is any)
"""

from __future__ import annotations

from typing import Any


class ActionAgentError(Exception):
    """Base exception for all action agent errors."""

    pass


class ConfigValidationError(ActionAgentError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(ActionAgentError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class UnsupportedChannelError(ActionAgentError):
    """Raised when a channel label is not one of the known channels.

    Attributes:
        channel_label: The label that failed to resolve
    """

    def __init__(self, channel_label: str):
        super().__init__(f"Unsupported channel label: {channel_label}")
        self.channel_label = channel_label


class ActionValidationError(ActionAgentError):
    """Raised when the model output does not match the ActionRecord schema.

    Attributes:
        payload: The raw object returned by the model (None if there was none)
        errors: Human-readable list of schema violations
    """

    def __init__(
        self,
        message: str,
        payload: dict[str, Any] | None = None,
        errors: list[str] | None = None,
    ):
        super().__init__(message)
        self.payload = payload
        self.errors = errors or []


class DatabaseError(ActionAgentError):
    """Raised when SQLite operations fail."""

    pass


class UserNotFoundError(ActionAgentError):
    """Raised when an operation names a user that is not in app_users."""

    def __init__(self, user_id: str):
        super().__init__(
            f"User {user_id} does not exist. Create the user before ingesting messages for it."
        )
        self.user_id = user_id


class InviteCodeError(ActionAgentError):
    """Raised when an invite code cannot be redeemed.

    Attributes:
        code: The invite code
        reason: 'not_found', 'used', 'expired' or 'disabled'
    """

    def __init__(self, message: str, code: str, reason: str):
        super().__init__(message)
        self.code = code
        self.reason = reason


class MemoryConflictError(ActionAgentError):
    """Raised when a (channel_label, ref_id) pair is already stored for another user.

    Attributes:
        channel_label: Channel of the colliding message
        ref_id: Provider message ID
    """

    def __init__(self, channel_label: str, ref_id: str):
        super().__init__(
            f"Message {channel_label}/{ref_id} is already stored for another user. "
            "Provider message IDs must be unique per channel."
        )
        self.channel_label = channel_label
        self.ref_id = ref_id
