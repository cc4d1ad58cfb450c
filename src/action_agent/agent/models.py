"""Typed models for the extraction contract and its prompt context.

ActionRecord is what the model must return. UserProfile and UserPortrait
are read-only context for the prompt; they are persisted by the store as
JSON columns, so each free-form blob is a model with a documented minimal
key set and `extra="allow"` for forward-compatible keys.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

KEYWORD_COUNT = 3
MAX_LABELS = 4
MAX_SUGGESTIONS = 3


# ---------------------------------------------------------------------------
# Action record (model output)
# ---------------------------------------------------------------------------


class ActionRecord(BaseModel):
    """One structured action extracted from an inbound message.

    Serialized with camelCase `importanceRating` (the name used in the tool
    schema and in stored memory content).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str = Field(min_length=1)
    summary: str
    keywords: list[str] = Field(min_length=KEYWORD_COUNT, max_length=KEYWORD_COUNT)
    suggestions: list[str] | str
    labels: list[str] = Field(default_factory=list, max_length=MAX_LABELS)
    importance_rating: int = Field(alias="importanceRating", ge=0, le=100)

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must be a non-empty sentence")
        return v

    @field_validator("suggestions")
    @classmethod
    def validate_suggestions(cls, v: list[str] | str) -> list[str] | str:
        if isinstance(v, list) and not 1 <= len(v) <= MAX_SUGGESTIONS:
            raise ValueError(f"suggestions must have 1-{MAX_SUGGESTIONS} items")
        return v

    @field_validator("importance_rating", mode="before")
    @classmethod
    def round_rating(cls, v: Any) -> Any:
        # Models occasionally answer 87.5; halves round up, not to even
        if isinstance(v, float):
            return math.floor(v + 0.5)
        return v

    def to_content(self) -> dict[str, Any]:
        """Dump in the stored (camelCase) shape."""
        return self.model_dump(by_alias=True)

    def suggestion_list(self) -> list[str]:
        """Suggestions normalized to a list."""
        if isinstance(self.suggestions, str):
            return [self.suggestions]
        return list(self.suggestions)


# ---------------------------------------------------------------------------
# User profile (prompt context)
# ---------------------------------------------------------------------------


class UserLocation(BaseModel):
    """Coarse user location; providers may add more keys."""

    model_config = ConfigDict(extra="allow")

    latitude: float | None = None
    longitude: float | None = None


class NotificationSettings(BaseModel):
    push: bool = True
    phone: bool = False
    whatsapp: bool = False


class PersonalizedSettings(BaseModel):
    """Personalization preferences.

    The four list keys are always present. Anything else the clients send
    is kept as an extra field and round-trips through storage untouched.
    """

    model_config = ConfigDict(extra="allow")

    topic_preferences: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @property
    def extensions(self) -> dict[str, Any]:
        """Keys beyond the required set."""
        return dict(self.model_extra or {})


class ProfileMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    email: str | None = None


class SubscriptionData(BaseModel):
    """Subscription summary embedded in the profile."""

    model_config = ConfigDict(extra="allow")

    stripe_customer_id: str | None = None
    subscriptions: dict[str, dict[str, Any]] = Field(default_factory=dict)


class UserProfile(BaseModel):
    """Per-user profile row (app_user_profile)."""

    user_id: str
    avatar_url: str | None = None
    bio: str | None = None
    locale: str | None = "en"
    timezone: str | None = None
    location: UserLocation | None = None
    metadata: ProfileMetadata | None = None
    notification_settings: NotificationSettings | None = None
    personalized_settings: PersonalizedSettings | None = None
    sub_data: SubscriptionData | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# User portrait (computed statistics)
# ---------------------------------------------------------------------------


class UserMetric(BaseModel):
    """A single computed metric."""

    model_config = ConfigDict(extra="allow")

    value: float | int | str | bool | dict[str, Any] | list[Any]
    unit: str | None = None
    description: str | None = None
    calculated_at: str | None = None


class PortraitData(BaseModel):
    """Metric collection keyed by metric name."""

    model_config = ConfigDict(extra="allow")

    metrics: dict[str, UserMetric] = Field(default_factory=dict)
    version: str | None = None
    source: str | None = None


class UserPortrait(BaseModel):
    """Per-user portrait row (app_user_portrait)."""

    id: str
    user_id: str
    data: PortraitData
    version: str | None = None
    source: str | None = None
    calculated_at: datetime | None = None
