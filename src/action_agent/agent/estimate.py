"""Coarse 0-5 weight derived from an action's importance rating."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from action_agent.agent.models import ActionRecord

ESTIMATE_BUCKET = 20


def estimate_from_rating(importance_rating: int) -> int:
    """floor(importance_rating / 20): 0-19 -> 0, ..., 100 -> 5."""
    return importance_rating // ESTIMATE_BUCKET


def estimate(action: ActionRecord) -> int:
    return estimate_from_rating(action.importance_rating)
