"""Action extraction components.

This package turns an inbound message into a structured action:
- Channel labels and input normalization per channel
- Prompt assembly and the record_action tool definition
- Claude extractor with schema validation
- Deterministic scoring rules and the 0-5 estimate
"""

from action_agent.agent.channels import Channel, parse_channel
from action_agent.agent.estimate import estimate, estimate_from_rating
from action_agent.agent.extractor import ActionExtractor, ExtractionResult
from action_agent.agent.models import (
    ActionRecord,
    PersonalizedSettings,
    PortraitData,
    UserMetric,
    UserPortrait,
    UserProfile,
)
from action_agent.agent.normalizer import normalize
from action_agent.agent.pipeline import AgentOutcome, run_action_agent
from action_agent.agent.policy import ScoringPolicy
from action_agent.agent.prompts import RECORD_ACTION_TOOL, PromptAssembler

__all__ = [
    # Channels
    "Channel",
    "parse_channel",
    # Normalizer
    "normalize",
    # Models
    "ActionRecord",
    "PersonalizedSettings",
    "PortraitData",
    "UserMetric",
    "UserPortrait",
    "UserProfile",
    # Extraction
    "ActionExtractor",
    "ExtractionResult",
    "PromptAssembler",
    "RECORD_ACTION_TOOL",
    "ScoringPolicy",
    "estimate",
    "estimate_from_rating",
    # Entry point
    "AgentOutcome",
    "run_action_agent",
]
