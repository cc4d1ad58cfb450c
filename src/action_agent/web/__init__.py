"""HTTP API for the action agent.

Provides a FastAPI-based interface for:
- Extracting (and storing) actions from inbound messages
- Listing and updating user memories
- Invite code redemption
- Device token registration
"""

from action_agent.web.app import create_app

__all__ = ["create_app"]
