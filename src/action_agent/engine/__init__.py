"""Message processing engines.

- Ingest service: run the agent for a stored user and persist the action
"""

from action_agent.engine.ingest import IngestResult, IngestService

__all__ = [
    "IngestResult",
    "IngestService",
]
