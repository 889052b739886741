from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """A single chat message. Created by channels (inbound) or the agent (outbound)."""

    model_config = ConfigDict(frozen=True)

    content: str
    sender: str
    timestamp: datetime = Field(default_factory=_utcnow)
    channel: Optional[str] = None


class ContextData(BaseModel):
    """Persisted form of an AgentContext."""

    system_prompt: str
    context_fields: Dict[str, str] = Field(default_factory=dict)
    conversation_history: List[Message] = Field(default_factory=list)
