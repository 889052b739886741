from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import AgentConfigError

logger = logging.getLogger("ragbot.agent_config")

SAMPLE_AGENT_CONFIG = """\
name: Bob
system_prompt: |
  You are Bob, a friendly assistant who helps users with questions about their notes.
context_fields:
  location: the team chat
max_tokens: 4096
min_periodic_minutes: 60
max_periodic_minutes: 120
"""


class AgentConfig(BaseModel):
    """Immutable agent definition loaded from YAML."""

    model_config = ConfigDict(frozen=True)

    name: str
    system_prompt: str
    context_fields: Dict[str, str] = Field(default_factory=dict)
    max_tokens: int = Field(default=4096, ge=1)
    min_periodic_minutes: int = Field(default=60, ge=1)
    max_periodic_minutes: int = Field(default=120, ge=1)
    knowledge_fraction: float = Field(default=0.75, ge=0.0, le=1.0)
    max_knowledge_results: int = Field(default=8, ge=0)
    announce_on_start: bool = True

    @field_validator("name", "system_prompt")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("context_fields", mode="before")
    @classmethod
    def _stringify_fields(cls, value):
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @model_validator(mode="after")
    def _check_interval(self) -> "AgentConfig":
        if self.min_periodic_minutes > self.max_periodic_minutes:
            raise ValueError("min_periodic_minutes must be <= max_periodic_minutes")
        return self


def _error(message: str) -> AgentConfigError:
    return AgentConfigError(f"{message}\n\nExample agent configuration:\n\n{SAMPLE_AGENT_CONFIG}")


def load_agent_config(path: str | Path) -> AgentConfig:
    """Load and validate the agent definition at `path`."""
    config_path = Path(path)
    if not config_path.exists():
        raise _error(f"Agent config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise _error(f"Agent config is not valid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise _error("Agent config YAML must deserialize to a mapping")

    try:
        config = AgentConfig.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in exc.errors()
        )
        raise _error(f"Invalid agent config {config_path}: {problems}") from exc

    logger.debug("Loaded agent config %s from %s", config.name, config_path)
    return config
