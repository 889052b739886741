import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env from the current directory so PROVIDER, keys and channel settings apply automatically.
load_dotenv()


class Settings(BaseModel):
    """Runtime configuration loaded from environment variables."""

    agent_config_path: str = "agent.yaml"

    provider_name: str = "stub"
    llm_model: Optional[str] = None
    llm_base_url: Optional[str] = None
    openai_api_key: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    max_prompt_tokens: int = 6000
    llm_timeout_seconds: float = 60.0

    channel: str = "console"
    discord_token: Optional[str] = None
    discord_channel_id: Optional[str] = None
    discord_poll_seconds: float = 2.0
    http_host: str = "127.0.0.1"
    http_port: int = 4280
    auth_token: Optional[str] = None

    knowledge_backend: str = "none"
    vault_path: Optional[str] = None
    chroma_path: str = "./data/chroma"
    chroma_collection: str = "ragbot_knowledge"
    serpapi_api_key: Optional[str] = None

    context_store: str = "file"
    context_dir: str = "./data"
    context_db_path: str = "./data/contexts.db"
    persist_interval_seconds: float = 300.0

    log_level: str = "INFO"


@lru_cache(maxsize=1)
def _base_settings() -> Settings:
    """Defaults only; `get_settings` overrides fields from the environment."""
    return Settings()


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def get_settings() -> Settings:
    """
    Return Settings built from the *current* environment.

    Tests mutate os.environ at runtime, so we read the environment on each
    call instead of caching.
    """
    base = _base_settings()

    def pick(name: str, default):
        value = _env(name)
        return default if value is None else value

    return Settings(
        agent_config_path=pick("AGENT_CONFIG", base.agent_config_path),
        provider_name=pick("PROVIDER", base.provider_name).lower(),
        llm_model=pick("LLM_MODEL", None) or _env("OPENROUTER_MODEL"),
        llm_base_url=pick("LLM_BASE_URL", None),
        openai_api_key=_env("OPENAI_API_KEY"),
        openrouter_api_key=_env("OPENROUTER_API_KEY"),
        gemini_api_key=_env("GEMINI_API_KEY"),
        max_prompt_tokens=pick("MAX_PROMPT_TOKENS", base.max_prompt_tokens),
        llm_timeout_seconds=pick("LLM_TIMEOUT_SECONDS", base.llm_timeout_seconds),
        channel=pick("CHANNEL", base.channel).lower(),
        discord_token=_env("DISCORD_TOKEN"),
        discord_channel_id=_env("DISCORD_CHANNEL_ID"),
        discord_poll_seconds=pick("DISCORD_POLL_SECONDS", base.discord_poll_seconds),
        http_host=pick("HTTP_HOST", base.http_host),
        http_port=pick("HTTP_PORT", base.http_port),
        auth_token=_env("AUTH_TOKEN"),
        knowledge_backend=pick("KNOWLEDGE_BACKEND", base.knowledge_backend).lower(),
        vault_path=_env("VAULT_PATH"),
        chroma_path=pick("CHROMA_PATH", base.chroma_path),
        chroma_collection=pick("CHROMA_COLLECTION", base.chroma_collection),
        serpapi_api_key=_env("SERPAPI_API_KEY"),
        context_store=pick("CONTEXT_STORE", base.context_store).lower(),
        context_dir=pick("CONTEXT_DIR", base.context_dir),
        context_db_path=pick("CONTEXT_DB_PATH", base.context_db_path),
        persist_interval_seconds=pick("PERSIST_INTERVAL_SECONDS", base.persist_interval_seconds),
        log_level=pick("LOG_LEVEL", base.log_level).upper(),
    )
