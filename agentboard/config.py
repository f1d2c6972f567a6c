import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from agentboard.errors import ConfigError

EXTRACTION_POLICIES = ("always", "intent")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes", "on")


class Config(BaseModel):
    """
    Pydantic-backed configuration loaded from environment variables.

    Key env vars:
    - AGENTBOARD_DB_PATH (SQLite store, default .agentboard.sqlite)
    - AGENTBOARD_ENV (default: local)
    - AGENTBOARD_REDIS_URL (queue backend and event channel; fakeredis:// for tests)
    - AGENTBOARD_INLINE_RQ_WORKER (run an RQ worker inside the API process for dev)
    - AGENTBOARD_LOG_LEVEL (default: INFO)
    - OPENAI_API_KEY / OPENAI_BASE_URL (model provider)
    - AGENTBOARD_RESPONDER_MODEL / AGENTBOARD_EXTRACTOR_MODEL (default gpt-4o)
    - AGENTBOARD_EXTRACTION_POLICY (always | intent)
    - AGENTBOARD_GITHUB_TOKEN (enables the repository commit step)
    - AGENTBOARD_MESSAGE_* / AGENTBOARD_TASK_* retry settings
    """

    db_path: Path = Field(default=Path(".agentboard.sqlite"))
    environment: str = Field(default="local")
    redis_url: Optional[str] = Field(default=None)
    log_level: str = Field(default="INFO")
    inline_rq_worker: bool = Field(default=False)
    events_channel: str = Field(default="agentboard:events")

    openai_api_key: Optional[str] = Field(default=None)
    openai_base_url: Optional[str] = Field(default=None)
    responder_model: str = Field(default="gpt-4o")
    extractor_model: str = Field(default="gpt-4o")
    responder_temperature: float = Field(default=0.7)
    responder_max_tokens: int = Field(default=1500)
    extractor_temperature: float = Field(default=0.1)

    extraction_policy: str = Field(default="always")
    history_limit: int = Field(default=10)

    github_token: Optional[str] = Field(default=None)
    github_api_url: str = Field(default="https://api.github.com")

    message_max_attempts: int = Field(default=3)
    message_backoff_seconds: float = Field(default=1.0)
    task_max_attempts: int = Field(default=2)
    task_backoff_seconds: float = Field(default=5.0)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def github_enabled(self) -> bool:
        return bool(self.github_token)


def load_config() -> Config:
    """
    Load pipeline configuration from environment.
    """
    extraction_policy = os.environ.get("AGENTBOARD_EXTRACTION_POLICY", "always").lower()
    if extraction_policy not in EXTRACTION_POLICIES:
        raise ConfigError(
            f"AGENTBOARD_EXTRACTION_POLICY must be one of {', '.join(EXTRACTION_POLICIES)}",
            metadata={"value": extraction_policy},
        )
    try:
        return Config(
            db_path=Path(os.environ.get("AGENTBOARD_DB_PATH", ".agentboard.sqlite")).expanduser(),
            environment=os.environ.get("AGENTBOARD_ENV", "local"),
            redis_url=os.environ.get("AGENTBOARD_REDIS_URL"),
            log_level=os.environ.get("AGENTBOARD_LOG_LEVEL", "INFO"),
            inline_rq_worker=_env_flag("AGENTBOARD_INLINE_RQ_WORKER"),
            events_channel=os.environ.get("AGENTBOARD_EVENTS_CHANNEL", "agentboard:events"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            openai_base_url=os.environ.get("OPENAI_BASE_URL") or None,
            responder_model=os.environ.get("AGENTBOARD_RESPONDER_MODEL", "gpt-4o"),
            extractor_model=os.environ.get("AGENTBOARD_EXTRACTOR_MODEL", "gpt-4o"),
            responder_temperature=float(os.environ.get("AGENTBOARD_RESPONDER_TEMPERATURE", "0.7")),
            responder_max_tokens=int(os.environ.get("AGENTBOARD_RESPONDER_MAX_TOKENS", "1500")),
            extractor_temperature=float(os.environ.get("AGENTBOARD_EXTRACTOR_TEMPERATURE", "0.1")),
            extraction_policy=extraction_policy,
            history_limit=int(os.environ.get("AGENTBOARD_HISTORY_LIMIT", "10")),
            github_token=os.environ.get("AGENTBOARD_GITHUB_TOKEN") or None,
            github_api_url=os.environ.get("AGENTBOARD_GITHUB_API_URL", "https://api.github.com"),
            message_max_attempts=int(os.environ.get("AGENTBOARD_MESSAGE_MAX_ATTEMPTS", "3")),
            message_backoff_seconds=float(os.environ.get("AGENTBOARD_MESSAGE_BACKOFF_SECONDS", "1.0")),
            task_max_attempts=int(os.environ.get("AGENTBOARD_TASK_MAX_ATTEMPTS", "2")),
            task_backoff_seconds=float(os.environ.get("AGENTBOARD_TASK_BACKOFF_SECONDS", "5.0")),
        )
    except ValueError as exc:
        raise ConfigError(f"Invalid numeric setting: {exc}") from exc
