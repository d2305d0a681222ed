from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _safe_int(env_var: str, default: str) -> int:
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid integer for {env_var}: {raw!r}") from None


def _safe_float(env_var: str, default: str) -> float:
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid float for {env_var}: {raw!r}") from None


def _flag(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.3
    reasoning_timeout_sec: float = 30.0
    tool_timeout_sec: float = 15.0
    max_tool_rounds: int = 6
    history_limit: int = 50
    enable_visit_scheduling: bool = True
    seed_fixtures: bool = True
    log_level: str = "INFO"


def _validate(settings: Settings) -> None:
    if not 0.0 <= settings.llm_temperature <= 2.0:
        raise ValueError(f"LLM_TEMPERATURE must be between 0.0 and 2.0, got {settings.llm_temperature}")
    if settings.reasoning_timeout_sec <= 0:
        raise ValueError(f"REASONING_TIMEOUT_SEC must be > 0, got {settings.reasoning_timeout_sec}")
    if settings.tool_timeout_sec <= 0:
        raise ValueError(f"TOOL_TIMEOUT_SEC must be > 0, got {settings.tool_timeout_sec}")
    if settings.max_tool_rounds < 1:
        raise ValueError(f"MAX_TOOL_ROUNDS must be >= 1, got {settings.max_tool_rounds}")
    if settings.history_limit < 0:
        raise ValueError(f"HISTORY_LIMIT must be >= 0, got {settings.history_limit}")


def load_settings() -> Settings:
    """Read settings from the environment (``.env`` is loaded on package import)."""
    settings = Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        llm_api_key=os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or os.getenv("GROQ_API_KEY"),
        llm_base_url=os.getenv("LLM_BASE_URL") or None,
        llm_model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
        llm_temperature=_safe_float("LLM_TEMPERATURE", "0.3"),
        reasoning_timeout_sec=_safe_float("REASONING_TIMEOUT_SEC", "30"),
        tool_timeout_sec=_safe_float("TOOL_TIMEOUT_SEC", "15"),
        max_tool_rounds=_safe_int("MAX_TOOL_ROUNDS", "6"),
        history_limit=_safe_int("HISTORY_LIMIT", "50"),
        enable_visit_scheduling=_flag("ENABLE_VISIT_SCHEDULING", "true"),
        seed_fixtures=_flag("SEED_FIXTURES", "true"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
    _validate(settings)
    return settings
