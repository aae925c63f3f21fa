from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .logging import LOG_FORMATS


def env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class InterviewModuleConfig:
    db_path: str
    host: str
    port: int
    public_base_url: str
    api_base_url: str
    token_ttl_hours: int
    allow_resend: bool
    callback_api_key: str
    operator_tokens_path: str
    scheduler_enabled: bool
    scheduler_interval_seconds: int
    dispatch_timeout_seconds: int
    max_interview_minutes: int
    agent_provider: str
    agent_base_url: str
    agent_api_key: str
    meeting_link_base: str
    llm_api_key: str
    llm_base_url: str
    llm_model: str
    llm_timeout_seconds: int
    log_level: str
    log_format: str

    @classmethod
    def from_env(cls) -> "InterviewModuleConfig":
        root = Path(__file__).resolve().parents[2]
        db_path = os.environ.get(
            "SMARTHIRE_DB_PATH",
            str(root / "runtime" / "smarthire_interview.sqlite3"),
        )
        operator_tokens_path = os.environ.get(
            "SMARTHIRE_OPERATOR_TOKENS_PATH",
            str(root / "config" / "operator_tokens.json"),
        )
        host = os.environ.get("SMARTHIRE_HOST", "127.0.0.1")
        port = env_int("SMARTHIRE_PORT", 8090)

        token_ttl_hours = env_int("SMARTHIRE_TOKEN_TTL_HOURS", 72)
        scheduler_interval_seconds = env_int("SMARTHIRE_SCHEDULER_INTERVAL_SECONDS", 60)
        dispatch_timeout_seconds = env_int("SMARTHIRE_DISPATCH_TIMEOUT_SECONDS", 30)
        max_interview_minutes = env_int("SMARTHIRE_MAX_INTERVIEW_MINUTES", 180)
        llm_timeout_seconds = env_int("SMARTHIRE_LLM_TIMEOUT_SECONDS", 30)

        public_base_url = os.environ.get("SMARTHIRE_PUBLIC_BASE_URL", "").strip()
        api_base_url = os.environ.get("SMARTHIRE_API_BASE_URL", "").strip()
        agent_provider = os.environ.get("SMARTHIRE_AGENT_PROVIDER", "mock")
        log_format = os.environ.get("SMARTHIRE_LOG_FORMAT", "json").strip().lower()
        meeting_link_base = os.environ.get("SMARTHIRE_MEETING_LINK_BASE", "https://meet.smarthire.local").strip()

        return cls(
            db_path=db_path,
            host=host,
            port=port,
            public_base_url=public_base_url,
            api_base_url=api_base_url,
            token_ttl_hours=max(1, token_ttl_hours),
            allow_resend=env_bool("SMARTHIRE_ALLOW_RESEND", True),
            callback_api_key=os.environ.get("SMARTHIRE_CALLBACK_API_KEY", "").strip(),
            operator_tokens_path=operator_tokens_path,
            scheduler_enabled=env_bool("SMARTHIRE_SCHEDULER_ENABLED", True),
            scheduler_interval_seconds=max(5, scheduler_interval_seconds),
            dispatch_timeout_seconds=max(1, dispatch_timeout_seconds),
            max_interview_minutes=max(5, max_interview_minutes),
            agent_provider=agent_provider.strip().lower() or "mock",
            agent_base_url=os.environ.get("SMARTHIRE_AGENT_BASE_URL", "").strip(),
            agent_api_key=os.environ.get("SMARTHIRE_AGENT_API_KEY", "").strip(),
            meeting_link_base=meeting_link_base or "https://meet.smarthire.local",
            llm_api_key=os.environ.get("OPENAI_API_KEY", "").strip(),
            llm_base_url=os.environ.get("OPENAI_BASE_URL", "https://openrouter.ai/api/v1").strip(),
            llm_model=os.environ.get("OPENAI_MODEL", "gpt-3.5-turbo").strip() or "gpt-3.5-turbo",
            llm_timeout_seconds=max(5, llm_timeout_seconds),
            log_level=os.environ.get("SMARTHIRE_LOG_LEVEL", "INFO").strip() or "INFO",
            log_format=log_format if log_format in LOG_FORMATS else "json",
        )
