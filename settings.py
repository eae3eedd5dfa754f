import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from slack_history import InvalidTimeFormat, parse_relative_time

LLM_PROVIDERS = ("openai", "claude")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(RuntimeError):
    pass


@dataclass
class Settings:
    slack_bot_token: str
    slack_app_token: str
    slack_signing_secret: Optional[str] = None

    llm_provider: str = "openai"
    openai_api_key: str = ""
    claude_api_key: str = ""
    llm_model: Optional[str] = None

    buffer_window_hours: float = 4
    min_messages_for_analysis: int = 5
    duplicate_similarity_threshold: float = 0.8
    suggestion_history_size: int = 100
    sync_default_lookback: str = "24h"

    cron_enabled: bool = False
    monitored_channels: List[str] = field(default_factory=list)
    suggestions_channel_id: Optional[str] = None

    port: int = 3000
    app_env: str = "development"
    log_level: str = "INFO"

    @property
    def llm_api_key(self) -> str:
        if self.llm_provider == "claude":
            return self.claude_api_key
        return self.openai_api_key

    @property
    def llm_key_name(self) -> str:
        return "CLAUDE_API_KEY" if self.llm_provider == "claude" else "OPENAI_API_KEY"

    @classmethod
    def from_env(cls, environ=None, *, dotenv: bool = True) -> "Settings":
        """
        Build settings from the process environment (plus .env when present).
        Collects every problem before raising so a bad deploy shows them all at once.
        """
        if dotenv:
            load_dotenv()
        env = os.environ if environ is None else environ
        problems: List[str] = []

        def _str(name: str, default: str = "") -> str:
            return (env.get(name) or default).strip()

        def _num(name: str, default, cast, lo=None, hi=None):
            raw = _str(name)
            if not raw:
                return default
            try:
                value = cast(raw)
            except ValueError:
                problems.append(f"{name} must be a number (got {raw!r})")
                return default
            if (lo is not None and value < lo) or (hi is not None and value > hi):
                problems.append(f"{name} out of range (got {raw!r})")
                return default
            return value

        bot_token = _str("SLACK_BOT_TOKEN")
        app_token = _str("SLACK_APP_TOKEN")
        if not bot_token:
            problems.append("SLACK_BOT_TOKEN missing")
        if not app_token:
            problems.append("SLACK_APP_TOKEN missing")

        provider = _str("LLM_PROVIDER", "openai").lower()
        if provider not in LLM_PROVIDERS:
            problems.append(f"LLM_PROVIDER must be one of {', '.join(LLM_PROVIDERS)} (got {provider!r})")
            provider = "openai"

        lookback = _str("SYNC_DEFAULT_LOOKBACK", "24h")
        try:
            parse_relative_time(lookback)
        except InvalidTimeFormat:
            problems.append(f"SYNC_DEFAULT_LOOKBACK must look like 1h, 4h or 1d (got {lookback!r})")

        log_level = _str("LOG_LEVEL", "INFO").upper()
        if log_level not in LOG_LEVELS:
            problems.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)} (got {log_level!r})")

        settings = cls(
            slack_bot_token=bot_token,
            slack_app_token=app_token,
            slack_signing_secret=_str("SLACK_SIGNING_SECRET") or None,
            llm_provider=provider,
            openai_api_key=_str("OPENAI_API_KEY"),
            claude_api_key=_str("CLAUDE_API_KEY"),
            llm_model=_str("LLM_MODEL") or None,
            buffer_window_hours=_num("BUFFER_WINDOW_HOURS", 4, float, lo=0),
            min_messages_for_analysis=_num("MIN_MESSAGES_FOR_ANALYSIS", 5, int, lo=1),
            duplicate_similarity_threshold=_num("DUPLICATE_SIMILARITY_THRESHOLD", 0.8, float, lo=0, hi=1),
            suggestion_history_size=_num("SUGGESTION_HISTORY_SIZE", 100, int, lo=1),
            sync_default_lookback=lookback,
            cron_enabled=_str("CRON_ENABLED").lower() == "true",
            monitored_channels=[c.strip() for c in _str("MONITORED_CHANNELS").split(",") if c.strip()],
            suggestions_channel_id=_str("SUGGESTIONS_CHANNEL_ID") or None,
            port=_num("PORT", 3000, int, lo=0, hi=65535),
            app_env=_str("APP_ENV", "development"),
            log_level=log_level,
        )

        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems))
        return settings
