"""
Bot responder and knowledge-base configuration.
Controls the automated assistant that answers while a session is in bot mode.

Version: 1.0.0
"""
from typing import Dict, List, Optional, Union
import json
import os
import logging

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


DEFAULT_ESCALATION_KEYWORDS: Dict[str, float] = {
    "human": 1.0,
    "human agent": 1.0,
    "real person": 1.0,
    "speak to someone": 1.0,
    "talk to a person": 1.0,
    "live agent": 1.0,
    "representative": 0.9,
    "operator": 0.9,
    "manager": 0.8,
    "supervisor": 0.8,
}

DEFAULT_HIGH_PRIORITY_KEYWORDS: List[str] = [
    "urgent",
    "emergency",
    "asap",
    "immediately",
    "legal",
    "lawsuit",
    "fraud",
    "critical",
]


class BotSettings(BaseSettings):
    """
    Configuration for the bot responder and the knowledge-base client.

    The knowledge-base API key supports ``env://VAR_NAME`` indirection so the
    secret itself never has to live in the settings source.
    """

    model_config = SettingsConfigDict(
        env_prefix="BOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================
    # Knowledge Base
    # ===========================

    kb_enabled: bool = Field(
        default=False,
        description="Answer bot-mode messages from the knowledge base"
    )

    kb_base_url: str = Field(
        default="http://localhost:3001",
        description="Base URL of the knowledge-base document service"
    )

    kb_api_key: Optional[SecretStr] = Field(
        default=None,
        description="Knowledge-base API key (supports env:// prefix)"
    )

    kb_timeout: float = Field(default=5.0, ge=0.5, le=60.0)
    kb_search_limit: int = Field(default=3, ge=1, le=20)
    kb_similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    kb_max_retries: int = Field(default=2, ge=1, le=10)
    kb_breaker_fail_max: int = Field(default=5, ge=1)
    kb_breaker_reset_seconds: int = Field(default=60, ge=1)
    kb_cache_ttl_seconds: int = Field(
        default=300,
        ge=0,
        description="Cache search results for this long; 0 disables the cache"
    )
    kb_cache_size: int = Field(default=256, ge=1)

    # ===========================
    # Escalation
    # ===========================

    escalation_keywords: Union[Dict[str, float], str] = Field(
        default_factory=lambda: dict(DEFAULT_ESCALATION_KEYWORDS),
        description="Phrases that signal an explicit request for a human, with weights"
    )

    escalation_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    high_priority_keywords: Union[List[str], str] = Field(
        default_factory=lambda: list(DEFAULT_HIGH_PRIORITY_KEYWORDS)
    )

    max_unresolved_replies: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Consecutive unanswered questions before the bot escalates"
    )

    # ===========================
    # Replies
    # ===========================

    fallback_reply: str = Field(
        default=(
            "I'm sorry, I couldn't find an answer to that. "
            "You can ask to speak with a human agent at any time."
        )
    )

    handoff_reply: str = Field(
        default="I wasn't able to resolve this, so I'm connecting you with a human agent."
    )

    @field_validator('escalation_keywords', mode='before')
    @classmethod
    def parse_escalation_keywords(cls, v):
        """Parse escalation keywords from JSON or ``key=weight`` lists."""
        if v is None:
            return dict(DEFAULT_ESCALATION_KEYWORDS)

        if isinstance(v, dict):
            return v

        if isinstance(v, str):
            if v.startswith('{'):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass

            result = {}
            for pair in v.split(','):
                pair = pair.strip()
                if not pair:
                    continue
                if '=' in pair:
                    key, value = pair.split('=', 1)
                    try:
                        result[key.strip().lower()] = float(value)
                    except ValueError:
                        result[key.strip().lower()] = 1.0
                else:
                    result[pair.lower()] = 1.0
            return result if result else dict(DEFAULT_ESCALATION_KEYWORDS)

        return v

    @field_validator('high_priority_keywords', mode='before')
    @classmethod
    def parse_high_priority_keywords(cls, v):
        if v is None:
            return list(DEFAULT_HIGH_PRIORITY_KEYWORDS)

        if isinstance(v, str):
            if v.startswith('['):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [k.strip().lower() for k in v.split(',') if k.strip()]

        return v

    @field_validator('kb_api_key', mode='before')
    @classmethod
    def load_api_key_from_source(
        cls,
        v: Optional[Union[str, SecretStr]]
    ) -> Optional[SecretStr]:
        """Resolve ``env://VAR_NAME`` references."""
        if v is None or isinstance(v, SecretStr):
            return v

        if isinstance(v, str) and v.startswith('env://'):
            env_var = v[len('env://'):]
            value = os.getenv(env_var)
            if not value:
                logger.warning(f"Environment variable {env_var} referenced by kb_api_key is not set")
                return None
            return SecretStr(value)

        return SecretStr(v) if v else None

    def get_kb_api_key(self) -> Optional[str]:
        """Return the knowledge-base API key value, if configured."""
        if self.kb_api_key:
            return self.kb_api_key.get_secret_value()
        return None


bot_settings = BotSettings()

__all__ = ['BotSettings', 'bot_settings', 'DEFAULT_ESCALATION_KEYWORDS']
