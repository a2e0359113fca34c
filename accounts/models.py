"""
Account data model for multi-account failover.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ProviderKind(str, Enum):
    """Backend family; accounts of one family are interchangeable."""
    CODEX = "codex"
    CLAUDE = "claude"
    GEMINI = "gemini"
    BEDROCK = "bedrock"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def provider_id(self) -> str:
        return _PROVIDER_IDS[self]

    @classmethod
    def from_provider_id(cls, provider_id: str) -> Optional["ProviderKind"]:
        for kind in cls:
            if kind.provider_id == provider_id:
                return kind
        return None


_DISPLAY_NAMES = {
    ProviderKind.CODEX: "Codex CLI",
    ProviderKind.CLAUDE: "Claude CLI",
    ProviderKind.GEMINI: "Gemini CLI",
    ProviderKind.BEDROCK: "Amazon Bedrock",
}

_PROVIDER_IDS = {
    ProviderKind.CODEX: "codex-cli",
    ProviderKind.CLAUDE: "claude-cli",
    ProviderKind.GEMINI: "gemini-cli",
    ProviderKind.BEDROCK: "bedrock-api",
}

# (profile directory variable, api key variable) per family
_ENV_KEYS = {
    ProviderKind.CODEX: ("CODEX_HOME", "OPENAI_API_KEY"),
    ProviderKind.CLAUDE: ("CLAUDE_HOME", "ANTHROPIC_API_KEY"),
    ProviderKind.GEMINI: ("GEMINI_CONFIG_DIR", "GOOGLE_API_KEY"),
    ProviderKind.BEDROCK: ("AWS_PROFILE", "AWS_SECRET_ACCESS_KEY"),
}


def environment_overrides(kind: ProviderKind, profile_path: str, secret: Optional[str] = None) -> Dict[str, str]:
    """Environment variables that scope a backend process to one account."""
    profile_key, secret_key = _ENV_KEYS[kind]
    env = {profile_key: profile_path}
    if secret:
        env[secret_key] = secret
    return env


@dataclass
class QuotaPolicy:
    """Local spending / token limits; None means unlimited."""
    daily_limit_usd: Optional[float] = None
    weekly_limit_usd: Optional[float] = None
    monthly_limit_usd: Optional[float] = None
    daily_token_limit: Optional[int] = None
    weekly_token_limit: Optional[int] = None
    monthly_token_limit: Optional[int] = None


@dataclass
class AccountHealth:
    cooldown_until: Optional[float] = None
    last_error_code: Optional[str] = None
    consecutive_failures: int = 0
    is_exhausted_locally: bool = False

    def is_cooling_down(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.cooldown_until is not None and self.cooldown_until > now


@dataclass
class Account:
    provider: ProviderKind
    label: str
    profile_path: str = ""
    is_enabled: bool = True
    priority: int = 0
    quota: QuotaPolicy = field(default_factory=QuotaPolicy)
    health: AccountHealth = field(default_factory=AccountHealth)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider.value,
            "label": self.label,
            "is_enabled": self.is_enabled,
            "priority": self.priority,
            "profile_path": self.profile_path,
            "health": {
                "cooldown_until": self.health.cooldown_until,
                "last_error_code": self.health.last_error_code,
                "consecutive_failures": self.health.consecutive_failures,
                "is_exhausted_locally": self.health.is_exhausted_locally,
            },
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class ClassifiedFailure:
    is_quota_exhaustion: bool
    is_rate_limited: bool
    retry_after_seconds: Optional[int]
    normalized_code: str

    @property
    def is_recoverable(self) -> bool:
        """Recoverable by rotating to another account."""
        return self.is_quota_exhaustion or self.is_rate_limited
