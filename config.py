"""
Configuration module for the CodeRide live pipeline.
Handles environment variables, watchdog budgets, live aggregation limits,
account failover settings and the model pricing table.
"""

import os
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Tuple
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class AWSConfig:
    """AWS-specific configuration (Bedrock-backed provider)"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")
    model_id: str = os.getenv("BEDROCK_MODEL_ID", "us.anthropic.claude-sonnet-4-5-20250929-v1:0")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "16000"))

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class FlowConfig:
    """Watchdog budgets for one conversation turn"""
    # Cold start: auth/connection handshake before the first event
    first_event_timeout: float = float(os.getenv("FIRST_EVENT_TIMEOUT", "20"))
    # Gap allowed between two events once the stream is flowing
    inactivity_timeout: float = float(os.getenv("INACTIVITY_TIMEOUT", "120"))


@dataclass
class LiveConfig:
    """Bounds for the live activity log and swarm lanes"""
    lane_dedup_limit: int = int(os.getenv("LANE_DEDUP_LIMIT", "80"))
    lane_display_limit: int = int(os.getenv("LANE_DISPLAY_LIMIT", "120"))
    active_ops_window: int = int(os.getenv("ACTIVE_OPS_WINDOW", "40"))
    instant_grep_cap: int = int(os.getenv("INSTANT_GREP_CAP", "20"))
    envelope_cap: int = int(os.getenv("ENVELOPE_CAP", "50"))
    diagnostics_cap: int = int(os.getenv("DIAGNOSTICS_CAP", "20"))
    # Activities retained for lane projections (lanes keep merged-away events too)
    lane_history_cap: int = int(os.getenv("LANE_HISTORY_CAP", "2000"))


@dataclass
class AccountConfig:
    """Multi-account failover settings"""
    # Cooldown applied to a rate-limited account when no retry-after hint is given
    rate_limit_cooldown: int = int(os.getenv("RATE_LIMIT_COOLDOWN", "120"))
    min_rate_limit_cooldown: int = int(os.getenv("MIN_RATE_LIMIT_COOLDOWN", "30"))
    usage_ledger_cap: int = int(os.getenv("USAGE_LEDGER_CAP", "5000"))


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "CodeRide Live"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug_mode: bool = os.getenv("DEBUG_MODE", "false").lower() == "true"
    flow_diagnostics_enabled: bool = os.getenv("FLOW_DIAGNOSTICS_ENABLED", "true").lower() == "true"


# ============================================================
# Model pricing -- USD per 1M tokens (input, output).
# Matched by substring, first hit wins, so more specific names
# must come before their prefixes.
# ============================================================
MODEL_PRICING: List[Dict[str, Any]] = [
    {"match": ("gpt-4o-mini",), "input": 0.15, "output": 0.60, "context_window": 128000},
    {"match": ("gpt-4o",), "input": 5.00, "output": 15.00, "context_window": 128000},
    {"match": ("gpt-4-turbo",), "input": 10.00, "output": 30.00, "context_window": 128000},
    {"match": ("gpt-4",), "input": 30.00, "output": 60.00, "context_window": 128000},
    {"match": ("gpt-3.5-turbo",), "input": 0.50, "output": 1.50, "context_window": 16000},
    {"match": ("o1", "o3", "o4"), "input": 15.00, "output": 60.00, "context_window": 128000},
    {"match": ("claude-3-5-sonnet",), "input": 3.00, "output": 15.00, "context_window": 200000},
    {"match": ("claude-3-5-haiku",), "input": 0.80, "output": 4.00, "context_window": 200000},
    {"match": ("claude-3-opus",), "input": 15.00, "output": 75.00, "context_window": 200000},
    {"match": ("claude-3-sonnet",), "input": 3.00, "output": 15.00, "context_window": 200000},
    {"match": ("claude-3-haiku",), "input": 0.25, "output": 1.25, "context_window": 200000},
    {"match": ("claude-sonnet",), "input": 3.00, "output": 15.00, "context_window": 200000},
]

DEFAULT_PRICE_PER_MILLION: Tuple[float, float] = (1.00, 3.00)
DEFAULT_CONTEXT_WINDOW = 128000


# Create global config instances
aws_config = AWSConfig()
flow_config = FlowConfig()
live_config = LiveConfig()
account_config = AccountConfig()
app_config = AppConfig()


def get_pricing_entry(model: str) -> Optional[Dict[str, Any]]:
    """Get the pricing entry matching a model name"""
    m = (model or "").lower()
    for entry in MODEL_PRICING:
        if any(token in m for token in entry["match"]):
            return entry
    return None


def price_per_million(model: str) -> Tuple[float, float]:
    entry = get_pricing_entry(model)
    if entry is None:
        return DEFAULT_PRICE_PER_MILLION
    return entry["input"], entry["output"]


def estimated_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    """Estimate the USD cost of a request from its token counts"""
    in_price, out_price = price_per_million(model)
    return input_tokens / 1_000_000 * in_price + output_tokens / 1_000_000 * out_price


def context_window_size(model: str) -> int:
    entry = get_pricing_entry(model)
    return entry["context_window"] if entry else DEFAULT_CONTEXT_WINDOW


def get_credentials_info() -> str:
    if aws_config.has_profile():
        return f"Using AWS profile: {aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        if aws_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default AWS credential chain"
