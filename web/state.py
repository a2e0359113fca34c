"""
Shared mutable state for the web server.

The live pipeline, flow coordinator and account router are process-wide
singletons; route modules import web.state and read them from here.
A Bedrock account is seeded from the AWS settings in the environment.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket

from accounts import Account, AccountRouter, AccountsStore, MultiAccountProvider, ProviderKind, UsageDashboard
from config import AWSConfig, aws_config
from flow import FlowCoordinator
from flow.pipeline import LivePipeline
from provider_service import BedrockProvider

logger = logging.getLogger(__name__)

# ============================================================
# Globals
# ============================================================

_pipeline: LivePipeline = LivePipeline()
_coordinator: FlowCoordinator = FlowCoordinator(pipeline=_pipeline)
_unbind_coordinator = _pipeline.bind_coordinator(_coordinator)

_accounts_store: AccountsStore = AccountsStore()
_account_router: AccountRouter = AccountRouter(_accounts_store)
_dashboard: UsageDashboard = UsageDashboard(_account_router)


def seed_accounts_from_config(store: AccountsStore, aws: AWSConfig = aws_config) -> Optional[Account]:
    """
    Register the AWS profile or key pair from the environment as a Bedrock
    account. CLI families have no ambient credentials and are added by the
    caller through ``store.add``.
    """
    if store.accounts_for(ProviderKind.BEDROCK):
        return None
    if aws.has_profile():
        account = Account(provider=ProviderKind.BEDROCK, label=f"AWS profile {aws.profile_name}",
                          profile_path=aws.profile_name)
    elif aws.has_explicit_credentials():
        # Empty profile: the client falls back to the configured key pair
        account = Account(provider=ProviderKind.BEDROCK, label="AWS credentials")
    else:
        return None
    logger.info(f"Seeded Bedrock account from config: {account.label}")
    return store.add(account)


def make_bedrock_provider(account: Account, env: Dict[str, str]) -> BedrockProvider:
    return BedrockProvider(env_overrides=env)


seed_accounts_from_config(_accounts_store)
_bedrock_provider: MultiAccountProvider = MultiAccountProvider(
    ProviderKind.BEDROCK, _account_router, make_bedrock_provider, dashboard=_dashboard
)


def reset_live_state() -> LivePipeline:
    """Replace the pipeline and coordinator with fresh instances (used by tests)."""
    global _pipeline, _coordinator, _unbind_coordinator
    _unbind_coordinator()
    _pipeline = LivePipeline()
    _coordinator = FlowCoordinator(pipeline=_pipeline)
    _unbind_coordinator = _pipeline.bind_coordinator(_coordinator)
    return _pipeline


# ============================================================
# WebSocket reference wrapper (for reconnect-safe sends)
# ============================================================

class _WSRef:
    """Mutable WebSocket reference that drops sends once disconnected.

    Observable listeners are synchronous, so they schedule ``send_json``
    and the first failed send marks the reference dead.
    """
    __slots__ = ("ws",)

    def __init__(self, ws: Optional[WebSocket]):
        self.ws: Optional[WebSocket] = ws

    async def send_json(self, data: Dict[str, Any]) -> None:
        _ws = self.ws
        if _ws is None:
            return
        try:
            await _ws.send_json(data)
        except Exception as e:
            logger.debug(f"Live socket send failed, detaching: {e}")
            self.ws = None
