"""
Multi-account failover adapter.

Wraps one provider family behind the Provider contract and retries the
same request on the next account when a backend reports quota exhaustion
or rate limiting. Each account is attempted at most once per request.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Dict, List, Optional, Set

from config import estimated_cost
from provider_service import Provider, ProviderError, StreamEvent, WorkspaceContext

from .classifier import classify_error
from .models import Account, ProviderKind, environment_overrides
from .router import AccountRouter

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Account, Dict[str, str]], Provider]


class NoAccountAvailableError(ProviderError):
    """No usable account for the family when the request started."""


class AccountsExhaustedError(ProviderError):
    """Every account of the family was tried and failed or became unavailable."""


def _int_or_zero(value: Optional[str]) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0


class MultiAccountProvider(Provider):
    def __init__(
        self,
        kind: ProviderKind,
        router: AccountRouter,
        make_provider: ProviderFactory,
        provider_id: Optional[str] = None,
        display_name: Optional[str] = None,
        dashboard=None,
    ):
        self.kind = kind
        self.router = router
        self.make_provider = make_provider
        self.id = provider_id or kind.provider_id
        self.display_name = display_name or kind.display_name
        self.dashboard = dashboard
        self._background_tasks: Set[asyncio.Task] = set()

    def is_authenticated(self) -> bool:
        return self.router.store.has_enabled_account(self.kind)

    async def send(
        self,
        prompt: str,
        context: WorkspaceContext,
        images: Optional[List[str]] = None,
    ) -> AsyncIterator[StreamEvent]:
        return self._stream(prompt, context, images)

    async def _stream(
        self,
        prompt: str,
        context: WorkspaceContext,
        images: Optional[List[str]],
    ) -> AsyncIterator[StreamEvent]:
        attempted: Set[str] = set()
        # Error events of the attempt in flight; dropped when failover recovers
        held_errors: List[StreamEvent] = []
        account = self.router.select_account(self.kind)
        if account is None:
            message = f"Nessun account {self.kind.display_name} disponibile."
            logger.error(message)
            yield StreamEvent.error(message)
            raise NoAccountAvailableError(message)

        while account is not None and account.id not in attempted:
            attempted.add(account.id)
            held_errors = []
            self.router.mark_account_selected(account.id, self.kind, None)
            logger.info(f"{self.id}: attempt {len(attempted)} with account {account.label}")

            try:
                secret = self.router.store.secret(account.id)
                env = environment_overrides(self.kind, account.profile_path, secret)
                provider = self.make_provider(account, env)
                stream = await provider.send(prompt, context, images)
                async for ev in stream:
                    if ev.is_raw and ev.type == "usage":
                        self._observe_usage(account, ev.payload)
                    if ev.is_error:
                        held_errors.append(ev)
                        continue
                    yield ev
            except Exception as e:
                message = held_errors[-1].text if held_errors else str(e)
                failure = classify_error(self.id, message)
                self.router.mark_provider_error(account.id, self.kind, failure)
                self._refresh_dashboard()

                if not failure.is_recoverable:
                    logger.error(f"{self.id}: unrecoverable error on {account.label}: {e}")
                    for held in held_errors:
                        yield held
                    if not held_errors or held_errors[-1].text != str(e):
                        yield StreamEvent.error(str(e))
                    if isinstance(e, ProviderError):
                        raise
                    raise ProviderError(str(e)) from e

                logger.warning(f"{self.id}: {failure.normalized_code} on {account.label}, rotating account")
                self.router.mark_account_selected(account.id, self.kind, failure.normalized_code)
                account = self.router.next_available_account(account.id, self.kind)
                continue

            # Completed attempt: in-band errors that did not abort the stream reach the caller
            for held in held_errors:
                yield held
            return

        message = f"Tutti gli account {self.kind.display_name} sono esauriti o non disponibili."
        logger.error(f"{self.id}: {message} (attempted {len(attempted)})")
        for held in held_errors:
            yield held
        yield StreamEvent.error(message)
        raise AccountsExhaustedError(message)

    def _observe_usage(self, account: Account, payload: Dict[str, str]):
        input_tokens = _int_or_zero(payload.get("input_tokens"))
        output_tokens = _int_or_zero(payload.get("output_tokens"))
        cost = estimated_cost(input_tokens, output_tokens, payload.get("model") or self.id)
        self.router.mark_usage(account.id, self.kind, input_tokens, output_tokens, cost)
        self._refresh_dashboard()

    def _refresh_dashboard(self):
        if self.dashboard is None:
            return
        task = asyncio.get_running_loop().create_task(self.dashboard.refresh())
        self._background_tasks.add(task)
        task.add_done_callback(self._on_refresh_done)

    def _on_refresh_done(self, task: asyncio.Task):
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Usage dashboard refresh failed: {task.exception()}")
