"""
Account store and router.

The router is the only writer of account health. The failover adapter
reports every selection, usage observation and classified error through
it, and several in-flight turns may share one router.
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from config import account_config

from .ledger import PERIOD_DAY, PERIOD_MONTH, PERIOD_WEEK, UsageLedger
from .models import Account, ClassifiedFailure, ProviderKind

logger = logging.getLogger(__name__)


class AccountsStore:
    """In-memory account registry with per-account secrets."""

    def __init__(self, accounts: Optional[List[Account]] = None):
        self._accounts: Dict[str, Account] = {}
        self._secrets: Dict[str, str] = {}
        for account in accounts or []:
            self.add(account)

    @property
    def accounts(self) -> List[Account]:
        return list(self._accounts.values())

    def add(self, account: Account, secret: Optional[str] = None) -> Account:
        self._accounts[account.id] = account
        if secret:
            self._secrets[account.id] = secret
        return account

    def update(self, account: Account):
        account.updated_at = time.time()
        self._accounts[account.id] = account

    def remove(self, account_id: str):
        self._accounts.pop(account_id, None)
        self._secrets.pop(account_id, None)

    def get(self, account_id: str) -> Optional[Account]:
        return self._accounts.get(account_id)

    def accounts_for(self, kind: ProviderKind) -> List[Account]:
        return [a for a in self._accounts.values() if a.provider == kind]

    def secret(self, account_id: str) -> Optional[str]:
        return self._secrets.get(account_id)

    def has_enabled_account(self, kind: ProviderKind) -> bool:
        return any(a.is_enabled for a in self.accounts_for(kind))


class AccountRouter:
    """
    Round-robin account selection per provider family.

    ``auth_check`` lets callers exclude accounts whose credentials are not
    usable right now; by default every account is considered logged in.
    """

    def __init__(
        self,
        store: AccountsStore,
        ledger: Optional[UsageLedger] = None,
        auth_check: Optional[Callable[[Account], bool]] = None,
    ):
        self.store = store
        self.ledger = ledger if ledger is not None else UsageLedger()
        self.auth_check = auth_check
        self.round_robin_index: Dict[ProviderKind, int] = {}
        self.current_account: Dict[ProviderKind, str] = {}
        self.last_failover_reason: Dict[ProviderKind, str] = {}
        self.last_switch_at: Dict[ProviderKind, float] = {}

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def available_accounts(self, kind: ProviderKind) -> List[Account]:
        now = time.time()
        candidates = sorted(self.store.accounts_for(kind), key=lambda a: (a.priority, a.created_at))
        available = []
        for account in candidates:
            if not account.is_enabled or account.health.is_exhausted_locally:
                continue
            if account.health.is_cooling_down(now):
                continue
            if self.auth_check is not None and not self.auth_check(account):
                continue
            if self.exceeds_policy(account):
                continue
            available.append(account)
        return available

    def select_account(self, kind: ProviderKind) -> Optional[Account]:
        candidates = self.available_accounts(kind)
        if not candidates:
            return None
        idx = self.round_robin_index.get(kind, 0) % len(candidates)
        self.round_robin_index[kind] = (idx + 1) % len(candidates)
        selected = candidates[idx]
        self.mark_account_selected(selected.id, kind, None)
        return selected

    def next_available_account(self, after: str, kind: ProviderKind) -> Optional[Account]:
        candidates = self.available_accounts(kind)
        if not candidates:
            return None
        ids = [a.id for a in candidates]
        # The failed account is usually filtered out already (cooldown / exhausted)
        selected = candidates[(ids.index(after) + 1) % len(candidates)] if after in ids else candidates[0]
        self.mark_account_selected(selected.id, kind, self.last_failover_reason.get(kind))
        return selected

    def is_available(self, kind: ProviderKind) -> bool:
        return bool(self.available_accounts(kind))

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def mark_account_selected(self, account_id: str, kind: ProviderKind, reason: Optional[str] = None):
        previous = self.current_account.get(kind)
        self.current_account[kind] = account_id
        self.last_switch_at[kind] = time.time()
        if reason:
            self.last_failover_reason[kind] = reason
        if previous and previous != account_id:
            logger.info(f"Switched {kind.value} account {previous[:8]} -> {account_id[:8]} ({reason or 'rotation'})")

    def mark_usage(
        self,
        account_id: str,
        kind: ProviderKind,
        input_tokens: int,
        output_tokens: int,
        estimated_cost: float,
    ):
        self.ledger.append(account_id, kind, input_tokens, output_tokens, estimated_cost)
        account = self._find(account_id, kind)
        if account is None:
            return
        account.health.consecutive_failures = 0
        account.health.last_error_code = None
        account.health.cooldown_until = None
        if self.exceeds_policy(account):
            account.health.is_exhausted_locally = True
            account.health.last_error_code = "local_limit_reached"
            logger.warning(f"Account {account.label} reached its local usage limit")
        self.store.update(account)

    def mark_provider_error(self, account_id: str, kind: ProviderKind, failure: ClassifiedFailure):
        account = self._find(account_id, kind)
        if account is None:
            return
        account.health.consecutive_failures += 1
        account.health.last_error_code = failure.normalized_code
        if failure.is_quota_exhaustion:
            account.health.is_exhausted_locally = True
        if failure.is_rate_limited:
            seconds = max(
                account_config.min_rate_limit_cooldown,
                failure.retry_after_seconds or account_config.rate_limit_cooldown,
            )
            account.health.cooldown_until = time.time() + seconds
            logger.warning(f"Account {account.label} cooling down for {seconds}s")
        self.last_failover_reason[kind] = failure.normalized_code
        self.store.update(account)

    def exceeds_policy(self, account: Account) -> bool:
        quota = account.quota
        day_cost, day_tokens = self.ledger.totals(account.id, PERIOD_DAY)
        week_cost, week_tokens = self.ledger.totals(account.id, PERIOD_WEEK)
        month_cost, month_tokens = self.ledger.totals(account.id, PERIOD_MONTH)
        checks = [
            (quota.daily_limit_usd, day_cost),
            (quota.weekly_limit_usd, week_cost),
            (quota.monthly_limit_usd, month_cost),
            (quota.daily_token_limit, day_tokens),
            (quota.weekly_token_limit, week_tokens),
            (quota.monthly_token_limit, month_tokens),
        ]
        return any(limit is not None and used >= limit for limit, used in checks)

    def _find(self, account_id: str, kind: ProviderKind) -> Optional[Account]:
        account = self.store.get(account_id)
        if account is None or account.provider != kind:
            return None
        return account
