"""
Accounts package - multi-account failover for provider families.

- models: ProviderKind, Account, QuotaPolicy, AccountHealth, ClassifiedFailure
- classifier: error message -> quota / rate limit / generic
- ledger: usage ledger with day / week / month totals
- router: AccountsStore and the round-robin AccountRouter
- failover: MultiAccountProvider adapter and its terminal errors
- dashboard: UsageDashboard summaries
"""

from .models import (
    ProviderKind,
    QuotaPolicy,
    AccountHealth,
    Account,
    ClassifiedFailure,
    environment_overrides,
)
from .classifier import classify_error
from .ledger import UsageLedger, UsageEvent
from .router import AccountsStore, AccountRouter
from .failover import MultiAccountProvider, NoAccountAvailableError, AccountsExhaustedError
from .dashboard import UsageDashboard

__all__ = [
    "ProviderKind", "QuotaPolicy", "AccountHealth", "Account", "ClassifiedFailure",
    "environment_overrides", "classify_error", "UsageLedger", "UsageEvent",
    "AccountsStore", "AccountRouter", "MultiAccountProvider",
    "NoAccountAvailableError", "AccountsExhaustedError", "UsageDashboard",
]
