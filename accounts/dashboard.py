"""
Usage dashboard: per-family account rows and global totals computed from
the account store, the usage ledger and the router's bookkeeping.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from flow.observable import Observable

from .ledger import PERIOD_DAY, PERIOD_MONTH, PERIOD_WEEK
from .models import ProviderKind
from .router import AccountRouter

logger = logging.getLogger(__name__)


@dataclass
class DashboardAccountRow:
    id: str
    provider: str
    label: str
    is_enabled: bool
    is_active_now: bool
    health_status: str  # Active | Cooldown | Exhausted
    day_cost: float
    week_cost: float
    month_cost: float
    day_tokens: int
    week_tokens: int
    month_tokens: int
    last_error: Optional[str] = None


@dataclass
class DashboardProviderSection:
    provider: str
    active_account_id: Optional[str]
    last_failover_reason: Optional[str]
    last_switch_at: Optional[float]
    rows: List[DashboardAccountRow] = field(default_factory=list)


@dataclass
class DashboardTotals:
    account_count: int = 0
    active_count: int = 0
    exhausted_count: int = 0
    total_day_cost: float = 0.0
    total_day_tokens: int = 0


class UsageDashboard:
    """
    ``refresh()`` is fired and forgotten by the failover adapter after
    every usage or error observation. A refresh that starts while another
    is running returns immediately.
    """

    def __init__(
        self,
        router: AccountRouter,
        usage_fetchers: Optional[List[Callable[[], Awaitable[None]]]] = None,
    ):
        self.router = router
        self.usage_fetchers = list(usage_fetchers or [])
        self.sections: List[DashboardProviderSection] = []
        self.totals = DashboardTotals()
        self.last_updated_at: Optional[float] = None
        self.is_refreshing = False
        self.refresh_count = 0
        self.changes: Observable[int] = Observable(0)

    async def refresh(self):
        if self.is_refreshing:
            return
        self.is_refreshing = True
        try:
            for fetch in self.usage_fetchers:
                try:
                    await fetch()
                except Exception as e:
                    logger.warning(f"Usage snapshot fetch failed: {e}")
            self.sections = [self.provider_summary(kind) for kind in ProviderKind]
            self.totals = self.total_summary()
            self.last_updated_at = time.time()
            self.refresh_count += 1
            self.changes.set(self.refresh_count)
        finally:
            self.is_refreshing = False

    def provider_summary(self, kind: ProviderKind) -> DashboardProviderSection:
        router = self.router
        active_id = router.current_account.get(kind)
        now = time.time()
        rows = []
        for account in router.store.accounts_for(kind):
            day_cost, day_tokens = router.ledger.totals(account.id, PERIOD_DAY)
            week_cost, week_tokens = router.ledger.totals(account.id, PERIOD_WEEK)
            month_cost, month_tokens = router.ledger.totals(account.id, PERIOD_MONTH)
            if account.health.is_exhausted_locally:
                health = "Exhausted"
            elif account.health.is_cooling_down(now):
                health = "Cooldown"
            else:
                health = "Active"
            rows.append(DashboardAccountRow(
                id=account.id,
                provider=kind.value,
                label=account.label,
                is_enabled=account.is_enabled,
                is_active_now=active_id == account.id,
                health_status=health,
                day_cost=day_cost,
                week_cost=week_cost,
                month_cost=month_cost,
                day_tokens=day_tokens,
                week_tokens=week_tokens,
                month_tokens=month_tokens,
                last_error=account.health.last_error_code,
            ))
        return DashboardProviderSection(
            provider=kind.value,
            active_account_id=active_id,
            last_failover_reason=router.last_failover_reason.get(kind),
            last_switch_at=router.last_switch_at.get(kind),
            rows=rows,
        )

    def total_summary(self) -> DashboardTotals:
        totals = DashboardTotals()
        for account in self.router.store.accounts:
            totals.account_count += 1
            if account.health.is_exhausted_locally:
                totals.exhausted_count += 1
            if self.router.current_account.get(account.provider) == account.id:
                totals.active_count += 1
            cost, tokens = self.router.ledger.totals(account.id, PERIOD_DAY)
            totals.total_day_cost += cost
            totals.total_day_tokens += tokens
        return totals

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sections": [asdict(s) for s in self.sections],
            "totals": asdict(self.totals),
            "last_updated_at": self.last_updated_at,
        }
