"""
In-memory usage ledger: one entry per observed ``usage`` event.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from config import account_config

from .models import ProviderKind

logger = logging.getLogger(__name__)

PERIOD_DAY = "day"
PERIOD_WEEK = "week"
PERIOD_MONTH = "month"


@dataclass(frozen=True)
class UsageEvent:
    account_id: str
    provider: ProviderKind
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    timestamp: float = field(default_factory=time.time)


def _same_period(a: datetime, b: datetime, period: str) -> bool:
    if period == PERIOD_DAY:
        return a.date() == b.date()
    if period == PERIOD_WEEK:
        return a.isocalendar()[:2] == b.isocalendar()[:2]
    if period == PERIOD_MONTH:
        return (a.year, a.month) == (b.year, b.month)
    raise ValueError(f"Unknown period: {period}")


class UsageLedger:
    def __init__(self, cap: Optional[int] = None):
        self.cap = cap or account_config.usage_ledger_cap
        self.events: List[UsageEvent] = []

    def append(
        self,
        account_id: str,
        provider: ProviderKind,
        input_tokens: int,
        output_tokens: int,
        estimated_cost_usd: float,
        timestamp: Optional[float] = None,
    ) -> UsageEvent:
        event = UsageEvent(
            account_id=account_id,
            provider=provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=estimated_cost_usd,
            timestamp=time.time() if timestamp is None else timestamp,
        )
        self.events.append(event)
        if len(self.events) > self.cap:
            del self.events[: len(self.events) - self.cap]
        return event

    def totals(self, account_id: str, period: str, now: Optional[float] = None) -> Tuple[float, int]:
        """(cost USD, tokens) for one account within the current day/week/month."""
        reference = datetime.fromtimestamp(time.time() if now is None else now)
        cost = 0.0
        tokens = 0
        for e in self.events:
            if e.account_id != account_id:
                continue
            if not _same_period(datetime.fromtimestamp(e.timestamp), reference, period):
                continue
            cost += e.estimated_cost_usd
            tokens += e.input_tokens + e.output_tokens
        return cost, tokens

    def clear(self):
        self.events.clear()
