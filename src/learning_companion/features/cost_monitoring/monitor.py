"""
Cost monitoring for LLM usage.

Tracks token spend per call in an append-only ledger, picks a model tier from
the remaining daily budget and raises alerts when daily spend crosses the
configured threshold.
"""

import calendar
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from ...core.config import CostConfig, TierConfig
from ...core.persistence import BaseDataManager, BestEffortWriter, KeyValueStore

logger = logging.getLogger(__name__)

LEDGER_KEY = "usage/ledger"


class ModelTier(Enum):
    """Cost/quality level of LLM access."""

    PREMIUM = "premium"
    BALANCED = "balanced"
    ECONOMY = "economy"


class Priority(Enum):
    """Caller's requested quality preference."""

    QUALITY = "quality"
    BALANCED = "balanced"
    ECONOMY = "economy"


@dataclass(frozen=True)
class UsageRecord:
    """Immutable ledger entry for one LLM call or cache hit."""

    timestamp: float
    session_id: str
    input_tokens: int
    output_tokens: int
    tier: str
    model: str
    module: str
    cost: float
    cached_hit: bool

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> Dict[str, Any]:
        """Convert UsageRecord to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "tier": self.tier,
            "model": self.model,
            "module": self.module,
            "cost": self.cost,
            "cached_hit": self.cached_hit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageRecord":
        """Create UsageRecord from dictionary."""
        return cls(
            timestamp=data["timestamp"],
            session_id=data["session_id"],
            input_tokens=data["input_tokens"],
            output_tokens=data["output_tokens"],
            tier=data["tier"],
            model=data.get("model", ""),
            module=data["module"],
            cost=data["cost"],
            cached_hit=data.get("cached_hit", False),
        )


@dataclass
class UsageReport:
    """Budget status returned after recording usage."""

    cost: float
    daily_usage_percent: float
    should_fallback: bool
    cost_alert: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cost": self.cost,
            "daily_usage_percent": self.daily_usage_percent,
            "should_fallback": self.should_fallback,
            "cost_alert": self.cost_alert,
        }


class CostTracker(BaseDataManager):
    """Monitor token spend and steer tier selection against the daily budget."""

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[CostConfig] = None,
        writer: Optional[BestEffortWriter] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(store, "CostTracker", writer)
        self.config = config or CostConfig()
        self._clock = clock
        self.records: List[UsageRecord] = []
        self._daily_tokens: Dict[date, int] = {}
        self._daily_cost: Dict[date, float] = {}
        self._alerted_days: Set[date] = set()

    async def _load_data(self) -> None:
        """Load the usage ledger."""
        raw_records = await self.store.read_log(LEDGER_KEY)
        loaded = []
        for raw in raw_records:
            try:
                loaded.append(UsageRecord.from_dict(raw))
            except KeyError as e:
                logger.warning(f"Skipping malformed usage record: missing {e}")
        self.records = loaded
        for record in loaded:
            self._accumulate(record)
        logger.info(f"Loaded {len(self.records)} usage records")

    async def _save_data(self) -> None:
        """Ledger records are appended as they happen; nothing to flush."""
        await self.writer.flush()

    def _day(self, timestamp: float) -> date:
        return datetime.fromtimestamp(timestamp).date()

    def _accumulate(self, record: UsageRecord) -> None:
        day = self._day(record.timestamp)
        self._daily_tokens[day] = self._daily_tokens.get(day, 0) + record.total_tokens
        self._daily_cost[day] = self._daily_cost.get(day, 0.0) + record.cost

    def tier_config(self, tier: ModelTier) -> TierConfig:
        return self.config.tiers[tier.value]

    def calculate_cost(self, tier: ModelTier, input_tokens: int, output_tokens: int) -> float:
        """Cost in USD from per-1M-token tier prices."""
        rates = self.tier_config(tier)
        input_cost = (input_tokens / 1_000_000) * rates.input_price
        output_cost = (output_tokens / 1_000_000) * rates.output_price
        return input_cost + output_cost

    def daily_tokens(self) -> int:
        return self._daily_tokens.get(self._day(self._clock()), 0)

    def daily_cost(self) -> float:
        return self._daily_cost.get(self._day(self._clock()), 0.0)

    def daily_usage_ratio(self) -> float:
        """Fraction of today's token limit already consumed."""
        return self.daily_tokens() / self.config.daily_token_limit

    def select_tier(
        self, priority: Priority, daily_usage_ratio: Optional[float] = None
    ) -> ModelTier:
        """Pick a tier; at or beyond the fallback threshold always the cheapest."""
        ratio = self.daily_usage_ratio() if daily_usage_ratio is None else daily_usage_ratio

        if ratio >= self.config.fallback_threshold:
            if priority is not Priority.ECONOMY:
                logger.warning(
                    f"Daily usage at {ratio:.0%}, downgrading {priority.value} to economy"
                )
            return ModelTier.ECONOMY
        if priority is Priority.QUALITY:
            if ratio < self.config.quality_ceiling_ratio:
                return ModelTier.PREMIUM
            return ModelTier.BALANCED
        if priority is Priority.ECONOMY:
            return ModelTier.ECONOMY
        return ModelTier.BALANCED

    def track_usage(
        self,
        session_id: str,
        input_tokens: int,
        output_tokens: int,
        tier: ModelTier,
        module: str,
        cached: bool = False,
    ) -> UsageReport:
        """Append a usage record and report budget status."""
        cost = 0.0 if cached else self.calculate_cost(tier, input_tokens, output_tokens)

        record = UsageRecord(
            timestamp=self._clock(),
            session_id=session_id,
            input_tokens=0 if cached else input_tokens,
            output_tokens=0 if cached else output_tokens,
            tier=tier.value,
            model=self.tier_config(tier).model,
            module=module,
            cost=cost,
            cached_hit=cached,
        )
        self.records.append(record)
        self._accumulate(record)
        self.writer.submit(
            "usage ledger append", lambda: self.store.append(LEDGER_KEY, record.to_dict())
        )

        usage_percent = self.daily_usage_ratio()
        daily_cost = self.daily_cost()
        cost_alert = daily_cost >= self.config.cost_alert_threshold

        today = self._day(record.timestamp)
        if cost_alert and today not in self._alerted_days:
            self._alerted_days.add(today)
            logger.warning(
                f"Daily cost ${daily_cost:.2f} reached alert threshold "
                f"${self.config.cost_alert_threshold:.2f}"
            )

        return UsageReport(
            cost=cost,
            daily_usage_percent=usage_percent,
            should_fallback=usage_percent >= self.config.fallback_threshold,
            cost_alert=cost_alert,
        )

    def _summarize(self, records: List[UsageRecord]) -> Dict[str, Any]:
        calls = len(records)
        cached = sum(1 for r in records if r.cached_hit)
        return {
            "tokens": sum(r.total_tokens for r in records),
            "cost": round(sum(r.cost for r in records), 6),
            "sessions": len({r.session_id for r in records}),
            "calls": calls,
            "cache_hit_rate": cached / calls if calls else 0.0,
        }

    def project_month_cost(self) -> float:
        """Linear month-end estimate from this calendar month's spend so far."""
        today = self._day(self._clock())
        month_start = today.replace(day=1)
        spent = sum(
            r.cost for r in self.records if month_start <= self._day(r.timestamp) <= today
        )
        days_in_month = calendar.monthrange(today.year, today.month)[1]
        return spent / today.day * days_in_month

    def get_usage_analytics(self) -> Dict[str, Any]:
        """Today / last 7 days / last 30 days summaries plus per-module totals."""
        now = self._clock()
        today = self._day(now)
        week_start = now - 7 * 86400
        month_start = now - 30 * 86400

        today_records = [r for r in self.records if self._day(r.timestamp) == today]
        week_records = [r for r in self.records if r.timestamp >= week_start]
        month_records = [r for r in self.records if r.timestamp >= month_start]

        week = self._summarize(week_records)
        week["average_daily"] = round(week["cost"] / 7, 6)
        month = self._summarize(month_records)
        month["projection"] = round(self.project_month_cost(), 6)

        by_module: Dict[str, Dict[str, Any]] = {}
        for module in sorted({r.module for r in month_records}):
            by_module[module] = self._summarize(
                [r for r in month_records if r.module == module]
            )

        return {
            "today": self._summarize(today_records),
            "week": week,
            "month": month,
            "by_module": by_module,
            "limits": {
                "daily_tokens": self.config.daily_token_limit,
                "weekly_tokens": self.config.weekly_token_limit,
                "monthly_tokens": self.config.monthly_token_limit,
                "daily_usage_percent": self.daily_usage_ratio(),
                "weekly_usage_percent": week["tokens"] / self.config.weekly_token_limit,
                "monthly_usage_percent": month["tokens"] / self.config.monthly_token_limit,
            },
        }
