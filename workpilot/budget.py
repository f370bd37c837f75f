"""Budget gating for steps that spend money on generation calls."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import DefaultDict, Optional, Protocol, Tuple

from .contracts import AgentBudgetConfig, AISettings, utcnow

logger = logging.getLogger(__name__)


class BudgetGuard(Protocol):
    """Protocol for spend counters consulted before a spending step."""

    async def can_run(
        self,
        config: AgentBudgetConfig,
        estimated_cost: float,
        settings: Optional[AISettings] = None,
    ) -> bool:
        """Return ``True`` when ``estimated_cost`` fits the remaining budget."""

    async def record_spend(
        self, config: AgentBudgetConfig, amount: float, team_id: Optional[str] = None
    ) -> None:
        """Add ``amount`` to the agent's (and team's) counters."""


class InMemoryBudgetGuard(BudgetGuard):
    """Daily and monthly spend counters kept in process memory.

    Agent limits come from ``AgentBudgetConfig``; team limits come from the
    ``AISettings`` passed with each call. A missing limit means unlimited.
    """

    def __init__(self) -> None:
        self._daily: DefaultDict[Tuple[str, date], float] = defaultdict(float)
        self._monthly: DefaultDict[Tuple[str, str], float] = defaultdict(float)

    @staticmethod
    def _keys(owner: str) -> Tuple[Tuple[str, date], Tuple[str, str]]:
        today = utcnow().date()
        return (owner, today), (owner, today.strftime("%Y-%m"))

    def spent(self, owner: str) -> Tuple[float, float]:
        """Return ``(daily, monthly)`` spend for an agent id or ``team:<id>``."""
        day_key, month_key = self._keys(owner)
        return self._daily[day_key], self._monthly[month_key]

    @staticmethod
    def _fits(spent: float, cost: float, limit: Optional[float]) -> bool:
        return limit is None or spent + cost <= limit

    async def can_run(
        self,
        config: AgentBudgetConfig,
        estimated_cost: float,
        settings: Optional[AISettings] = None,
    ) -> bool:
        if config.agent_id is not None:
            daily, monthly = self.spent(config.agent_id)
            if not self._fits(daily, estimated_cost, config.daily_limit):
                logger.info(f"Agent {config.agent_id} daily budget exhausted")
                return False
            if not self._fits(monthly, estimated_cost, config.monthly_limit):
                logger.info(f"Agent {config.agent_id} monthly budget exhausted")
                return False

        if settings is not None:
            daily, monthly = self.spent(f"team:{settings.team_id}")
            if not self._fits(daily, estimated_cost, settings.daily_budget):
                logger.info(f"Team {settings.team_id} daily budget exhausted")
                return False
            if not self._fits(monthly, estimated_cost, settings.monthly_budget):
                logger.info(f"Team {settings.team_id} monthly budget exhausted")
                return False
        return True

    async def record_spend(
        self, config: AgentBudgetConfig, amount: float, team_id: Optional[str] = None
    ) -> None:
        owners = [config.agent_id] if config.agent_id is not None else []
        if team_id is not None:
            owners.append(f"team:{team_id}")
        for owner in owners:
            day_key, month_key = self._keys(owner)
            self._daily[day_key] += amount
            self._monthly[month_key] += amount
