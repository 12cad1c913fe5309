"""
RunwayCalculator — burn rate, runway, and month-over-month deltas.

Pure functions over scalar aggregates. The caller sums cash balances and
monthly expenses; this module only does the arithmetic and its edge cases.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field

from .types import BurnMode, RunwayStatus

# Runway reported when nothing is being burned. Finite so formatting and
# comparisons downstream stay well-defined.
INFINITE_RUNWAY_MONTHS = 99

# Runway at or above this renders as "24+ months".
RUNWAY_DISPLAY_CAP_MONTHS = 24


def calculate_runway(cash_balance: float, average_monthly_burn: float) -> float:
    """Months of operation left at the current burn."""
    if not average_monthly_burn > 0:
        return INFINITE_RUNWAY_MONTHS
    return cash_balance / average_monthly_burn


def calculate_burn_rate(
    expenses: float,
    revenue: float = 0.0,
    mode: BurnMode | str = BurnMode.NET,
) -> float:
    """
    Gross burn is expenses as-is; net burn subtracts revenue and goes
    negative when the company generates cash.
    """
    mode = BurnMode(mode)
    if mode is BurnMode.GROSS:
        return expenses
    return expenses - revenue


def calculate_mom_change(current: float, previous: float) -> float:
    """Percentage change; a zero base reports 100 for any growth, else 0."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / abs(previous) * 100


def format_runway(months: float) -> str:
    if math.isnan(months):
        return "Unknown"
    if months < 0:
        return "Negative"
    if months < 1:
        return f"{round(months * 30)} days"
    if months >= RUNWAY_DISPLAY_CAP_MONTHS:
        return f"{RUNWAY_DISPLAY_CAP_MONTHS}+ months"
    return f"{months:.1f} months"


def runway_status(months: float) -> RunwayStatus:
    if months < 6:
        return RunwayStatus.CRITICAL
    if months < 9:
        return RunwayStatus.WARNING
    if months < 12:
        return RunwayStatus.CAUTION
    return RunwayStatus.HEALTHY


@dataclass
class RunwayMetrics:
    """Point-in-time cash position summary."""
    timestamp: float = field(default_factory=time.time)

    cash_balance: float = 0.0
    monthly_burn: float = 0.0      # gross
    burn_change_pct: float = 0.0
    net_burn: float = 0.0
    mrr: float = 0.0
    mrr_change_pct: float = 0.0

    runway_months: float = INFINITE_RUNWAY_MONTHS
    status: RunwayStatus = RunwayStatus.HEALTHY

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "cash_balance": round(self.cash_balance, 2),
            "monthly_burn": round(self.monthly_burn, 2),
            "burn_change_pct": round(self.burn_change_pct, 2),
            "net_burn": round(self.net_burn, 2),
            "mrr": round(self.mrr, 2),
            "mrr_change_pct": round(self.mrr_change_pct, 2),
            "runway_months": round(self.runway_months, 1),
            "runway_display": format_runway(self.runway_months),
            "status": self.status.value,
        }


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def summarize_runway(
    cash_balance: float,
    monthly_burn: float,
    previous_burn: float = 0.0,
    mrr: float = 0.0,
    previous_mrr: float = 0.0,
) -> RunwayMetrics:
    """
    Build the dashboard metrics block from the latest and previous month.

    Runway is computed against gross burn, matching how the dashboard
    reports it.
    """
    cash_balance = _finite(cash_balance)
    monthly_burn = _finite(monthly_burn)
    mrr = _finite(mrr)

    runway = calculate_runway(cash_balance, monthly_burn)
    return RunwayMetrics(
        cash_balance=cash_balance,
        monthly_burn=monthly_burn,
        burn_change_pct=calculate_mom_change(monthly_burn, _finite(previous_burn)),
        net_burn=calculate_burn_rate(monthly_burn, mrr, BurnMode.NET),
        mrr=mrr,
        mrr_change_pct=calculate_mom_change(mrr, _finite(previous_mrr)),
        runway_months=runway,
        status=runway_status(runway),
    )
