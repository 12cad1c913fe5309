"""
Core data types for the runway analytics core.

Everything here is plain data: callers build these from their own storage
or request payloads, hand them to the engines, and serialize the results
back out with ``to_dict()``.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


class AnomalyReason(str, Enum):
    """Why a transaction was (or was not) flagged."""
    MERCHANT_AMOUNT = "unusual amount for merchant"
    CATEGORY_AMOUNT = "unusual amount for category"
    DUPLICATE = "possible duplicate"
    MAGNITUDE = "insufficient history — flagged by magnitude"
    INSUFFICIENT_HISTORY = "insufficient history"
    NORMAL = "within expected range"


class BurnMode(str, Enum):
    GROSS = "gross"
    NET = "net"


class RunwayStatus(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    CAUTION = "caution"
    HEALTHY = "healthy"


def _parse_date(value: Any) -> date:
    if isinstance(value, (date, datetime)):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return date.today()
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return date.today()


def _parse_amount(value: Any) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0


@dataclass(frozen=True)
class Transaction:
    """
    A single money movement. Positive ``amount`` is an outflow.

    ``date`` may be a ``datetime.date`` or a ``datetime.datetime``; only the
    calendar day matters to the duplicate check.
    """
    id: str
    amount: float
    date: date
    category: str
    merchant: str

    @property
    def group_key(self) -> tuple[str, str]:
        return (self.category, self.merchant)

    @property
    def day(self) -> date:
        d = self.date
        return d.date() if isinstance(d, datetime) else d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Transaction":
        """Normalize a loosely-typed JSON object into a Transaction."""
        return cls(
            id=str(d.get("id") or f"tx-{uuid.uuid4().hex[:9]}"),
            amount=_parse_amount(d.get("amount")),
            date=_parse_date(d.get("date")),
            category=str(d.get("category") or "Uncategorized"),
            merchant=str(d.get("merchant") or "Unknown"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "date": self.date.isoformat(),
            "category": self.category,
            "merchant": self.merchant,
        }


@dataclass(frozen=True)
class GroupBaseline:
    """Historical statistics for one (category, merchant) or category group."""
    mean: float
    std_dev: float                 # sample std-dev; 0.0 when n < 2
    sample_count: int

    @property
    def has_spread(self) -> bool:
        return self.sample_count >= 2 and self.std_dev > 0


@dataclass
class AnomalyResult:
    transaction: Transaction
    is_anomaly: bool
    score: float
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactionId": self.transaction.id,
            "amount": self.transaction.amount,
            "category": self.transaction.category,
            "merchant": self.transaction.merchant,
            "date": self.transaction.date.isoformat(),
            "isAnomaly": self.is_anomaly,
            "score": round(self.score, 4),
            "reason": getattr(self.reason, "value", self.reason),
        }


@dataclass(frozen=True)
class RateLimitPolicy:
    """A named fixed-window limit, optionally with a penalty block."""
    window_seconds: float
    max_requests: int
    block_duration_seconds: float | None = None


@dataclass
class RateLimitEntry:
    """Mutable per-key counter. ``count`` never exceeds the policy cap."""
    count: int
    reset_time: float
    blocked_until: float | None = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and now < self.blocked_until

    def expired(self, now: float) -> bool:
        """Window and any block have both elapsed."""
        if self.is_blocked(now):
            return False
        return now >= self.reset_time or self.blocked_until is not None


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float
    blocked: bool = False
    retry_after: float | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "resetTime": self.reset_time,
            "blocked": self.blocked,
        }
        if self.retry_after is not None:
            d["retryAfter"] = self.retry_after
        return d
