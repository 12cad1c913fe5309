"""
StatisticalProfiler — per-group baselines from historical transactions.

Baselines are rebuilt from scratch on every detection call; nothing here
keeps state between calls.
"""

from __future__ import annotations

import math
from typing import Callable, Hashable, Iterable, TypeVar

from .types import GroupBaseline, Transaction

K = TypeVar("K", bound=Hashable)

GroupKey = tuple[str, str]


def _baseline(amounts: list[float]) -> GroupBaseline:
    n = len(amounts)
    mean = sum(amounts) / n
    if n < 2:
        return GroupBaseline(mean=mean, std_dev=0.0, sample_count=n)
    # Sample variance (n - 1)
    var = sum((a - mean) ** 2 for a in amounts) / (n - 1)
    return GroupBaseline(mean=mean, std_dev=math.sqrt(var), sample_count=n)


def _group(
    transactions: Iterable[Transaction], key: Callable[[Transaction], K]
) -> dict[K, GroupBaseline]:
    buckets: dict[K, list[float]] = {}
    for tx in transactions:
        if not math.isfinite(tx.amount):
            continue
        buckets.setdefault(key(tx), []).append(tx.amount)
    return {k: _baseline(v) for k, v in buckets.items()}


def compute_baselines(
    historical_transactions: Iterable[Transaction],
) -> dict[GroupKey, GroupBaseline]:
    """
    Group by exact (category, merchant) and compute mean / sample std-dev.

    Groups with a single sample get ``std_dev == 0.0``; callers must treat
    that as "no spread known" rather than divide by it.
    """
    return _group(historical_transactions, lambda tx: tx.group_key)


def compute_category_baselines(
    historical_transactions: Iterable[Transaction],
) -> dict[str, GroupBaseline]:
    """Same as ``compute_baselines`` but keyed by category alone."""
    return _group(historical_transactions, lambda tx: tx.category)


def global_mean(historical_transactions: Iterable[Transaction]) -> float | None:
    amounts = [tx.amount for tx in historical_transactions if math.isfinite(tx.amount)]
    if not amounts:
        return None
    return sum(amounts) / len(amounts)
