"""
AnomalyDetector — statistical anomaly detection for transaction batches.

Scores each incoming transaction against the z-score baseline of its
(category, merchant) group, falls back to the category, and finally to a
magnitude rule when there is not enough history to know the spread.
Same-batch duplicates are flagged independently. Plain statistics, no ML
dependencies.
"""

from __future__ import annotations

import logging
import math
import statistics
from typing import Callable, Sequence

from .profiler import compute_baselines, compute_category_baselines, global_mean
from .types import AnomalyReason, AnomalyResult, GroupBaseline, Transaction

logger = logging.getLogger("runwaykit.anomaly")

# z threshold at contamination 0; each unit of contamination lowers it by
# Z_SENSITIVITY, never below MIN_Z_THRESHOLD.
BASE_Z_THRESHOLD = 3.0
Z_SENSITIVITY = 5.0
MIN_Z_THRESHOLD = 1.0

# Magnitude fallback: flag when amount >= multiplier * reference amount.
BASE_MAGNITUDE_MULTIPLIER = 5.0
MAGNITUDE_SENSITIVITY = 10.0
MIN_MAGNITUDE_MULTIPLIER = 2.0

# Fallback scores are ratios, not z-scores; halve them to mark low confidence.
FALLBACK_CONFIDENCE = 0.5

ROUND_AMOUNT_UNIT = 1000.0

DEFAULT_CONTAMINATION = 0.05
DUPLICATE_WINDOW_DAYS = 1

ResultListener = Callable[[list[AnomalyResult]], None]


def _clamp_contamination(contamination: float) -> float:
    try:
        c = float(contamination)
    except (TypeError, ValueError):
        return DEFAULT_CONTAMINATION
    if not math.isfinite(c):
        return DEFAULT_CONTAMINATION
    return min(1.0, max(0.0, c))


def z_threshold_for(
    contamination: float,
    base: float = BASE_Z_THRESHOLD,
    sensitivity: float = Z_SENSITIVITY,
) -> float:
    """Higher contamination means a lower (more permissive) threshold."""
    c = _clamp_contamination(contamination)
    return max(MIN_Z_THRESHOLD, base - c * sensitivity)


def magnitude_multiplier_for(
    contamination: float,
    base: float = BASE_MAGNITUDE_MULTIPLIER,
    sensitivity: float = MAGNITUDE_SENSITIVITY,
) -> float:
    c = _clamp_contamination(contamination)
    return max(MIN_MAGNITUDE_MULTIPLIER, base - c * sensitivity)


def find_duplicates(
    transactions: Sequence[Transaction],
    window_days: int = DUPLICATE_WINDOW_DAYS,
) -> set[int]:
    """
    Indices of transactions whose (amount, category, merchant) matches another
    transaction in the same batch dated within ``window_days`` calendar days.
    """
    by_key: dict[tuple[float, str, str], list[int]] = {}
    for i, tx in enumerate(transactions):
        if not math.isfinite(tx.amount):
            continue
        by_key.setdefault((tx.amount, tx.category, tx.merchant), []).append(i)

    dupes: set[int] = set()
    for indices in by_key.values():
        if len(indices) < 2:
            continue
        ordered = sorted(indices, key=lambda i: transactions[i].day)
        for a, b in zip(ordered, ordered[1:]):
            gap = abs((transactions[b].day - transactions[a].day).days)
            if gap <= window_days:
                dupes.add(a)
                dupes.add(b)
    return dupes


class AnomalyDetector:
    """
    Batch anomaly detector with contamination-tuned thresholds.

    Usage::

        detector = AnomalyDetector()
        results = detector.detect(new_txs, historical_txs, contamination=0.05)
        flagged = [r for r in results if r.is_anomaly]
    """

    def __init__(
        self,
        base_z_threshold: float = BASE_Z_THRESHOLD,
        z_sensitivity: float = Z_SENSITIVITY,
        magnitude_multiplier: float = BASE_MAGNITUDE_MULTIPLIER,
        duplicate_window_days: int = DUPLICATE_WINDOW_DAYS,
    ):
        self.base_z_threshold = base_z_threshold
        self.z_sensitivity = z_sensitivity
        self.magnitude_multiplier = magnitude_multiplier
        self.duplicate_window_days = duplicate_window_days

        self._listeners: list[ResultListener] = []
        self._runs = 0
        self._last: dict = {}

    @classmethod
    def from_settings(cls, settings) -> "AnomalyDetector":
        return cls(
            base_z_threshold=settings.base_z_threshold,
            z_sensitivity=settings.z_sensitivity,
            magnitude_multiplier=settings.magnitude_multiplier,
            duplicate_window_days=settings.duplicate_window_days,
        )

    def add_listener(self, fn: ResultListener):
        self._listeners.append(fn)

    def detect(
        self,
        transactions: Sequence[Transaction],
        historical_transactions: Sequence[Transaction],
        contamination: float = DEFAULT_CONTAMINATION,
    ) -> list[AnomalyResult]:
        """Score every transaction; output is 1:1 and in input order."""
        if not transactions:
            return []

        threshold = z_threshold_for(
            contamination, self.base_z_threshold, self.z_sensitivity
        )
        multiplier = magnitude_multiplier_for(
            contamination, self.magnitude_multiplier
        )

        groups = compute_baselines(historical_transactions)
        categories = compute_category_baselines(historical_transactions)
        overall = global_mean(historical_transactions)
        if overall is None:
            finite = [tx.amount for tx in transactions if math.isfinite(tx.amount)]
            overall = statistics.median(finite) if finite else None

        duplicates = find_duplicates(transactions, self.duplicate_window_days)

        results = []
        for i, tx in enumerate(transactions):
            group = groups.get(tx.group_key)
            category = categories.get(tx.category)

            if not math.isfinite(tx.amount):
                score, flagged, reason = 0.0, False, AnomalyReason.INSUFFICIENT_HISTORY
            elif group is not None and group.has_spread:
                score, flagged, reason = self._z_path(
                    tx, group, threshold, AnomalyReason.MERCHANT_AMOUNT
                )
            elif category is not None and category.has_spread:
                score, flagged, reason = self._z_path(
                    tx, category, threshold, AnomalyReason.CATEGORY_AMOUNT
                )
            else:
                reference = next(
                    (b.mean for b in (group, category) if b is not None),
                    overall,
                )
                score, flagged, reason = self._magnitude_path(tx, reference, multiplier)

            if i in duplicates:
                score = max(score, threshold)
                flagged = True
                reason = AnomalyReason.DUPLICATE

            results.append(AnomalyResult(
                transaction=tx,
                is_anomaly=flagged,
                score=score,
                reason=reason,
            ))

        self._record_run(results, threshold)
        return results

    def stats(self) -> dict:
        """Summary of the most recent run."""
        return {"runs": self._runs, **self._last}

    # ── Internal ───────────────────────────────────────────────────────

    @staticmethod
    def _z_path(
        tx: Transaction,
        baseline: GroupBaseline,
        threshold: float,
        reason: AnomalyReason,
    ) -> tuple[float, bool, AnomalyReason]:
        z = abs(tx.amount - baseline.mean) / baseline.std_dev
        if z > threshold:
            return z, True, reason
        return z, False, AnomalyReason.NORMAL

    @staticmethod
    def _magnitude_path(
        tx: Transaction,
        reference: float | None,
        multiplier: float,
    ) -> tuple[float, bool, AnomalyReason]:
        if reference is None or not math.isfinite(reference) or reference <= 0:
            return 0.0, False, AnomalyReason.INSUFFICIENT_HISTORY

        ratio = abs(tx.amount) / reference
        score = ratio * FALLBACK_CONFIDENCE
        amount = abs(tx.amount)
        is_round = amount >= ROUND_AMOUNT_UNIT and amount % ROUND_AMOUNT_UNIT == 0

        if ratio >= multiplier or (is_round and ratio >= multiplier / 2):
            return score, True, AnomalyReason.MAGNITUDE
        return score, False, AnomalyReason.INSUFFICIENT_HISTORY

    def _record_run(self, results: list[AnomalyResult], threshold: float):
        self._runs += 1
        by_reason: dict[str, int] = {}
        flagged = 0
        for r in results:
            if not r.is_anomaly:
                continue
            flagged += 1
            by_reason[r.reason.value] = by_reason.get(r.reason.value, 0) + 1
            logger.warning(
                f"[ANOMALY] {r.transaction.id}: ${r.transaction.amount:.2f} "
                f"{r.transaction.category}/{r.transaction.merchant} "
                f"score={r.score:.2f} ({r.reason.value})"
            )

        self._last = {
            "batch_size": len(results),
            "flagged": flagged,
            "z_threshold": round(threshold, 4),
            "by_reason": by_reason,
        }
        logger.info(
            f"Scored {len(results)} transactions: {flagged} flagged "
            f"(z threshold {threshold:.2f})"
        )

        for cb in self._listeners:
            try:
                cb(results)
            except Exception as e:
                logger.warning(f"Anomaly listener error: {e}")


def detect_anomalies(
    transactions: Sequence[Transaction],
    historical_transactions: Sequence[Transaction],
    contamination: float = DEFAULT_CONTAMINATION,
) -> list[AnomalyResult]:
    """
    Score a batch with default thresholds.

    Each call builds its own detector, so nothing is shared between calls or
    threads and no listeners fire.
    """
    return AnomalyDetector().detect(transactions, historical_transactions, contamination)
