"""
RateLimiter — fixed-window request limits with temporary blocks.

Every (identifier, policy) pair gets its own counter. A policy with a
``block_duration_seconds`` blocks the identifier outright once it goes over
the limit, for longer than a single window. Callers gate work with
``check()`` before doing it.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Mapping

from .store import InMemoryStore, RateLimitStore
from .types import RateLimitEntry, RateLimitPolicy, RateLimitResult

logger = logging.getLogger("runwaykit.ratelimit")

RATE_LIMIT_POLICIES: dict[str, RateLimitPolicy] = {
    "default": RateLimitPolicy(window_seconds=60, max_requests=100),
    # 10 login attempts per 15 min, then 30 min block
    "auth": RateLimitPolicy(
        window_seconds=15 * 60, max_requests=10, block_duration_seconds=30 * 60
    ),
    # password reset and similar
    "authStrict": RateLimitPolicy(
        window_seconds=60 * 60, max_requests=5, block_duration_seconds=60 * 60
    ),
    "api": RateLimitPolicy(window_seconds=60, max_requests=60),
    "apiHeavy": RateLimitPolicy(window_seconds=60, max_requests=10),
    "export": RateLimitPolicy(window_seconds=60 * 60, max_requests=10),
    "aiInsights": RateLimitPolicy(window_seconds=60, max_requests=20),
}

DEFAULT_SWEEP_INTERVAL = 60.0

DecisionListener = Callable[[str, str, RateLimitResult], None]


class RateLimitConfigError(KeyError):
    """Unknown or invalid rate-limit policy. A caller bug, not a runtime condition."""


def _validate(name: str, policy: RateLimitPolicy):
    if policy.window_seconds <= 0 or policy.max_requests < 1:
        raise RateLimitConfigError(
            f"Invalid policy '{name}': window={policy.window_seconds}s "
            f"max={policy.max_requests}"
        )
    if policy.block_duration_seconds is not None and policy.block_duration_seconds <= 0:
        raise RateLimitConfigError(
            f"Invalid policy '{name}': block={policy.block_duration_seconds}s"
        )


class RateLimiter:
    """
    Thread-safe fixed-window limiter.

    Usage::

        limiter = RateLimiter()
        result = limiter.check(client_ip, "auth")
        if not result.allowed:
            return too_many_requests(rate_limit_headers(result))
    """

    def __init__(
        self,
        policies: Mapping[str, RateLimitPolicy] | None = None,
        store: RateLimitStore | None = None,
        clock: Callable[[], float] = time.time,
        sweep_interval: float | None = None,
        auto_sweep: bool = True,
    ):
        self._policies = dict(RATE_LIMIT_POLICIES if policies is None else policies)
        for name, policy in self._policies.items():
            _validate(name, policy)

        self._store = store if store is not None else InMemoryStore()
        self._clock = clock
        self._lock = threading.Lock()
        self._listeners: list[DecisionListener] = []

        if sweep_interval is None or not (math.isfinite(sweep_interval) and sweep_interval > 0):
            if sweep_interval is not None:
                logger.warning(
                    f"Invalid sweep interval {sweep_interval!r}, "
                    f"using {DEFAULT_SWEEP_INTERVAL:g}s"
                )
            sweep_interval = DEFAULT_SWEEP_INTERVAL
        self._sweep_interval = sweep_interval
        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None
        if auto_sweep:
            self.start_sweeper()

    @property
    def policies(self) -> dict[str, RateLimitPolicy]:
        return dict(self._policies)

    @property
    def store(self) -> RateLimitStore:
        return self._store

    def policy(self, name: str) -> RateLimitPolicy:
        try:
            return self._policies[name]
        except KeyError:
            raise RateLimitConfigError(
                f"Unknown rate-limit policy '{name}' "
                f"(known: {', '.join(sorted(self._policies))})"
            ) from None

    def add_policy(self, name: str, policy: RateLimitPolicy):
        _validate(name, policy)
        self._policies[name] = policy
        logger.info(
            f"Rate-limit policy added: {name} "
            f"max={policy.max_requests} window={policy.window_seconds}s"
        )

    def add_listener(self, fn: DecisionListener):
        self._listeners.append(fn)

    # ── Checking ───────────────────────────────────────────────────────

    def check(self, identifier: str, policy_name: str = "default") -> RateLimitResult:
        """Count one request for ``identifier`` under ``policy_name``."""
        policy = self.policy(policy_name)
        key = f"{identifier}:{policy_name}"

        with self._lock:
            now = self._clock()
            result = self._check_locked(key, policy, now)

        if not result.allowed:
            if result.blocked:
                logger.warning(
                    f"[BLOCK] {identifier} blocked on '{policy_name}' "
                    f"for {result.retry_after:.0f}s"
                )
            else:
                logger.info(
                    f"[RATE LIMIT] {identifier} over '{policy_name}' limit "
                    f"({policy.max_requests}/{policy.window_seconds:g}s)"
                )

        for cb in self._listeners:
            try:
                cb(identifier, policy_name, result)
            except Exception as e:
                logger.warning(f"Rate-limit listener error: {e}")

        return result

    def reset(self, identifier: str, policy_name: str = "default"):
        """Forget the counter and any block for one key."""
        self.policy(policy_name)
        with self._lock:
            self._store.delete(f"{identifier}:{policy_name}")
        logger.info(f"Rate limit cleared for {identifier} on '{policy_name}'")

    # ── Sweeping ───────────────────────────────────────────────────────

    def sweep(self) -> int:
        """Drop expired entries. Holds the store lock one entry at a time."""
        return self._store.sweep(self._clock())

    def start_sweeper(self):
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, daemon=True, name="runwaykit-ratelimit-sweeper"
        )
        self._sweeper.start()

    def close(self):
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None
        self._store.close()

    # ── Internal ───────────────────────────────────────────────────────

    def _check_locked(
        self, key: str, policy: RateLimitPolicy, now: float
    ) -> RateLimitResult:
        """Must be called with the limiter lock held."""
        entry = self._store.get(key)

        if entry is not None and entry.is_blocked(now):
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=entry.blocked_until,
                blocked=True,
                retry_after=entry.blocked_until - now,
            )

        if entry is None or entry.expired(now):
            entry = RateLimitEntry(count=1, reset_time=now + policy.window_seconds)
            self._store.set(key, entry)
            return RateLimitResult(
                allowed=True,
                remaining=policy.max_requests - 1,
                reset_time=entry.reset_time,
            )

        if entry.count < policy.max_requests:
            entry.count += 1
            self._store.set(key, entry)
            return RateLimitResult(
                allowed=True,
                remaining=policy.max_requests - entry.count,
                reset_time=entry.reset_time,
            )

        if policy.block_duration_seconds:
            entry.blocked_until = now + policy.block_duration_seconds
            self._store.set(key, entry)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=entry.blocked_until,
                blocked=True,
                retry_after=policy.block_duration_seconds,
            )

        return RateLimitResult(
            allowed=False,
            remaining=0,
            reset_time=entry.reset_time,
            retry_after=entry.reset_time - now,
        )

    def _sweep_loop(self):
        while not self._stop_event.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception as e:
                logger.warning(f"Rate-limit sweep failed: {e}")


# ── Process-wide limiter ───────────────────────────────────────────────

_default_limiter: RateLimiter | None = None
_default_lock = threading.Lock()


def get_default_limiter() -> RateLimiter:
    """Lazily create the shared limiter, configured from the environment."""
    global _default_limiter
    with _default_lock:
        if _default_limiter is None:
            from .config import load_settings

            settings = load_settings()
            _default_limiter = RateLimiter(
                sweep_interval=settings.sweep_interval_seconds,
                auto_sweep=settings.auto_sweep,
            )
        return _default_limiter


def check_rate_limit(identifier: str, policy_name: str = "default") -> RateLimitResult:
    return get_default_limiter().check(identifier, policy_name)


# ── Request helpers ────────────────────────────────────────────────────

def get_client_ip(headers: Mapping[str, str]) -> str:
    """First hop of X-Forwarded-For, then X-Real-IP, then CF-Connecting-IP."""
    lowered = {k.lower(): v for k, v in headers.items()}
    forwarded = lowered.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return (
        lowered.get("x-real-ip")
        or lowered.get("cf-connecting-ip")
        or "unknown"
    )


def rate_limit_key(headers: Mapping[str, str], suffix: str | None = None) -> str:
    ip = get_client_ip(headers)
    return f"{ip}:{suffix}" if suffix else ip


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Standard response headers for a limiter decision."""
    headers = {
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_time)),
    }
    if not result.allowed and result.retry_after is not None:
        headers["Retry-After"] = str(max(1, math.ceil(result.retry_after)))
    return headers


def check_auth_rate_limit(
    limiter: RateLimiter, ip: str, email: str | None = None
) -> RateLimitResult:
    """
    Gate an authentication attempt by client IP and, if given, by account
    email. Both are counted under the ``auth`` policy.
    """
    result = limiter.check(ip, "auth")
    if not result.allowed:
        logger.warning(
            f"[SECURITY] Too many authentication attempts from {ip}"
        )
        return result

    if email:
        email_result = limiter.check(f"email:{email}", "auth")
        if not email_result.allowed:
            logger.warning(
                f"[SECURITY] Too many authentication attempts for "
                f"{email[:3]}*** from {ip}"
            )
            return email_result

    return result
