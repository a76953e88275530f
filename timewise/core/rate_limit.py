"""Process-local rate limiting for abuse deterrence.

Counters live behind ``RateLimitStore`` so a shared backend (Redis) can be
dropped in without touching the routes. The in-memory store is approximate
under multi-instance deployment; it is not meant for billing-grade quotas.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock

from fastapi import Request, Response

from timewise.core.errors import RateLimitExceededError


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    limit: int
    window_seconds: int
    message: str = "Too many requests. Please try again later."


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int


class RateLimitPresets:
    AUTH_LOGIN = RateLimitRule(
        "auth_login", 5, 15 * 60, "Too many login attempts. Please try again in 15 minutes."
    )
    AUTH_REGISTER = RateLimitRule(
        "auth_register", 3, 60 * 60, "Too many registration attempts. Please try again later."
    )
    PAYMENT = RateLimitRule(
        "payment", 10, 60, "Too many payment requests. Please slow down."
    )
    OTP = RateLimitRule(
        "otp", 3, 15 * 60, "Too many verification requests. Please try again later."
    )
    PASSWORD_RESET = RateLimitRule(
        "password_reset", 5, 15 * 60, "Too many password reset attempts. Please try again later."
    )
    CHECK_IN = RateLimitRule("check_in", 30, 60)
    API_DEFAULT = RateLimitRule("api_default", 100, 60)


class RateLimitStore(ABC):
    """Fixed-window counters keyed by an opaque string."""

    @abstractmethod
    def get(self, key: str) -> tuple[int, float] | None:
        """Return ``(count, reset_at)`` for a live window, else None."""

    @abstractmethod
    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        """Count one hit and return the new ``(count, reset_at)``."""

    @abstractmethod
    def reset(self, key: str) -> None:
        """Forget a key (e.g. after a successful login)."""


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self, *, sweep_every: int = 1000) -> None:
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = Lock()
        self._ops = 0
        self._sweep_every = sweep_every

    def get(self, key: str) -> tuple[int, float] | None:
        with self._lock:
            entry = self._counters.get(key)
            if entry is None or entry[1] <= time.time():
                self._counters.pop(key, None)
                return None
            return entry

    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        now = time.time()
        with self._lock:
            self._ops += 1
            if self._ops % self._sweep_every == 0:
                self._evict_expired(now)
            count, reset_at = self._counters.get(key, (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + window_seconds
            entry = (count + 1, reset_at)
            self._counters[key] = entry
            return entry

    def reset(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, (_, reset_at) in self._counters.items() if reset_at <= now]
        for key in expired:
            del self._counters[key]


_store: RateLimitStore = InMemoryRateLimitStore()


def get_store() -> RateLimitStore:
    return _store


def set_store(store: RateLimitStore) -> None:
    global _store
    _store = store


def client_identifier(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def check_rate_limit(rule: RateLimitRule, identifier: str) -> RateLimitDecision:
    count, reset_at = _store.increment(f"{rule.name}:{identifier}", rule.window_seconds)
    allowed = count <= rule.limit
    return RateLimitDecision(
        allowed=allowed,
        limit=rule.limit,
        remaining=max(0, rule.limit - count),
        reset_at=reset_at,
        retry_after_seconds=0 if allowed else max(1, int(reset_at - time.time())),
    )


def _headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.reset_at)),
    }


class RateLimit:
    """Route dependency: ``dependencies=[Depends(RateLimit(RateLimitPresets.PAYMENT))]``."""

    def __init__(self, rule: RateLimitRule) -> None:
        self.rule = rule

    async def __call__(self, request: Request, response: Response) -> None:
        decision = check_rate_limit(self.rule, client_identifier(request))
        if not decision.allowed:
            headers = _headers(decision)
            headers["Retry-After"] = str(decision.retry_after_seconds)
            raise RateLimitExceededError(
                self.rule.message,
                details={"retryAfter": decision.retry_after_seconds},
                headers=headers,
            )
        response.headers.update(_headers(decision))
