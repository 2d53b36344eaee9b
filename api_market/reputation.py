from __future__ import annotations

import threading
from dataclasses import dataclass

REPUTATION_MIN = 0.0
REPUTATION_MAX = 100.0


def _clamp(v: float, *, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


@dataclass(frozen=True)
class ReputationPolicy:
    # Exponential moving average toward the bound hit by the outcome:
    #   success: s + gain_rate * (MAX - s)
    #   failure: s - loss_rate * (s - MIN)
    gain_rate: float = 0.1
    loss_rate: float = 0.2
    initial: float = 50.0

    def __post_init__(self) -> None:
        if not 0.0 < self.gain_rate <= 1.0:
            raise ValueError("gain_rate must be in (0, 1]")
        if not 0.0 < self.loss_rate <= 1.0:
            raise ValueError("loss_rate must be in (0, 1]")
        if not REPUTATION_MIN <= self.initial <= REPUTATION_MAX:
            raise ValueError("initial reputation must be within [0, 100]")

    def apply(self, score: float, *, success: bool) -> float:
        if success:
            nxt = score + self.gain_rate * (REPUTATION_MAX - score)
        else:
            nxt = score - self.loss_rate * (score - REPUTATION_MIN)
        return _clamp(nxt, lo=REPUTATION_MIN, hi=REPUTATION_MAX)


class ReputationLedger:
    """Per-provider reliability scores in [0, 100].

    Updates for one provider are serialized; different providers update in parallel.
    """

    def __init__(self, policy: ReputationPolicy | None = None) -> None:
        self._policy = policy or ReputationPolicy()
        self._scores: dict[str, float] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @property
    def policy(self) -> ReputationPolicy:
        return self._policy

    def _lock_for(self, provider_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(provider_id)
            if lock is None:
                lock = self._locks[provider_id] = threading.Lock()
            return lock

    def seed(self, provider_id: str, score: float, *, overwrite: bool = False) -> float:
        """Set a starting score; existing scores win unless `overwrite` is set."""
        value = _clamp(float(score), lo=REPUTATION_MIN, hi=REPUTATION_MAX)
        with self._lock_for(provider_id):
            if overwrite or provider_id not in self._scores:
                self._scores[provider_id] = value
            return self._scores[provider_id]

    def knows(self, provider_id: str) -> bool:
        return provider_id in self._scores

    def score_of(self, provider_id: str) -> float:
        return self._scores.get(provider_id, self._policy.initial)

    def update(self, provider_id: str, success: bool) -> float:
        with self._lock_for(provider_id):
            cur = self._scores.get(provider_id, self._policy.initial)
            nxt = self._policy.apply(cur, success=success)
            self._scores[provider_id] = nxt
            return nxt

    def scores(self) -> dict[str, float]:
        return dict(self._scores)
