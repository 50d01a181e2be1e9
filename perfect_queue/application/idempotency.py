import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from perfect_queue.domain.ports import DuplicateRequestGuard


class InMemoryRequestGuard(DuplicateRequestGuard):
    """Process-local claim store for request fingerprints.

    Check-and-insert happens under one lock, so two concurrent callers for the
    same fingerprint cannot both acquire it. Claims expire after ttl_seconds
    (never, when None) and the oldest claims are evicted once max_entries is
    exceeded. Nothing survives a process restart.
    """

    def __init__(self,
                 ttl_seconds: Optional[float] = 86400.0,
                 max_entries: Optional[int] = 10000,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._claims: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def _purge_expired(self, now: float) -> None:
        if self.ttl_seconds is None:
            return
        # Claims are ordered by claim time, so expired ones sit at the front
        while self._claims:
            fingerprint, claimed_at = next(iter(self._claims.items()))
            if now - claimed_at < self.ttl_seconds:
                break
            del self._claims[fingerprint]

    def try_acquire(self, fingerprint: str) -> bool:
        """Claim the fingerprint; False if it is already claimed."""
        with self._lock:
            now = self._clock()
            self._purge_expired(now)

            if fingerprint in self._claims:
                return False

            self._claims[fingerprint] = now
            if self.max_entries is not None:
                while len(self._claims) > self.max_entries:
                    self._claims.popitem(last=False)
            return True

    def release(self, fingerprint: str) -> None:
        """Drop a claim if present."""
        with self._lock:
            self._claims.pop(fingerprint, None)

    def is_claimed(self, fingerprint: str) -> bool:
        with self._lock:
            self._purge_expired(self._clock())
            return fingerprint in self._claims

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._claims)
