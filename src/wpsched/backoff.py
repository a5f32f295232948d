# src/wpsched/backoff.py
from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from typing import Optional

from wpsched.domain.errors import OperationCancelled, ValidationError


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Retry delays for the polling loops (all in ms).

    - claim: random delay in [claim_min_ms, claim_max_ms) while every ready
      WP is gated by a dependency
    - lock: fixed delay while another WP holds the task lock
    """
    claim_min_ms: int = 2_000
    claim_max_ms: int = 10_000
    lock_retry_ms: int = 10_000

    def __post_init__(self) -> None:
        if self.claim_min_ms < 0 or self.lock_retry_ms < 0:
            raise ValidationError("backoff delays must be >= 0")
        if self.claim_max_ms < self.claim_min_ms:
            raise ValidationError("claim_max_ms must be >= claim_min_ms")

    def claim_delay_s(self, rng: random.Random) -> float:
        return rng.uniform(self.claim_min_ms, self.claim_max_ms) / 1000.0

    @property
    def lock_delay_s(self) -> float:
        return self.lock_retry_ms / 1000.0


def pause(delay_s: float, cancel: Optional[threading.Event] = None, *, what: str = "wait") -> None:
    """
    Sleeps for delay_s, or raises OperationCancelled as soon as cancel is set.
    """
    if cancel is None:
        time.sleep(delay_s)
        return
    if cancel.wait(timeout=delay_s):
        raise OperationCancelled(f"Cancelled during {what}", details={"delay_s": delay_s})
