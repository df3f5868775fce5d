# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Per credential-group request rate limiting.

Each credential group gets its own sliding-window log guarded by its own
lock, so admission checks for different groups never wait on each other.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

lib_logger = logging.getLogger("group_billing")


class _Bucket:
    """Admission timestamps for one credential group."""

    __slots__ = ("lock", "admitted")

    def __init__(self):
        self.lock = threading.Lock()
        self.admitted: Deque[float] = deque()

    def prune(self, cutoff: float) -> None:
        while self.admitted and self.admitted[0] <= cutoff:
            self.admitted.popleft()


class GroupRateLimiter:
    """
    Sliding-window rate limiter keyed by credential group id.

    A limit of N admits at most N calls in any window_seconds span.

    Example:
        limiter = GroupRateLimiter(window_seconds=1.0)
        if limiter.admit(group.id, group.rate_limit):
            ...
    """

    def __init__(
        self,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._window = window_seconds
        self._clock = clock
        self._buckets: Dict[int, _Bucket] = {}

    @property
    def window_seconds(self) -> float:
        return self._window

    def admit(self, group_id: int, limit: int) -> bool:
        """
        Record and admit one call for a credential group if under its limit.

        Args:
            group_id: Credential group id
            limit: Calls allowed per window; <= 0 means unlimited

        Returns:
            True if admitted. Denied calls are not recorded.
        """
        if limit <= 0:
            return True

        bucket = self._bucket(group_id)
        with bucket.lock:
            now = self._clock()
            bucket.prune(now - self._window)
            if len(bucket.admitted) >= limit:
                lib_logger.debug(
                    f"Rate limit reached for credential group {group_id} "
                    f"({len(bucket.admitted)}/{limit} per {self._window:g}s)"
                )
                return False
            bucket.admitted.append(now)
            return True

    def usage(self, group_id: int) -> int:
        """Admissions for a group inside the current window."""
        bucket = self._buckets.get(group_id)
        if bucket is None:
            return 0
        with bucket.lock:
            bucket.prune(self._clock() - self._window)
            return len(bucket.admitted)

    def reset(self, group_id: Optional[int] = None) -> None:
        """Forget admissions for one group, or all groups."""
        if group_id is None:
            for bucket in list(self._buckets.values()):
                with bucket.lock:
                    bucket.admitted.clear()
            return
        bucket = self._buckets.get(group_id)
        if bucket is not None:
            with bucket.lock:
                bucket.admitted.clear()

    def _bucket(self, group_id: int) -> _Bucket:
        bucket = self._buckets.get(group_id)
        if bucket is None:
            # setdefault is atomic, so racing creators end up sharing one bucket
            bucket = self._buckets.setdefault(group_id, _Bucket())
        return bucket
