"""Rate limiting for inbound GitHub deliveries.

Signature verification lives in ``swarmsync.vault.signing``; this module
keeps one noisy repository from starving the others.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Dict, Optional

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


class WebhookRateLimiter:
    """Sliding-window rate limiter per repository.

    Example:
        >>> limiter = WebhookRateLimiter(max_requests_per_minute=60)
        >>> limiter.allow_request("https://github.com/acme/widgets")
        True
    """

    def __init__(self, max_requests_per_minute: int = 60):
        """Initialize rate limiter.

        Args:
            max_requests_per_minute: Maximum requests per minute per repository
        """
        if max_requests_per_minute < 1:
            raise ValueError("max_requests_per_minute must be at least 1")

        self.max_requests = max_requests_per_minute
        self.request_times: Dict[str, deque] = {}

    def allow_request(self, repository: str) -> bool:
        """Record a request and report whether it fits in the window.

        Args:
            repository: Repository identifier (normalized URL)

        Returns:
            True if request is allowed, False if rate limit exceeded
        """
        now = time.time()
        times = self.request_times.setdefault(repository, deque())
        self._expire(times, now)

        if len(times) >= self.max_requests:
            logger.warning(
                "Rate limit exceeded for repository",
                extra={
                    "repository": repository,
                    "requests_in_window": len(times),
                    "max_requests": self.max_requests,
                },
            )
            return False

        times.append(now)
        return True

    def get_current_rate(self, repository: str) -> int:
        """Requests seen for a repository in the last minute."""
        times = self.request_times.get(repository)
        if not times:
            return 0
        self._expire(times, time.time())
        return len(times)

    def reset(self, repository: Optional[str] = None) -> None:
        """Reset one repository, or all of them."""
        if repository is None:
            self.request_times.clear()
        else:
            self.request_times.pop(repository, None)

    def cleanup_old_entries(self, max_age_seconds: int = 300) -> None:
        """Drop tracking for repositories with no recent requests."""
        now = time.time()
        stale = []
        for repository, times in self.request_times.items():
            self._expire(times, now)
            if not times or times[-1] < now - max_age_seconds:
                stale.append(repository)

        for repository in stale:
            del self.request_times[repository]

        if stale:
            logger.debug(f"Cleaned up rate limiter tracking for {len(stale)} repositories")

    @staticmethod
    def _expire(times: deque, now: float) -> None:
        while times and times[0] < now - WINDOW_SECONDS:
            times.popleft()


__all__ = ["WebhookRateLimiter"]
