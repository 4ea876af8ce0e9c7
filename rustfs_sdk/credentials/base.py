"""Credential provider interface and the caching Credentials wrapper."""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from rustfs_sdk.models import Credential

logger = logging.getLogger(__name__)

# Snapshots count as expired this long before their real expiry
DEFAULT_EXPIRY_WINDOW = timedelta(seconds=10)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Expiry:
    """Tracks when a provider's credentials stop being usable.

    The window is headroom: credentials are treated as expired once
    now + window reaches the expiry time, so a request signed just before
    expiry does not reach the server with dead credentials.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self.expires_at: Optional[datetime] = None
        self.window = DEFAULT_EXPIRY_WINDOW

    def set_expiration(
        self,
        expires_at: Optional[datetime],
        window: timedelta = DEFAULT_EXPIRY_WINDOW,
    ) -> None:
        self.expires_at = expires_at
        self.window = window

    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return self.clock() + self.window >= self.expires_at


class Provider(ABC):
    """Source of credential snapshots."""

    expiry_window: timedelta = DEFAULT_EXPIRY_WINDOW

    def now(self) -> datetime:
        """Current time as this provider judges expiry."""
        return utcnow()

    @abstractmethod
    def retrieve(self) -> Credential:
        """Fetch a fresh snapshot.

        Raises:
            SigningError: If the provider cannot produce credentials.
        """

    @abstractmethod
    def is_expired(self) -> bool:
        """Whether the last retrieved snapshot should be replaced."""


class Credentials:
    """Thread-safe cache around a provider.

    get() hands out the cached snapshot until the provider reports it
    expired, or the snapshot's own expiration falls inside the provider's
    window, then refreshes it. Refreshes are single-flight: when several
    threads find the cache stale at once, only one calls retrieve() and the
    others wait for its result.
    """

    def __init__(self, provider: Provider):
        self.provider = provider
        self._lock = threading.Lock()
        self._snapshot: Optional[Credential] = None
        self.cached_at: Optional[datetime] = None

    def _fresh(self) -> Optional[Credential]:
        snapshot = self._snapshot
        if snapshot is None or self.provider.is_expired():
            return None
        # A refresh in flight may already have moved the provider's expiry on
        if snapshot.expiration is not None:
            if self.provider.now() + self.provider.expiry_window >= snapshot.expiration:
                return None
        return snapshot

    def get(self, allow_stale: bool = False) -> Credential:
        """Return a usable snapshot, refreshing it if needed.

        Args:
            allow_stale: On refresh failure, return the previous snapshot
                         (if any) instead of raising.

        Raises:
            SigningError: If the refresh fails and no stale snapshot may be
                          served. Nothing is cached in that case.
        """
        snapshot = self._fresh()
        if snapshot is not None:
            return snapshot

        with self._lock:
            # Another thread may have refreshed while we waited
            snapshot = self._fresh()
            if snapshot is not None:
                return snapshot

            try:
                snapshot = self.provider.retrieve()
            except Exception:
                if allow_stale and self._snapshot is not None:
                    logger.warning(
                        "Credential refresh failed, serving stale credentials for %s",
                        self._snapshot.access_key_id or "anonymous",
                    )
                    return self._snapshot
                raise

            self._snapshot = snapshot
            self.cached_at = utcnow()
            logger.info(
                "Refreshed credentials from %s (%s)",
                type(self.provider).__name__,
                snapshot.access_key_id or "anonymous",
            )
            return snapshot

    def invalidate(self) -> None:
        """Drop the cached snapshot so the next get() retrieves a new one."""
        with self._lock:
            self._snapshot = None
            self.cached_at = None

    def is_expired(self) -> bool:
        return self._fresh() is None
