"""In-memory stores for OAuth state.

These stores are shared between the OAuth endpoints, the bearer middleware
and the background sweeper. Nothing is persisted: a restart forgets every
client, code and token.

Reads always re-check expiry, so the periodic sweep is only cleanup.
"""

import asyncio
import logging
import time
from typing import Callable, Generic, Iterator, Optional, TypeVar

from oauth.models import (
    AccessToken,
    AuthorizationCode,
    PendingAuthorization,
    RefreshToken,
    RegisteredClient,
    SWEEP_INTERVAL,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
R = TypeVar("R")


class ExpiringStore(Generic[R]):
    """Keyed container whose records decide their own expiry."""

    def __init__(self, name: str, clock: Clock = time.time):
        self.name = name
        self._clock = clock
        self._records: dict[str, R] = {}

    def put(self, key: str, record: R) -> None:
        self._records[key] = record

    def get(self, key: str) -> Optional[R]:
        """Return the live record for ``key``, evicting it if expired."""
        record = self._records.get(key)
        if record is None:
            return None
        if record.is_expired(self._clock()):
            del self._records[key]
            return None
        return record

    def take(self, key: str) -> Optional[R]:
        """Remove and return the record for ``key``.

        The entry is gone after this call whatever the outcome, so a
        single-use record can be redeemed at most once.
        """
        record = self._records.pop(key, None)
        if record is None or record.is_expired(self._clock()):
            return None
        return record

    def delete(self, key: str) -> None:
        self._records.pop(key, None)

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict expired records, returning how many were removed."""
        now = self._clock() if now is None else now
        stale = [k for k, v in self._records.items() if v.is_expired(now)]
        for key in stale:
            del self._records[key]
        return len(stale)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def _live_keys(self) -> list[str]:
        now = self._clock()
        return [k for k, v in self._records.items() if not v.is_expired(now)]

    def __len__(self) -> int:
        """Number of live records. Expired entries awaiting the sweep are not counted."""
        return len(self._live_keys())

    def __iter__(self) -> Iterator[str]:
        return iter(self._live_keys())


class OAuthStores:
    """All OAuth state owned by one server process."""

    def __init__(self, clock: Clock = time.time):
        self.clock = clock
        # Dynamic client registration
        self.clients: ExpiringStore[RegisteredClient] = ExpiringStore("clients", clock)
        # IdP-facing state -> original authorize request
        self.pending_authorizations: ExpiringStore[PendingAuthorization] = ExpiringStore(
            "pending_authorizations", clock
        )
        # Our own authorization codes (not the IdP's)
        self.authorization_codes: ExpiringStore[AuthorizationCode] = ExpiringStore(
            "authorization_codes", clock
        )
        self.access_tokens: ExpiringStore[AccessToken] = ExpiringStore("access_tokens", clock)
        self.refresh_tokens: ExpiringStore[RefreshToken] = ExpiringStore("refresh_tokens", clock)

    def _all(self) -> tuple[ExpiringStore, ...]:
        return (
            self.clients,
            self.pending_authorizations,
            self.authorization_codes,
            self.access_tokens,
            self.refresh_tokens,
        )

    def sweep(self) -> int:
        now = self.clock()
        removed = 0
        for store in self._all():
            count = store.sweep(now)
            if count:
                logger.debug(f"[SWEEP] Removed {count} expired entries from {store.name}")
            removed += count
        if removed:
            logger.info(f"[SWEEP] Removed {removed} expired entries")
        return removed

    async def run_sweeper(self, interval: float = SWEEP_INTERVAL) -> None:
        """Sweep forever; cancelled by the app lifespan on shutdown."""
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("[SWEEP] Sweep failed")
