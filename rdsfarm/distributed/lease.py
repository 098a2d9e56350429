"""
Lease Manager - the deployment "conch"

A single named, time-bounded, advisory lease over a Coordinator backend.
Whoever manages to create the lease record holds it until it deletes the
record again or the record's expiry passes and another contender reclaims
it. Contenders poll with jitter; the total wait is bounded.

This is not a fencing scheme: a holder that outlives its TTL can still
write. The TTL only bounds how long a crashed holder blocks the farm.
"""

import logging
import random
import secrets
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional, Tuple

from ..constants import Limits, Timeouts
from ..logging_config import get_logger
from .coordinators import Coordinator

logger = get_logger(__name__)


class LeaseTimeoutError(Exception):
    """The lease could not be acquired within the acquire timeout."""

    def __init__(self, key: str, waited: float):
        super().__init__(f"Could not acquire lease {key} within {waited:.1f}s")
        self.key = key
        self.waited = waited


@dataclass(frozen=True)
class Lease:
    """The lease record: holder token and absolute expiry."""
    token: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now

    def to_value(self) -> str:
        return f"{self.token},{self.expires_at.isoformat()}"

    @classmethod
    def from_value(cls, value: str) -> 'Lease':
        """
        Parse a stored lease record.

        Raises:
            ValueError: the record is not ``<token>,<ISO-8601 expiry>``
        """
        token, _, expiration = value.partition(',')
        if not token or not expiration:
            raise ValueError(f"Malformed lease record: {value!r}")
        expires_at = datetime.fromisoformat(expiration.replace('Z', '+00:00'))
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return cls(token=token, expires_at=expires_at)


def new_token() -> str:
    """Random, unguessable lease token."""
    return secrets.token_hex(Limits.TOKEN_BYTES)


class LeaseManager:
    """
    Acquires and releases the deployment lease.

    Usage:
        lease = LeaseManager(coordinator, "MyDeployment-Conch")
        with lease.held():
            ...  # critical section
    """

    def __init__(
        self,
        coordinator: Coordinator,
        key: str,
        ttl: float = Timeouts.LEASE_TTL,
        acquire_timeout: float = Timeouts.LEASE_ACQUIRE_TIMEOUT,
        wait_range: Tuple[float, float] = (Timeouts.LEASE_WAIT_MIN, Timeouts.LEASE_WAIT_MAX),
        reclaim_pause: float = Timeouts.LEASE_RECLAIM_PAUSE,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the lease manager.

        Args:
            coordinator: Backend holding the lease record
            key: Lease record key
            ttl: Lease lifetime in seconds
            acquire_timeout: Total time acquire() may spend waiting
            wait_range: Bounds of the random wait while the lease is held
            reclaim_pause: Pause after reclaiming an expired lease
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock used for the acquire timeout
        """
        self.coordinator = coordinator
        self.key = key
        self.ttl = ttl
        self.acquire_timeout = acquire_timeout
        self.wait_range = wait_range
        self.reclaim_pause = reclaim_pause
        self._sleep = sleep
        self._clock = clock

    def acquire(self) -> str:
        """
        Acquire the lease, waiting while another holder has it.

        Returns:
            The token identifying this holder

        Raises:
            LeaseTimeoutError: the acquire timeout elapsed
        """
        token = new_token()
        started = self._clock()
        attempts = 0

        while True:
            attempts += 1
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.ttl)
            if self.coordinator.create(self.key, Lease(token, expires_at).to_value()):
                logger.log_with_data(logging.DEBUG, "Lease acquired", {
                    'key': self.key, 'token': token, 'attempts': attempts,
                })
                return token

            value = self.coordinator.get(self.key)
            if value is None:
                # Released between our create and our read
                continue

            try:
                current = Lease.from_value(value)
            except ValueError:
                logger.warning(f"Lease record {self.key} is unreadable ({value!r}); reclaiming")
                current = None

            if current is None or current.is_expired():
                if current is not None:
                    logger.info(
                        f"Lease for token {current.token} expired at "
                        f"{current.expires_at.isoformat()}. Releasing forcibly"
                    )
                self.coordinator.delete(self.key)
                self._sleep(self.reclaim_pause)
            else:
                waited = self._clock() - started
                if waited >= self.acquire_timeout:
                    raise LeaseTimeoutError(self.key, waited)
                logger.trace(f"Waiting for lease {self.key} held by {current.token}")
                self._sleep(random.uniform(*self.wait_range))

    def release(self, token: str) -> bool:
        """
        Release the lease if this token still holds it.

        A lease that expired and was reclaimed (or is gone entirely) is not an
        error: the call logs and returns False.

        Returns:
            True if the lease record was deleted
        """
        value = self.coordinator.get(self.key)
        if value is None:
            logger.warning(
                f"Lease with token {token} looks to have expired before being "
                f"released. May need to increase the lease TTL"
            )
            return False

        try:
            current_token = Lease.from_value(value).token
        except ValueError:
            current_token = None

        if current_token != token:
            logger.warning(
                f"Lease with token {token} is not current; it may have expired and "
                f"been obtained by another holder (found {current_token})"
            )
            return False

        self.coordinator.delete(self.key)
        logger.debug(f"Released lease with token {token}")
        return True

    @contextmanager
    def held(self) -> Iterator[str]:
        """Hold the lease for the duration of a with-block."""
        token = self.acquire()
        try:
            yield token
        finally:
            self.release(token)

    def force_release(self) -> bool:
        """Delete the lease record regardless of holder (operator tooling)."""
        return self.coordinator.delete(self.key)
