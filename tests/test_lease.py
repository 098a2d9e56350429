"""
Tests for the Lease Manager (the deployment "conch").

Tests acquisition, release, reclamation of expired leases, the bounded
acquire timeout and mutual exclusion between threads.
"""

import os
import sys
import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rdsfarm.distributed.lease import Lease, LeaseManager, LeaseTimeoutError, new_token


def _expired(seconds: int = 5) -> datetime:
    return datetime.now(timezone.utc) - timedelta(seconds=seconds)


def _future(seconds: int = 60) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


# ===========================================================================
# Lease Record Tests
# ===========================================================================

class TestLeaseRecord:
    """Tests for the stored lease value."""

    def test_value_roundtrip(self):
        """A lease survives serialization to its record format."""
        lease = Lease("abc123", datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc))
        assert lease.to_value() == "abc123,2024-03-01T12:00:00+00:00"
        assert Lease.from_value(lease.to_value()) == lease

    def test_parses_zulu_suffix(self):
        """ISO timestamps ending in Z are accepted."""
        lease = Lease.from_value("tok,2024-03-01T12:00:00.000Z")
        assert lease.expires_at == datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def test_naive_timestamp_is_utc(self):
        """A timestamp without offset is read as UTC."""
        lease = Lease.from_value("tok,2024-03-01T12:00:00")
        assert lease.expires_at.tzinfo is not None

    @pytest.mark.parametrize("value", ["", "no-comma", ",2024-03-01T12:00:00", "tok,not-a-date"])
    def test_malformed_values_raise(self, value):
        """Malformed records raise ValueError."""
        with pytest.raises(ValueError):
            Lease.from_value(value)

    def test_is_expired(self):
        assert Lease("t", _expired()).is_expired()
        assert not Lease("t", _future()).is_expired()

    def test_tokens_are_unique(self):
        tokens = {new_token() for _ in range(100)}
        assert len(tokens) == 100


# ===========================================================================
# Acquire / Release Tests
# ===========================================================================

class TestLeaseManager:
    """Tests for LeaseManager against the file coordinator."""

    def test_acquire_creates_record(self, lease, coordinator):
        """Acquiring writes '<token>,<expiry>' under the lease key."""
        token = lease.acquire()
        stored = Lease.from_value(coordinator.get(lease.key))
        assert stored.token == token
        assert not stored.is_expired()

    def test_expiry_uses_ttl(self, coordinator):
        manager = LeaseManager(coordinator, "Farm-Conch", ttl=120)
        before = datetime.now(timezone.utc)
        manager.acquire()
        stored = Lease.from_value(coordinator.get("Farm-Conch"))
        assert before + timedelta(seconds=119) <= stored.expires_at
        assert stored.expires_at <= datetime.now(timezone.utc) + timedelta(seconds=121)

    def test_release_deletes_record(self, lease, coordinator):
        token = lease.acquire()
        assert lease.release(token) is True
        assert coordinator.get(lease.key) is None

    def test_release_with_stale_token_is_noop(self, lease, coordinator):
        """Releasing with a token that no longer holds the lease leaves it intact."""
        lease.acquire()
        assert lease.release("someone-else") is False
        assert coordinator.get(lease.key) is not None

    def test_release_missing_lease_is_noop(self, lease):
        assert lease.release("gone") is False

    def test_held_releases_on_exception(self, lease, coordinator):
        with pytest.raises(RuntimeError):
            with lease.held():
                assert coordinator.get(lease.key) is not None
                raise RuntimeError("boom")
        assert coordinator.get(lease.key) is None

    def test_reclaims_expired_lease(self, lease, coordinator):
        """An expired lease from a crashed holder is deleted and taken over."""
        coordinator.put(lease.key, Lease("crashed", _expired()).to_value())
        token = lease.acquire()
        assert token != "crashed"
        assert Lease.from_value(coordinator.get(lease.key)).token == token

    def test_reclaims_unreadable_lease(self, lease, coordinator):
        coordinator.put(lease.key, "garbage")
        token = lease.acquire()
        assert Lease.from_value(coordinator.get(lease.key)).token == token

    def test_force_release(self, lease, coordinator):
        lease.acquire()
        assert lease.force_release() is True
        assert coordinator.get(lease.key) is None
        assert lease.force_release() is False


# ===========================================================================
# Contention Tests
# ===========================================================================

class TestLeaseContention:
    """Tests for waiting, timeouts and mutual exclusion."""

    def test_timeout_while_lease_is_held(self, coordinator):
        """A live lease held by someone else raises after the acquire timeout."""
        coordinator.put("Farm-Conch", Lease("holder", _future()).to_value())

        now = [0.0]
        sleeps = []

        def fake_sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        manager = LeaseManager(
            coordinator, "Farm-Conch",
            acquire_timeout=5,
            wait_range=(1.0, 2.0),
            sleep=fake_sleep,
            clock=lambda: now[0],
        )

        with pytest.raises(LeaseTimeoutError) as excinfo:
            manager.acquire()

        assert excinfo.value.key == "Farm-Conch"
        assert excinfo.value.waited >= 5
        assert all(1.0 <= s <= 2.0 for s in sleeps)
        # The foreign lease is untouched
        assert Lease.from_value(coordinator.get("Farm-Conch")).token == "holder"

    def test_waits_with_jitter_then_acquires(self):
        """A contender sleeps in the jitter range until the holder releases."""
        backend = MagicMock()
        live = Lease("holder", _future()).to_value()
        backend.create.side_effect = [False, False, True]
        backend.get.return_value = live
        sleeps = []

        manager = LeaseManager(backend, "Farm-Conch", wait_range=(1.0, 2.0), sleep=sleeps.append)
        manager.acquire()

        assert backend.create.call_count == 3
        assert len(sleeps) == 2
        assert all(1.0 <= s <= 2.0 for s in sleeps)
        backend.delete.assert_not_called()

    def test_reclaim_pauses_briefly(self):
        backend = MagicMock()
        backend.create.side_effect = [False, True]
        backend.get.return_value = Lease("crashed", _expired()).to_value()
        sleeps = []

        manager = LeaseManager(backend, "Farm-Conch", reclaim_pause=0.1, sleep=sleeps.append)
        manager.acquire()

        backend.delete.assert_called_once_with("Farm-Conch")
        assert sleeps == [0.1]

    def test_record_vanishing_between_create_and_read_retries(self):
        backend = MagicMock()
        backend.create.side_effect = [False, True]
        backend.get.return_value = None
        sleeps = []

        manager = LeaseManager(backend, "Farm-Conch", sleep=sleeps.append)
        manager.acquire()

        assert backend.create.call_count == 2
        assert sleeps == []

    @pytest.mark.concurrency
    def test_mutual_exclusion(self, lease):
        """At most one thread is inside the critical section at any time."""
        inside = []
        max_inside = [0]
        guard = threading.Lock()
        errors = []

        def worker():
            try:
                for _ in range(5):
                    with lease.held():
                        with guard:
                            inside.append(1)
                            max_inside[0] = max(max_inside[0], len(inside))
                        time.sleep(0.001)
                        with guard:
                            inside.pop()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert max_inside[0] == 1
        assert lease.coordinator.get(lease.key) is None
