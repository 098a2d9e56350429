"""
Centralized Constants Module for the RDS Farm Coordinator.

This module consolidates the timing values, retry limits and record key
conventions used throughout the coordinator so that every invocation
agrees on them.

Usage:
    from rdsfarm.constants import Timeouts, RuntimeConfig

    lease_ttl = RuntimeConfig.get_lease_ttl()
    time.sleep(Timeouts.LEASE_RECLAIM_PAUSE)
"""

import os
import logging
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)


# =============================================================================
# ENVIRONMENT VARIABLE OVERRIDE UTILITIES
# =============================================================================

T = TypeVar('T')

ENV_PREFIX = "FARM_"


def _env_override(
    env_var: str,
    default: T,
    converter: Callable[[str], T] = str,
    min_value: Optional[T] = None,
    max_value: Optional[T] = None,
) -> T:
    """Get a configuration value with environment variable override.

    Args:
        env_var: Environment variable name (will be prefixed with FARM_)
        default: Default value if env var not set
        converter: Function to convert string to target type
        min_value: Optional minimum allowed value
        max_value: Optional maximum allowed value

    Returns:
        Configured value (from env var if valid, otherwise default)
    """
    full_env_var = f"{ENV_PREFIX}{env_var}"
    env_value = os.environ.get(full_env_var)

    if env_value is None:
        return default

    try:
        converted = converter(env_value)

        if min_value is not None and converted < min_value:
            logger.warning(
                f"{full_env_var}={env_value} below minimum {min_value}, using default"
            )
            return default
        if max_value is not None and converted > max_value:
            logger.warning(
                f"{full_env_var}={env_value} above maximum {max_value}, using default"
            )
            return default

        logger.info(f"Using {full_env_var}={converted} (override)")
        return converted

    except (ValueError, TypeError) as e:
        logger.warning(f"Invalid value for {full_env_var}: {e}, using default")
        return default


# =============================================================================
# TIMEOUT CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class Timeouts:
    """
    Centralized timing values in seconds.

    The lease TTL bounds how long a crashed holder can block the farm; the
    reschedule delay bounds how long one invocation sleeps before handing
    work to the next one.
    """
    # Lease (conch)
    LEASE_TTL: float = 60.0                 # Lease lifetime after acquisition
    LEASE_RECLAIM_PAUSE: float = 0.1        # Pause after deleting an expired lease
    LEASE_WAIT_MIN: float = 1.0             # Lower bound of contention jitter
    LEASE_WAIT_MAX: float = 2.0             # Upper bound of contention jitter
    LEASE_ACQUIRE_TIMEOUT: float = 30.0     # Give up acquiring after this long

    # Reconciliation
    RESCHEDULE_DELAY: float = 30.0          # Delay before republishing an event


# =============================================================================
# RETRY CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class Retries:
    """Retry parameters for the AWS SDK clients."""
    AWS_MAX_ATTEMPTS: int = 5           # botocore standard retry mode
    AWS_MAX_ATTEMPTS_NOTIFY: int = 3    # SNS / autoscaling calls


# =============================================================================
# LIMITS
# =============================================================================

@dataclass(frozen=True)
class Limits:
    """Sizing limits."""
    RECORD_WORKERS: int = 8             # Concurrent SNS records per invocation
    TOKEN_BYTES: int = 16               # Random bytes in a lease token


# =============================================================================
# RECORD KEYS
# =============================================================================

@dataclass(frozen=True)
class RecordKeys:
    """Naming of the shared records, derived from the deployment name."""
    LEASE_SUFFIX: str = "-Conch"

    @staticmethod
    def membership(deployment_name: str) -> str:
        return deployment_name

    @staticmethod
    def lease(deployment_name: str) -> str:
        return f"{deployment_name}{RecordKeys.LEASE_SUFFIX}"


# =============================================================================
# ENVIRONMENT VARIABLE OVERRIDES
# =============================================================================

class RuntimeConfig:
    """
    Runtime configuration that can be overridden via environment variables.
    """
    @staticmethod
    def get_lease_ttl() -> float:
        """Get the lease lifetime."""
        return _env_override("LEASE_TTL", Timeouts.LEASE_TTL, float,
                             min_value=5.0, max_value=900.0)

    @staticmethod
    def get_lease_acquire_timeout() -> float:
        """Get the total time a contender waits for the lease."""
        return _env_override("LEASE_ACQUIRE_TIMEOUT", Timeouts.LEASE_ACQUIRE_TIMEOUT,
                             float, min_value=1.0, max_value=600.0)

    @staticmethod
    def get_reschedule_delay() -> float:
        """Get the fixed delay before an event is republished."""
        return _env_override("RESCHEDULE_DELAY", Timeouts.RESCHEDULE_DELAY, float,
                             min_value=0.0, max_value=600.0)

    @staticmethod
    def get_record_workers() -> int:
        """Get the number of records handled concurrently."""
        return _env_override("RECORD_WORKERS", Limits.RECORD_WORKERS, int,
                             min_value=1, max_value=64)


__all__ = [
    'Timeouts',
    'Retries',
    'Limits',
    'RecordKeys',
    'RuntimeConfig',
    'ENV_PREFIX',
]
