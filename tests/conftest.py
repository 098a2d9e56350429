"""
Pytest configuration and shared fixtures for RDS Farm Coordinator tests.

This module provides common fixtures for testing the coordinator components:
a file-backed coordinator, membership store, lease and protocol wired with
short waits, and MagicMock stand-ins for the AWS collaborators.
"""

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import MagicMock

import pytest

# Add the parent directory to the path for imports
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from botocore.exceptions import ClientError

from rdsfarm.config.settings import CoordinatorConfig, StoreBackend
from rdsfarm.distributed.coordinators import FileCoordinator
from rdsfarm.distributed.election import MembershipProtocol
from rdsfarm.distributed.lease import LeaseManager
from rdsfarm.distributed.membership import MembershipStore
from rdsfarm.reconciler import Reconciler
from rdsfarm.status_aggregator import StatusAggregator


DEPLOYMENT = "TestFarm"


# ===========================================================================
# Temporary Directory Fixtures
# ===========================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="rdsfarm_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


# ===========================================================================
# Configuration Fixtures
# ===========================================================================

@pytest.fixture
def environment(temp_dir: Path) -> Dict[str, str]:
    """Minimal valid coordinator environment using the file backend."""
    return {
        'TABLE_NAME': str(temp_dir / "store"),
        'SNS_TOPIC_ARN': "arn:aws:sns:us-east-1:123456789012:rds-farm",
        'RDS_DEPLOYMENT_NAME': DEPLOYMENT,
        'FARM_STORE_BACKEND': 'file',
        'AWS_REGION': 'us-east-1',
    }


@pytest.fixture
def config(temp_dir: Path) -> CoordinatorConfig:
    """Provide a coordinator configuration for the file backend."""
    return CoordinatorConfig(
        table_name=str(temp_dir / "store"),
        sns_topic_arn="arn:aws:sns:us-east-1:123456789012:rds-farm",
        deployment_name=DEPLOYMENT,
        store_backend=StoreBackend.FILE,
        region_name='us-east-1',
        reschedule_delay=0.0,
    )


# ===========================================================================
# Store and Protocol Fixtures
# ===========================================================================

@pytest.fixture
def coordinator(temp_dir: Path) -> FileCoordinator:
    """Provide a FileCoordinator over a temporary directory."""
    return FileCoordinator(str(temp_dir / "store"))


@pytest.fixture
def store(coordinator: FileCoordinator) -> MembershipStore:
    """Provide a MembershipStore for the test deployment."""
    return MembershipStore(coordinator, DEPLOYMENT)


@pytest.fixture
def lease(coordinator: FileCoordinator) -> LeaseManager:
    """Provide a LeaseManager with short waits."""
    return LeaseManager(
        coordinator,
        f"{DEPLOYMENT}-Conch",
        ttl=60,
        acquire_timeout=20,
        wait_range=(0.001, 0.01),
        reclaim_pause=0.001,
    )


@pytest.fixture
def protocol(store: MembershipStore, lease: LeaseManager) -> MembershipProtocol:
    """Provide a MembershipProtocol over the file-backed store."""
    return MembershipProtocol(store, lease)


# ===========================================================================
# AWS Collaborator Fixtures
# ===========================================================================

@pytest.fixture
def commands() -> MagicMock:
    """Mock CommandRunner: every run returns a command id, no invocations."""
    runner = MagicMock()
    runner.run.return_value = "cmd-0001"
    runner.list_invocation_statuses.return_value = []
    return runner


@pytest.fixture
def lifecycle() -> MagicMock:
    """Mock LifecycleHookClient."""
    client = MagicMock()
    client.complete.return_value = True
    return client


@pytest.fixture
def notifications() -> MagicMock:
    """Mock NotificationChannel."""
    channel = MagicMock()
    channel.publish.return_value = True
    return channel


@pytest.fixture
def instances() -> MagicMock:
    """Mock InstanceInspector reporting every instance as running."""
    inspector = MagicMock()
    inspector.is_running.return_value = True
    return inspector


@pytest.fixture
def sleeps() -> List[float]:
    """Records every delay the reconciler asks for."""
    return []


@pytest.fixture
def reconciler(store, protocol, commands, lifecycle, notifications, instances, sleeps) -> Reconciler:
    """Provide a Reconciler wired to the file-backed store and mocks."""
    return Reconciler(
        store=store,
        protocol=protocol,
        aggregator=StatusAggregator(commands),
        commands=commands,
        lifecycle=lifecycle,
        notifications=notifications,
        instances=instances,
        reschedule_delay=30.0,
        sleep=sleeps.append,
    )


# ===========================================================================
# Utility Functions
# ===========================================================================

def client_error(code: str, operation: str = "Operation") -> ClientError:
    """Build a botocore ClientError with the given error code."""
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


def hook_payload(instance_id: str, hook_name: str, **extra: Any) -> Dict[str, Any]:
    """Autoscaling lifecycle notification payload."""
    payload = {
        'LifecycleHookName': hook_name,
        'EC2InstanceId': instance_id,
        'AutoScalingGroupName': "farm-asg",
        'LifecycleActionToken': f"token-{instance_id}",
    }
    payload.update(extra)
    return payload


def sns_event(*payloads: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap payloads in an SNS-triggered invocation event."""
    return {
        'Records': [
            {'EventSource': 'aws:sns', 'Sns': {'Message': json.dumps(payload)}}
            for payload in payloads
        ]
    }


def seed_members(store: MembershipStore, members: List[Dict[str, Any]],
                 raw: Optional[str] = None) -> None:
    """Write the membership record directly, bypassing the protocol."""
    store.coordinator.put(store.key, raw if raw is not None else json.dumps(members))


# ===========================================================================
# Markers Registration
# ===========================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "concurrency: Multi-threaded race tests")
    config.addinivalue_line("markers", "slow: Slow tests (>1s)")
