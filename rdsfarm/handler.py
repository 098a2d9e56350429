"""
Invocation entry point.

Deploy with ``rdsfarm.handler.lambda_handler`` as the Lambda handler and
subscribe the function to the SNS topic that receives both the autoscaling
lifecycle notifications and the coordinator's own rescheduled events.
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from .aws.clients import get_client
from .aws.commands import CommandRunner
from .aws.lifecycle import InstanceInspector, LifecycleHookClient
from .aws.notifications import NotificationChannel
from .config.settings import ConfigurationError, CoordinatorConfig, StoreBackend
from .distributed.coordinators import (
    Coordinator,
    DynamoDBCoordinator,
    FileCoordinator,
    SSMParameterCoordinator,
)
from .distributed.election import MembershipProtocol
from .distributed.lease import LeaseManager
from .distributed.membership import MembershipStore
from .events import decode_records
from .logging_config import configure_from_environment, get_logger
from .reconciler import Reconciler
from .status_aggregator import StatusAggregator
from .utils.error_handling import ErrorCategory, handle_error

logger = get_logger(__name__)

_logging_configured = False
_logging_lock = threading.Lock()


def _ensure_logging() -> None:
    global _logging_configured
    with _logging_lock:
        if not _logging_configured:
            configure_from_environment()
            _logging_configured = True


def build_coordinator(config: CoordinatorConfig) -> Coordinator:
    """Storage backend for the membership record and the lease."""
    if config.store_backend is StoreBackend.DYNAMODB:
        return DynamoDBCoordinator(get_client('dynamodb', config.region_name), config.table_name)
    if config.store_backend is StoreBackend.FILE:
        return FileCoordinator(config.table_name)
    return SSMParameterCoordinator(get_client('ssm', config.region_name))


def build_protocol(config: CoordinatorConfig, coordinator: Coordinator) -> MembershipProtocol:
    store = MembershipStore(coordinator, config.membership_key)
    lease = LeaseManager(
        coordinator,
        config.lease_key,
        ttl=config.lease_ttl,
        acquire_timeout=config.lease_acquire_timeout,
    )
    return MembershipProtocol(store, lease)


def build_reconciler(config: CoordinatorConfig,
                     coordinator: Optional[Coordinator] = None) -> Reconciler:
    """Wire every component of one invocation from its configuration."""
    coordinator = coordinator or build_coordinator(config)
    protocol = build_protocol(config, coordinator)
    commands = CommandRunner(get_client('ssm', config.region_name), config)

    return Reconciler(
        store=protocol.store,
        protocol=protocol,
        aggregator=StatusAggregator(commands),
        commands=commands,
        lifecycle=LifecycleHookClient(get_client('autoscaling', config.region_name)),
        notifications=NotificationChannel(get_client('sns', config.region_name), config.sns_topic_arn),
        instances=InstanceInspector(get_client('ec2', config.region_name)),
        reschedule_delay=config.reschedule_delay,
    )


def lambda_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """
    Handle one SNS-triggered invocation.

    Records are handled concurrently; each is an independent workflow step.

    Raises:
        ConfigurationError: a required setting is missing
    """
    _ensure_logging()

    try:
        config = CoordinatorConfig.from_environment()
    except ConfigurationError as e:
        handle_error(e, "load configuration", ErrorCategory.CONFIG)
        raise

    logger.debug(json.dumps(event, default=str))

    events = decode_records(event)
    if events is None:
        message = 'Event does not contain "Records" attribute. Not sure how to handle. Skipping!'
        logger.warning(message)
        return {'message': message, 'outcomes': []}

    reconciler = build_reconciler(config)
    workers = max(1, min(config.record_workers, len(events)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='record') as pool:
        outcomes = list(pool.map(reconciler.handle, events))

    message = f"{len(events)} messages processed."
    logger.log_with_data(logging.INFO, message, {
        'outcomes': [outcome.value for outcome in outcomes],
        'deployment': config.deployment_name,
    })
    return {'message': message, 'outcomes': [outcome.value for outcome in outcomes]}
