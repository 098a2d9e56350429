"""
Reconciliation Loop - decides the next step for each incoming event.

One call to handle() performs at most one step of an add, remove or
status-check workflow and then either finishes the workflow or republishes
the event (after one fixed delay) so that a later invocation continues it.
Slow external configuration therefore never holds an invocation open.
"""

import logging
import time
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .aws.lifecycle import LifecycleResult
from .config.settings import Operation
from .distributed.election import MemberUpdate, MembershipProtocol
from .distributed.lease import LeaseTimeoutError
from .distributed.membership import (
    ComponentType,
    DeploymentView,
    Member,
    MembershipError,
    MembershipStore,
    MemberStatus,
    build_view,
)
from .events import (
    Event,
    HookEvent,
    Intent,
    LifecycleHookEvent,
    StatusCheckEvent,
    UnrecognizedEvent,
)
from .logging_config import get_logger
from .status_aggregator import ABANDONING, WAITING, CommandStatus, StatusAggregator
from .utils.error_handling import ErrorCategory, handle_error

logger = get_logger(__name__)

ADD_OPERATIONS = {
    ComponentType.BROKER: Operation.ADD_BROKER,
    ComponentType.GATEWAY: Operation.ADD_GATEWAY,
    ComponentType.WEB_ACCESS: Operation.ADD_WEB_ACCESS,
}

REMOVE_OPERATIONS = {
    ComponentType.BROKER: Operation.REMOVE_BROKER,
    ComponentType.GATEWAY: Operation.REMOVE_GATEWAY,
    ComponentType.WEB_ACCESS: Operation.REMOVE_WEB_ACCESS,
}


class Outcome(Enum):
    """What one handle() call did."""
    SKIPPED = "skipped"                 # nothing to do, event dropped
    RESCHEDULED = "rescheduled"         # farm not ready, same event republished
    ELECTION_LOST = "election_lost"     # another broker became primary, add republished
    CONFIGURING = "configuring"         # add operation started, status check scheduled
    REMOVING = "removing"               # removal operation started, status check scheduled
    WAITING = "waiting"                 # configuration still running, status check republished
    CONTINUED = "continued"             # lifecycle action completed with CONTINUE
    ABANDONED = "abandoned"             # lifecycle action completed with ABANDON
    INDETERMINATE = "indeterminate"     # aggregate status unknown, event dropped


class Reconciler:
    """Event handler driving members through their lifecycle."""

    def __init__(
        self,
        store: MembershipStore,
        protocol: MembershipProtocol,
        aggregator: StatusAggregator,
        commands,
        lifecycle,
        notifications,
        instances,
        reschedule_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            store: Membership store (best-effort reads)
            protocol: Lease-protected mutation protocol (all writes)
            aggregator: Command status aggregator
            commands: CommandRunner starting configuration operations
            lifecycle: LifecycleHookClient resolving hooks
            notifications: NotificationChannel used to reschedule
            instances: InstanceInspector for instance state
            reschedule_delay: Fixed delay before republishing an event
            sleep: Sleep function (injectable for tests)
        """
        self.store = store
        self.protocol = protocol
        self.aggregator = aggregator
        self.commands = commands
        self.lifecycle = lifecycle
        self.notifications = notifications
        self.instances = instances
        self.reschedule_delay = reschedule_delay
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, event: Event) -> Outcome:
        """
        Handle one decoded event. Unknown shapes are logged, never raised.

        Membership invariant violations (including malformed stored entries)
        and lease timeouts are reported and the event is republished.
        """
        if isinstance(event, UnrecognizedEvent):
            logger.warning(f"No way to deal with message ({event.reason}). Skipping")
            return Outcome.SKIPPED

        try:
            if isinstance(event, StatusCheckEvent):
                logger.info(f"Handling status check for {event.instance_id} (attempt {event.attempt})")
                return self._check_status(event)
            if event.intent is Intent.ADD:
                logger.info(f"Instance {event.instance_id} is LAUNCHING as {event.component_type.value}")
                return self._add(event)
            logger.info(f"Instance {event.instance_id} is TERMINATING as {event.component_type.value}")
            return self._remove(event)
        except MembershipError as e:
            handle_error(e, "reconcile membership", ErrorCategory.INVARIANT,
                         additional_context={'instance_id': event.instance_id})
        except LeaseTimeoutError as e:
            handle_error(e, "reconcile membership", ErrorCategory.LEASE,
                         additional_context={'instance_id': event.instance_id})

        self._reschedule(event)
        return Outcome.RESCHEDULED

    def handle_all(self, events: List[Event]) -> List[Outcome]:
        return [self.handle(event) for event in events]

    # ------------------------------------------------------------------
    # Add path
    # ------------------------------------------------------------------

    def _add(self, event: LifecycleHookEvent) -> Outcome:
        instance_id = event.instance_id
        component_type = event.component_type

        if not self.instances.is_running(instance_id):
            logger.warning(f"Instance {instance_id} is no longer pending or running. Skipping add")
            return Outcome.SKIPPED

        existing, view = self._snapshot(instance_id)
        if existing is not None and existing.status is MemberStatus.CONFIGURED:
            logger.info(f"Instance {instance_id} is already configured. Skipping duplicate add")
            return Outcome.SKIPPED
        if existing is not None and existing.status is MemberStatus.CONFIGURING:
            logger.info(f"Instance {instance_id} is already being configured. Checking status instead")
            self._schedule_status_check(event)
            return Outcome.WAITING

        primary = view.primary_broker
        if primary is not None and primary.instance_id == instance_id:
            # Elected earlier but configuration never started
            return self._configure_primary(event)

        if primary is not None and primary.status is not MemberStatus.CONFIGURED:
            logger.info(
                f"Primary connection broker {primary.instance_id} configuration in "
                f"progress. Waiting for it to complete before adding {instance_id}"
            )
            self._reschedule(event)
            return Outcome.RESCHEDULED

        if primary is None and component_type is ComponentType.BROKER:
            logger.info(f"Deployment has no primary broker; establishing {instance_id} as primary")
            if not self.protocol.elect_primary(instance_id):
                self._reschedule(event)
                return Outcome.ELECTION_LOST
            return self._configure_primary(event)

        if primary is None:
            logger.info(f"Deployment has no primary broker yet. Deferring {component_type.value} {instance_id}")
            self._reschedule(event)
            return Outcome.RESCHEDULED

        self.protocol.set_member(MemberUpdate(
            instance_id=instance_id,
            component_type=component_type,
            status=MemberStatus.NEW,
            is_primary=False if component_type is ComponentType.BROKER else None,
        ))
        self.commands.run(ADD_OPERATIONS[component_type], instance_id,
                          {'PrimaryBroker': primary.instance_id})
        self.protocol.set_member(MemberUpdate(instance_id=instance_id, status=MemberStatus.CONFIGURING))

        logger.log_with_data(logging.INFO, "Initiated addition of instance to deployment", {
            'instance_id': instance_id,
            'type': component_type.value,
            'primary_broker': primary.instance_id,
        })
        self._schedule_status_check(event)
        return Outcome.CONFIGURING

    def _configure_primary(self, event: LifecycleHookEvent) -> Outcome:
        instance_id = event.instance_id
        self.commands.run(Operation.INIT_PRIMARY_BROKER, instance_id)
        self.protocol.set_member(MemberUpdate(
            instance_id=instance_id,
            component_type=ComponentType.BROKER,
            status=MemberStatus.CONFIGURING,
        ))
        logger.log_with_data(logging.INFO, "Initiated creation of deployment with primary broker", {
            'instance_id': instance_id,
        })
        self._schedule_status_check(event)
        return Outcome.CONFIGURING

    # ------------------------------------------------------------------
    # Remove path
    # ------------------------------------------------------------------

    def _remove(self, event: LifecycleHookEvent) -> Outcome:
        instance_id = event.instance_id
        component_type = event.component_type

        members = self.store.read_all()
        recorded = next((m for m in members if m.instance_id == instance_id), None)
        if recorded is not None and recorded.status is MemberStatus.REMOVED:
            logger.info(f"Instance {instance_id} is already removed. Skipping duplicate remove")
            return Outcome.SKIPPED

        primary = build_view(members).primary_broker
        if primary is not None and primary.status is MemberStatus.CONFIGURING:
            logger.info(
                f"Primary connection broker {primary.instance_id} configuration in "
                f"progress. Cannot remove {instance_id} until it completes"
            )
            self._reschedule(event)
            return Outcome.RESCHEDULED

        self.protocol.set_member(MemberUpdate(
            instance_id=instance_id,
            component_type=component_type,
            status=MemberStatus.REMOVING,
        ))
        parameters = {}
        if primary is not None and primary.instance_id != instance_id:
            parameters['PrimaryBroker'] = primary.instance_id
        self.commands.run(REMOVE_OPERATIONS[component_type], instance_id, parameters or None)

        logger.log_with_data(logging.INFO, "Initiated removal of instance from deployment", {
            'instance_id': instance_id,
            'type': component_type.value,
        })
        self._schedule_status_check(event)
        return Outcome.REMOVING

    # ------------------------------------------------------------------
    # Status-check path
    # ------------------------------------------------------------------

    def _check_status(self, event: StatusCheckEvent) -> Outcome:
        instance_id = event.instance_id
        status = self.aggregator.aggregate(instance_id)

        if status is CommandStatus.SUCCESS:
            logger.info(f"Configuration status for {instance_id}: {status.value}")
            self._complete(event, LifecycleResult.CONTINUE)
            final = MemberStatus.REMOVED if event.intent is Intent.REMOVE else MemberStatus.CONFIGURED
            self.protocol.set_member(MemberUpdate(
                instance_id=instance_id,
                component_type=event.component_type,
                status=final,
            ))
            return Outcome.CONTINUED

        if status in WAITING:
            logger.info(
                f"Configuration status for {instance_id}: {status.value}. "
                f"Checking again in {self.reschedule_delay:.0f} seconds"
            )
            self._reschedule(event)
            return Outcome.WAITING

        if status in ABANDONING:
            logger.warning(f"Configuration status for {instance_id}: {status.value}")
            self._complete(event, LifecycleResult.ABANDON)
            self.protocol.set_member(MemberUpdate(
                instance_id=instance_id,
                component_type=event.component_type,
                status=MemberStatus.REMOVING,
            ))
            return Outcome.ABANDONED

        logger.warning(f"Result of checking configuration state on {instance_id} could not be determined")
        return Outcome.INDETERMINATE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _snapshot(self, instance_id: str) -> Tuple[Optional[Member], DeploymentView]:
        view = self.store.get_view()
        return view.find(instance_id), view

    def _complete(self, event: HookEvent, result: LifecycleResult) -> None:
        self.lifecycle.complete(
            event.hook_name,
            event.group_name,
            event.action_token,
            event.instance_id,
            result,
        )

    def _reschedule(self, event: HookEvent) -> None:
        logger.verbose(
            f"Republishing event for {event.instance_id} in {self.reschedule_delay:.0f} seconds "
            f"(attempt {event.attempt + 1})"
        )
        self._sleep(self.reschedule_delay)
        self.notifications.publish(event.next_attempt().to_payload())

    def _schedule_status_check(self, event: HookEvent) -> None:
        check = event.as_status_check() if isinstance(event, LifecycleHookEvent) else event
        self._sleep(self.reschedule_delay)
        self.notifications.publish(check.to_payload())
