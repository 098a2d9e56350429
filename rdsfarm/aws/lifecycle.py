"""
Autoscaling lifecycle hooks and EC2 instance state.
"""

import logging
from enum import Enum

from botocore.exceptions import ClientError

from ..utils.error_handling import ErrorCategory, safe_execute

logger = logging.getLogger(__name__)

RUNNING_STATES = ('pending', 'running')


class LifecycleResult(Enum):
    """Resolution of a lifecycle hook."""
    CONTINUE = "CONTINUE"
    ABANDON = "ABANDON"


class LifecycleHookClient:
    """Resolves autoscaling lifecycle actions."""

    def __init__(self, client):
        """
        Args:
            client: boto3 autoscaling client
        """
        self.client = client

    def complete(self, hook_name: str, group_name: str, action_token: str,
                 instance_id: str, result: LifecycleResult) -> bool:
        """
        Complete a lifecycle action.

        Failures are reported and swallowed: a duplicate event or the hook's
        own heartbeat timeout resolves the action instead.

        Returns:
            True if the call succeeded
        """
        logger.info(f"Signaling '{result.value}' for lifecycle hook {hook_name} ({instance_id})")
        params = {
            'LifecycleHookName': hook_name,
            'AutoScalingGroupName': group_name,
            'LifecycleActionResult': result.value,
            'InstanceId': instance_id,
        }
        if action_token:
            params['LifecycleActionToken'] = action_token

        with safe_execute(
            "complete lifecycle action",
            ErrorCategory.EXTERNAL,
            default_return=False,
            additional_context={'hook': hook_name, 'instance_id': instance_id},
        ) as outcome:
            self.client.complete_lifecycle_action(**params)
            outcome.value = True
        return outcome.value


class InstanceInspector:
    """Read-only view of EC2 instance state."""

    def __init__(self, client):
        """
        Args:
            client: boto3 EC2 client
        """
        self.client = client

    def is_running(self, instance_id: str) -> bool:
        """
        Whether the instance is pending or running.

        An instance EC2 no longer knows about is not running. Other errors
        propagate.
        """
        try:
            result = self.client.describe_instance_status(
                InstanceIds=[instance_id],
                IncludeAllInstances=True,
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'InvalidInstanceID.NotFound':
                return False
            raise

        statuses = result.get('InstanceStatuses', [])
        if not statuses:
            return False
        state = statuses[0]['InstanceState']['Name']
        logger.debug(f"Got status from EC2 instance {instance_id}: {state}")
        return state.lower() in RUNNING_STATES


__all__ = [
    'LifecycleResult',
    'LifecycleHookClient',
    'InstanceInspector',
]
