"""
AWS collaborators of the coordinator.

Thin wrappers over boto3 clients for the services the coordinator talks to
but does not own: autoscaling lifecycle hooks, EC2 instance state, SSM Run
Command and SNS.
"""

from .clients import get_client, clear_clients
from .commands import CommandRunner
from .lifecycle import InstanceInspector, LifecycleHookClient, LifecycleResult
from .notifications import NotificationChannel

__all__ = [
    'get_client',
    'clear_clients',
    'CommandRunner',
    'InstanceInspector',
    'LifecycleHookClient',
    'LifecycleResult',
    'NotificationChannel',
]
