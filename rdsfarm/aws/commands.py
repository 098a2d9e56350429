"""
SSM Run Command: the command-execution subsystem that configures instances.

The coordinator never looks inside the configuration operations. It starts a
named SSM document against an instance and later polls the statuses of every
command invocation recorded for that instance.
"""

import logging
from typing import Dict, List, Optional

from botocore.exceptions import ClientError

from ..config.settings import CoordinatorConfig, Operation
from ..utils.error_handling import log_external_error

logger = logging.getLogger(__name__)


class CommandRunner:
    """Starts configuration operations and lists their invocation statuses."""

    def __init__(self, client, config: CoordinatorConfig):
        """
        Args:
            client: boto3 SSM client
            config: Coordinator configuration (document names)
        """
        self.client = client
        self.config = config

    def run(self, operation: Operation, instance_id: str,
            parameters: Optional[Dict[str, str]] = None) -> str:
        """
        Start an operation on an instance.

        Returns:
            The SSM command id
        """
        document = self.config.document_for(operation)
        request = {
            'DocumentName': document,
            'InstanceIds': [instance_id],
            'Comment': f"{self.config.deployment_name}: {operation.value}",
        }
        if parameters:
            request['Parameters'] = {name: [value] for name, value in parameters.items()}

        try:
            response = self.client.send_command(**request)
        except ClientError as e:
            log_external_error(e, "send command", instance_id=instance_id, document=document)
            raise
        command_id = response['Command']['CommandId']
        logger.info(f"Started {operation.value} ({document}) on {instance_id}: command {command_id}")
        return command_id

    def list_invocation_statuses(self, instance_id: str) -> List[str]:
        """Status of every command invocation recorded for the instance."""
        paginator = self.client.get_paginator('list_command_invocations')
        statuses = []
        for page in paginator.paginate(InstanceId=instance_id):
            statuses.extend(inv['Status'] for inv in page.get('CommandInvocations', []))
        return statuses
