"""
SNS notification channel used to reschedule work.

Publishing a payload causes a future invocation of the coordinator with that
payload; this is how multi-step workflows continue after the current
invocation ends.
"""

import json
import logging
from typing import Any, Dict

from ..utils.error_handling import ErrorCategory, safe_execute

logger = logging.getLogger(__name__)


class NotificationChannel:
    """Publishes rescheduled events to the coordinator's SNS topic."""

    def __init__(self, client, topic_arn: str):
        """
        Args:
            client: boto3 SNS client
            topic_arn: Topic the coordinator is subscribed to
        """
        self.client = client
        self.topic_arn = topic_arn

    def publish(self, payload: Dict[str, Any]) -> bool:
        """
        Publish a payload.

        Failures are reported and swallowed; the event is lost for this
        invocation and relies on a duplicate upstream event.

        Returns:
            True if the message was published
        """
        message = json.dumps(payload)
        logger.debug(f"Publishing SNS message: {message}")
        with safe_execute(
            "publish notification",
            ErrorCategory.EXTERNAL,
            default_return=False,
            additional_context={'topic': self.topic_arn},
        ) as outcome:
            self.client.publish(TopicArn=self.topic_arn, Message=message)
            outcome.value = True
        return outcome.value
