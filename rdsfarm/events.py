"""
Event decoding for the coordinator.

Every incoming message is decoded once, at the boundary, into one of:

    LifecycleHookEvent   an autoscaling lifecycle hook (launch or terminate)
    StatusCheckEvent     a rescheduled poll of configuration progress
    UnrecognizedEvent    anything else; logged and skipped

The workflow state of a multi-step add or remove travels inside the
message itself: rescheduling republishes the original hook fields plus a
StatusCheck marker and an Attempt counter.
"""

import json
import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .distributed.membership import ComponentType

logger = logging.getLogger(__name__)

HOOK_NAME = 'LifecycleHookName'
INSTANCE_ID = 'EC2InstanceId'
GROUP_NAME = 'AutoScalingGroupName'
ACTION_TOKEN = 'LifecycleActionToken'
STATUS_CHECK = 'StatusCheck'
ATTEMPT = 'Attempt'

_HOOK_PATTERN = re.compile(r'^(?P<type>.+)-(?P<transition>LAUNCHING|TERMINATING)$', re.IGNORECASE)


class Intent(Enum):
    """What the lifecycle hook asks of the deployment."""
    ADD = "LAUNCHING"
    REMOVE = "TERMINATING"


@dataclass(frozen=True)
class HookEvent:
    """Fields shared by lifecycle-hook and status-check events."""
    hook_name: str
    instance_id: str
    group_name: str
    action_token: str
    component_type: ComponentType
    intent: Intent
    attempt: int = 0
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def key(self):
        return (self.instance_id, self.component_type, self.intent)

    def to_payload(self) -> Dict[str, Any]:
        payload = dict(self.extra)
        payload.update({
            HOOK_NAME: self.hook_name,
            INSTANCE_ID: self.instance_id,
            GROUP_NAME: self.group_name,
            ACTION_TOKEN: self.action_token,
            ATTEMPT: self.attempt,
        })
        return payload

    def next_attempt(self) -> 'HookEvent':
        return replace(self, attempt=self.attempt + 1)


@dataclass(frozen=True)
class LifecycleHookEvent(HookEvent):
    """An add or remove request from autoscaling."""

    def as_status_check(self) -> 'StatusCheckEvent':
        return StatusCheckEvent(
            hook_name=self.hook_name,
            instance_id=self.instance_id,
            group_name=self.group_name,
            action_token=self.action_token,
            component_type=self.component_type,
            intent=self.intent,
            attempt=0,
            extra=self.extra,
        )


@dataclass(frozen=True)
class StatusCheckEvent(HookEvent):
    """A poll of configuration progress for the instance of a hook."""

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload[STATUS_CHECK] = True
        return payload


@dataclass(frozen=True)
class UnrecognizedEvent:
    """A message that matches no known shape."""
    payload: Any
    reason: str


Event = Union[LifecycleHookEvent, StatusCheckEvent, UnrecognizedEvent]


def parse_hook_name(hook_name: str):
    """
    Split ``{component_type}-{LAUNCHING|TERMINATING}``.

    Returns:
        (ComponentType, Intent), or None if the name does not match
    """
    match = _HOOK_PATTERN.match(hook_name or '')
    if not match:
        return None
    type_name = match.group('type').lower()
    for component_type in ComponentType:
        if component_type.value.lower() == type_name:
            return component_type, Intent(match.group('transition').upper())
    return None


def decode_message(payload: Any) -> Event:
    """Decode one notification message into an Event."""
    if not isinstance(payload, dict):
        return UnrecognizedEvent(payload, "message is not a JSON object")

    hook_name = payload.get(HOOK_NAME)
    if not hook_name:
        return UnrecognizedEvent(payload, "no lifecycle hook name")

    parsed = parse_hook_name(hook_name)
    if parsed is None:
        return UnrecognizedEvent(
            payload,
            f"unknown lifecycle hook name {hook_name!r}; should be "
            f"<component type>-LAUNCHING or <component type>-TERMINATING",
        )

    instance_id = payload.get(INSTANCE_ID)
    if not instance_id:
        return UnrecognizedEvent(payload, "no EC2 instance id")

    try:
        attempt = int(payload.get(ATTEMPT, 0))
    except (TypeError, ValueError):
        attempt = 0

    known = {HOOK_NAME, INSTANCE_ID, GROUP_NAME, ACTION_TOKEN, STATUS_CHECK, ATTEMPT}
    fields = dict(
        hook_name=hook_name,
        instance_id=instance_id,
        group_name=payload.get(GROUP_NAME, ''),
        action_token=payload.get(ACTION_TOKEN, ''),
        component_type=parsed[0],
        intent=parsed[1],
        attempt=attempt,
        extra={k: v for k, v in payload.items() if k not in known},
    )
    if payload.get(STATUS_CHECK) is True:
        return StatusCheckEvent(**fields)
    return LifecycleHookEvent(**fields)


def decode_records(event: Dict[str, Any]) -> Optional[List[Event]]:
    """
    Decode an SNS-triggered invocation event.

    Returns:
        One Event per record, or None if the invocation event has no Records
    """
    records = event.get('Records') if isinstance(event, dict) else None
    if records is None:
        return None

    decoded: List[Event] = []
    for record in records:
        message = (record.get('Sns') or {}).get('Message') if isinstance(record, dict) else None
        if message is None:
            decoded.append(UnrecognizedEvent(record, "record carries no SNS message"))
            continue
        try:
            payload = json.loads(message)
        except (TypeError, ValueError):
            decoded.append(UnrecognizedEvent(message, "SNS message is not JSON"))
            continue
        decoded.append(decode_message(payload))
    return decoded
