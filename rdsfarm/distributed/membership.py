"""
Membership Store - the deployment's shared member record
Holds every tracked instance as one JSON list and derives the Deployment
View (primary broker plus per-role lists) from it.

The record is read as a whole and written as a whole. Apart from the
create-if-absent "[]" placed by the first read, only the mutation
protocol in election.py writes it, and only while holding the lease.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .coordinators import Coordinator

logger = logging.getLogger(__name__)


class ComponentType(Enum):
    """Role of an instance in the farm. The value is the hook name prefix."""
    BROKER = "RDS-Connection-Broker"
    GATEWAY = "RDS-Gateway"
    WEB_ACCESS = "RDS-Web-Access"


class MemberStatus(Enum):
    """Lifecycle status of a member."""
    NEW = "New"
    CONFIGURING = "Configuring"
    CONFIGURED = "Configured"
    REMOVING = "Removing"
    REMOVED = "Removed"

    @property
    def is_removal(self) -> bool:
        return self in (MemberStatus.REMOVING, MemberStatus.REMOVED)


class MembershipError(Exception):
    """Base class for membership invariant violations."""


class DualPrimaryError(MembershipError):
    """Two active brokers are both marked primary."""

    def __init__(self, first_id: str, second_id: str):
        super().__init__(
            f"Encountered two connection brokers both marked as primary "
            f"({first_id}, {second_id})"
        )
        self.instance_ids = (first_id, second_id)


class UnknownComponentTypeError(MembershipError):
    """A stored member has a type that is not a known component type."""

    def __init__(self, instance_id: str, component_type: Any):
        super().__init__(
            f"Encountered unexpected component type {component_type!r} for "
            f"{instance_id} in deployment tracking data. Must be corrected to continue"
        )
        self.instance_id = instance_id
        self.component_type = component_type


class MalformedMemberError(MembershipError):
    """A stored member entry has no id or an unrecognized status."""


@dataclass
class Member:
    """One tracked compute instance."""
    instance_id: str
    component_type: Optional[ComponentType] = None
    status: Optional[MemberStatus] = None
    is_primary: bool = False
    # Type string as stored, kept when it is not a known ComponentType
    raw_type: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is None or not self.status.is_removal

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Member':
        """
        Raises:
            MalformedMemberError: entry has no InstanceId or an unknown Status
        """
        if not isinstance(data, dict) or not data.get('InstanceId'):
            raise MalformedMemberError(f"Membership entry {data!r} has no InstanceId")
        instance_id = data['InstanceId']

        raw_type = data.get('Type')
        try:
            component_type = ComponentType(raw_type) if raw_type is not None else None
        except ValueError:
            component_type = None

        raw_status = data.get('Status')
        try:
            status = MemberStatus(raw_status) if raw_status is not None else None
        except ValueError:
            raise MalformedMemberError(
                f"Encountered unexpected status {raw_status!r} for {instance_id} in "
                f"deployment tracking data. Must be corrected to continue"
            ) from None
        return cls(
            instance_id=instance_id,
            component_type=component_type,
            status=status,
            is_primary=data.get('PrimaryBroker') is True,
            raw_type=raw_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'InstanceId': self.instance_id}
        if self.component_type is not None:
            data['Type'] = self.component_type.value
        elif self.raw_type is not None:
            data['Type'] = self.raw_type
        if self.status is not None:
            data['Status'] = self.status.value
        if self.component_type is ComponentType.BROKER or self.is_primary:
            data['PrimaryBroker'] = self.is_primary
        return data


@dataclass
class DeploymentView:
    """Read-only projection over the active (non-removed) members."""
    primary_broker: Optional[Member] = None
    brokers: List[Member] = field(default_factory=list)
    gateways: List[Member] = field(default_factory=list)
    web_access: List[Member] = field(default_factory=list)
    all_members: List[Member] = field(default_factory=list)

    def find(self, instance_id: str) -> Optional[Member]:
        for member in self.all_members:
            if member.instance_id == instance_id:
                return member
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'PrimaryBroker': self.primary_broker.to_dict() if self.primary_broker else None,
            'BrokerList': [m.to_dict() for m in self.brokers],
            'GatewayList': [m.to_dict() for m in self.gateways],
            'WebAccessList': [m.to_dict() for m in self.web_access],
            'AllMembersList': [m.to_dict() for m in self.all_members],
        }


def build_view(members: List[Member]) -> DeploymentView:
    """
    Fold the active members into a DeploymentView.

    Raises:
        UnknownComponentTypeError: a member has no known component type
        DualPrimaryError: two active brokers are marked primary
    """
    view = DeploymentView()
    role_lists = {
        ComponentType.BROKER: view.brokers,
        ComponentType.GATEWAY: view.gateways,
        ComponentType.WEB_ACCESS: view.web_access,
    }

    for member in members:
        if not member.is_active:
            continue
        if member.component_type is None:
            raise UnknownComponentTypeError(member.instance_id, member.raw_type)

        role_lists[member.component_type].append(member)
        if member.component_type is ComponentType.BROKER and member.is_primary:
            if view.primary_broker is not None:
                raise DualPrimaryError(member.instance_id, view.primary_broker.instance_id)
            view.primary_broker = member
        view.all_members.append(member)

    return view


class MembershipStore:
    """
    Reads and writes the membership record of one deployment.

    The record lives under one key of a Coordinator backend as a JSON list of
    member dicts. Backend reads are strongly consistent.
    """

    def __init__(self, coordinator: Coordinator, key: str):
        self.coordinator = coordinator
        self.key = key

    def read_all(self) -> List[Member]:
        """Read every member, including removed ones."""
        value = self.coordinator.get(self.key)
        if value is None:
            logger.info(f"Deployment {self.key} not set yet, setting up")
            # create-if-absent: a concurrent initializer or writer wins
            if not self.coordinator.create(self.key, json.dumps([])):
                value = self.coordinator.get(self.key)
            if value is None:
                return []

        try:
            raw = json.loads(value)
        except json.JSONDecodeError as e:
            raise MembershipError(f"Membership record {self.key} is not valid JSON: {e}") from e
        if not isinstance(raw, list):
            raise MembershipError(f"Membership record {self.key} is not a list")
        return [Member.from_dict(entry) for entry in raw]

    def write_all(self, members: List[Member]) -> None:
        """Overwrite the whole record."""
        self.coordinator.put(self.key, json.dumps([m.to_dict() for m in members]))

    def get_view(self) -> DeploymentView:
        """Best-effort snapshot of the deployment."""
        return build_view(self.read_all())

    def reset(self) -> bool:
        """Delete the record (operator tooling)."""
        return self.coordinator.delete(self.key)
