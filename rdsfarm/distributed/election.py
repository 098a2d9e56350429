"""
Election & Mutation Protocol

set_member() is the single choke point for membership writes: it takes the
lease, merges a partial update into the freshly read record, re-checks the
single-primary invariant and writes the whole record back.

elect_primary() builds the primary-broker election on top of it. Both
contenders run the same protocol; whichever commit lands first in the
lease-serialized order wins and the other one demotes itself.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..logging_config import get_logger
from .lease import LeaseManager
from .membership import (
    ComponentType,
    DualPrimaryError,
    Member,
    MembershipError,
    MembershipStore,
    MemberStatus,
    build_view,
)

logger = get_logger(__name__)


class PrimaryConflictError(MembershipError):
    """An update claims primacy while another broker already holds it."""

    def __init__(self, instance_id: str, primary_id: str):
        super().__init__(
            f"Attempting to make {instance_id} primary broker when "
            f"{primary_id} already is"
        )
        self.instance_id = instance_id
        self.primary_id = primary_id


class ComponentTypeChangeError(MembershipError):
    """An update tries to change the immutable component type of a member."""


@dataclass(frozen=True)
class MemberUpdate:
    """Partial member fields; None means 'leave unchanged'."""
    instance_id: str
    component_type: Optional[ComponentType] = None
    status: Optional[MemberStatus] = None
    is_primary: Optional[bool] = None

    def apply_to(self, member: Member) -> None:
        if self.component_type is not None:
            if member.component_type is not None and member.component_type is not self.component_type:
                raise ComponentTypeChangeError(
                    f"{member.instance_id} is a {member.component_type.value}; "
                    f"cannot become {self.component_type.value}"
                )
            member.component_type = self.component_type
            member.raw_type = self.component_type.value
        if self.status is not None:
            member.status = self.status
        if self.is_primary is not None:
            member.is_primary = self.is_primary

    def to_member(self) -> Member:
        member = Member(instance_id=self.instance_id)
        self.apply_to(member)
        return member

    def describe(self) -> dict:
        return {k: v for k, v in {
            'instance_id': self.instance_id,
            'type': self.component_type.value if self.component_type else None,
            'status': self.status.value if self.status else None,
            'primary': self.is_primary,
        }.items() if v is not None}


class MembershipProtocol:
    """Lease-protected membership mutation and primary election."""

    def __init__(self, store: MembershipStore, lease: LeaseManager):
        self.store = store
        self.lease = lease

    def set_member(self, update: MemberUpdate) -> None:
        """
        Merge an update into the membership record under the lease.

        Raises:
            PrimaryConflictError: update claims primacy and another active
                broker is primary (nothing is written)
            DualPrimaryError: the stored record already has two primaries and
                the update claims primacy
            ComponentTypeChangeError: update changes a member's type
            LeaseTimeoutError: the lease could not be acquired
        """
        with self.lease.held():
            members = self.store.read_all()

            if update.is_primary:
                primary = build_view(members).primary_broker
                if primary is not None and primary.instance_id != update.instance_id:
                    raise PrimaryConflictError(update.instance_id, primary.instance_id)

            existing = next((m for m in members if m.instance_id == update.instance_id), None)
            if existing is not None:
                update.apply_to(existing)
            else:
                members.append(update.to_member())

            self.store.write_all(members)

        logger.log_with_data(logging.INFO, "Completed setting member data", update.describe())

    def elect_primary(self, instance_id: str) -> bool:
        """
        Try to make a broker the deployment's primary.

        Returns:
            True if this broker is primary, False if it lost the race and was
            demoted
        """
        try:
            self.set_member(MemberUpdate(
                instance_id=instance_id,
                component_type=ComponentType.BROKER,
                status=MemberStatus.NEW,
                is_primary=True,
            ))
            view = self.store.get_view()
            logger.debug(f"Deployment after primary claim by {instance_id}: {view.to_dict()}")
            return True
        except (PrimaryConflictError, DualPrimaryError) as e:
            logger.warning(f"Encountered race condition for primary connection broker: {e}")

        self.set_member(MemberUpdate(
            instance_id=instance_id,
            component_type=ComponentType.BROKER,
            status=MemberStatus.NEW,
            is_primary=False,
        ))
        try:
            winner = self.store.get_view().primary_broker
        except DualPrimaryError:
            winner = None
        logger.info(
            f"Backing off for instance {instance_id} and allowing instance "
            f"{winner.instance_id if winner else '(unresolved)'} to be primary"
        )
        return False
