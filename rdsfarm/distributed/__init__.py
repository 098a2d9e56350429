"""
Distributed Coordination Package
Provides the shared-record backends, the deployment lease, the membership
store and the lease-protected mutation and election protocol.
"""

from .coordinators import Coordinator, DynamoDBCoordinator, FileCoordinator, SSMParameterCoordinator
from .election import ComponentTypeChangeError, MemberUpdate, MembershipProtocol, PrimaryConflictError
from .lease import Lease, LeaseManager, LeaseTimeoutError
from .membership import (
    ComponentType,
    DeploymentView,
    DualPrimaryError,
    MalformedMemberError,
    Member,
    MembershipError,
    MembershipStore,
    MemberStatus,
    UnknownComponentTypeError,
    build_view,
)

__all__ = [
    'Coordinator',
    'DynamoDBCoordinator',
    'FileCoordinator',
    'SSMParameterCoordinator',
    'ComponentTypeChangeError',
    'MemberUpdate',
    'MembershipProtocol',
    'PrimaryConflictError',
    'Lease',
    'LeaseManager',
    'LeaseTimeoutError',
    'ComponentType',
    'DeploymentView',
    'DualPrimaryError',
    'MalformedMemberError',
    'Member',
    'MembershipError',
    'MembershipStore',
    'MemberStatus',
    'UnknownComponentTypeError',
    'build_view',
]
