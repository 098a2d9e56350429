"""
Coordinator Settings - the explicit configuration of one invocation.

Settings are read from the environment once, at the entry point, and the
resulting CoordinatorConfig is passed to every component. Nothing else in
the package reads the environment for deployment settings.

Required:
    TABLE_NAME            membership store location (DynamoDB table name,
                          or directory for the file backend)
    SNS_TOPIC_ARN         notification channel used to reschedule work
    RDS_DEPLOYMENT_NAME   deployment name; namespaces the membership record
                          and the lease

Optional:
    FARM_STORE_BACKEND    ssm (default), dynamodb or file
    AWS_REGION            region for every AWS client
    FARM_DOCUMENT_<OP>    SSM document name for a configuration operation,
                          e.g. FARM_DOCUMENT_ADD_GATEWAY
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional

from ..constants import RecordKeys, RuntimeConfig


class ConfigurationError(Exception):
    """A required setting is missing or invalid. Fatal for the invocation."""


class StoreBackend(Enum):
    """Where the membership record and lease live."""
    SSM = "ssm"
    DYNAMODB = "dynamodb"
    FILE = "file"


class Operation(Enum):
    """Opaque configuration operations run on the command-execution subsystem."""
    INIT_PRIMARY_BROKER = "init-primary-broker"
    ADD_BROKER = "add-broker"
    ADD_GATEWAY = "add-gateway"
    ADD_WEB_ACCESS = "add-web-access"
    REMOVE_BROKER = "remove-broker"
    REMOVE_GATEWAY = "remove-gateway"
    REMOVE_WEB_ACCESS = "remove-web-access"

    @property
    def default_document(self) -> str:
        # add-web-access -> RDS-AddWebAccess
        return "RDS-" + "".join(part.capitalize() for part in self.value.split("-"))

    @property
    def env_var(self) -> str:
        return "FARM_DOCUMENT_" + self.name


REQUIRED_SETTINGS = {
    'TABLE_NAME': "membership store location",
    'SNS_TOPIC_ARN': "notification channel to send rescheduled work to",
    'RDS_DEPLOYMENT_NAME': "deployment name",
}


@dataclass(frozen=True)
class CoordinatorConfig:
    """Configuration constructed once per invocation."""
    table_name: str
    sns_topic_arn: str
    deployment_name: str
    store_backend: StoreBackend = StoreBackend.SSM
    region_name: Optional[str] = None
    reschedule_delay: float = 30.0
    lease_ttl: float = 60.0
    lease_acquire_timeout: float = 30.0
    record_workers: int = 8
    documents: Dict[Operation, str] = field(default_factory=dict)

    @property
    def membership_key(self) -> str:
        return RecordKeys.membership(self.deployment_name)

    @property
    def lease_key(self) -> str:
        return RecordKeys.lease(self.deployment_name)

    def document_for(self, operation: Operation) -> str:
        """SSM document name that implements an operation."""
        return self.documents.get(operation, operation.default_document)

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> 'CoordinatorConfig':
        """
        Build the configuration from environment variables.

        Raises:
            ConfigurationError: a required setting is missing or the store
                backend is unknown
        """
        environ = os.environ if environ is None else environ

        for name, purpose in REQUIRED_SETTINGS.items():
            if not environ.get(name):
                raise ConfigurationError(f"Value for {name} ({purpose}) is missing")

        backend_name = environ.get('FARM_STORE_BACKEND', StoreBackend.SSM.value).lower()
        try:
            backend = StoreBackend(backend_name)
        except ValueError:
            choices = ", ".join(b.value for b in StoreBackend)
            raise ConfigurationError(
                f"Unknown FARM_STORE_BACKEND '{backend_name}' (expected one of {choices})"
            )

        documents = {
            op: environ[op.env_var]
            for op in Operation
            if environ.get(op.env_var)
        }

        return cls(
            table_name=environ['TABLE_NAME'],
            sns_topic_arn=environ['SNS_TOPIC_ARN'],
            deployment_name=environ['RDS_DEPLOYMENT_NAME'],
            store_backend=backend,
            region_name=environ.get('AWS_REGION') or environ.get('AWS_DEFAULT_REGION'),
            reschedule_delay=RuntimeConfig.get_reschedule_delay(),
            lease_ttl=RuntimeConfig.get_lease_ttl(),
            lease_acquire_timeout=RuntimeConfig.get_lease_acquire_timeout(),
            record_workers=RuntimeConfig.get_record_workers(),
            documents=documents,
        )
