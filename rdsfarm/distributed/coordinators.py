"""
Coordinator Backends - Pluggable storage for the shared deployment records
Provides the abstract interface and implementations (SSM Parameter Store,
DynamoDB, file system).

The membership record and the lease are the only shared mutable state of a
deployment. Backends offer plain reads, overwrites, create-if-absent and
deletes; the lease and the mutation protocol are built on those four.
"""

import fcntl
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class Coordinator(ABC):
    """
    Abstract coordinator interface for deployment state.
    Implementations can use SSM Parameter Store, DynamoDB, or a file.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """
        Retrieve a value by key with a strongly consistent read.

        Args:
            key: The record key

        Returns:
            The value, or None if not found
        """

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """
        Store a value, overwriting any existing one.

        Args:
            key: The record key
            value: The value to store (usually JSON)
        """

    @abstractmethod
    def create(self, key: str, value: str) -> bool:
        """
        Store a value only if the key does not exist yet.

        Args:
            key: The record key
            value: The value to store

        Returns:
            True if the value was created, False if the key already existed
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete a key.

        Args:
            key: The key to delete

        Returns:
            True if a record was deleted, False if it was already absent
        """


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


class SSMParameterCoordinator(Coordinator):
    """
    Coordinator backed by AWS Systems Manager Parameter Store.

    Each key is one String parameter. Parameter Store reads are strongly
    consistent and put_parameter(Overwrite=False) gives create-if-absent.
    """

    def __init__(self, client):
        """
        Initialize SSM coordinator.

        Args:
            client: boto3 SSM client
        """
        self.client = client

    def get(self, key: str) -> Optional[str]:
        try:
            response = self.client.get_parameter(Name=key, WithDecryption=True)
        except ClientError as e:
            if _error_code(e) == 'ParameterNotFound':
                return None
            raise
        return response['Parameter']['Value']

    def put(self, key: str, value: str) -> None:
        self.client.put_parameter(Name=key, Value=value, Type='String', Overwrite=True)

    def create(self, key: str, value: str) -> bool:
        try:
            self.client.put_parameter(Name=key, Value=value, Type='String', Overwrite=False)
        except ClientError as e:
            if _error_code(e) == 'ParameterAlreadyExists':
                return False
            raise
        return True

    def delete(self, key: str) -> bool:
        try:
            self.client.delete_parameter(Name=key)
        except ClientError as e:
            if _error_code(e) == 'ParameterNotFound':
                return False
            raise
        return True


class DynamoDBCoordinator(Coordinator):
    """
    Coordinator backed by a DynamoDB table.

    Each key is one item ``{RecordKey: S, RecordValue: S}``; the table's
    partition key must be named ``RecordKey``.
    """

    KEY_ATTRIBUTE = 'RecordKey'
    VALUE_ATTRIBUTE = 'RecordValue'

    def __init__(self, client, table_name: str):
        """
        Initialize DynamoDB coordinator.

        Args:
            client: boto3 DynamoDB client
            table_name: Table holding the deployment records
        """
        self.client = client
        self.table_name = table_name

    def _key(self, key: str) -> Dict[str, Any]:
        return {self.KEY_ATTRIBUTE: {'S': key}}

    def _item(self, key: str, value: str) -> Dict[str, Any]:
        return {
            self.KEY_ATTRIBUTE: {'S': key},
            self.VALUE_ATTRIBUTE: {'S': value},
        }

    def get(self, key: str) -> Optional[str]:
        response = self.client.get_item(
            TableName=self.table_name,
            Key=self._key(key),
            ConsistentRead=True,
        )
        item = response.get('Item')
        if not item:
            return None
        return item[self.VALUE_ATTRIBUTE]['S']

    def put(self, key: str, value: str) -> None:
        self.client.put_item(TableName=self.table_name, Item=self._item(key, value))

    def create(self, key: str, value: str) -> bool:
        try:
            self.client.put_item(
                TableName=self.table_name,
                Item=self._item(key, value),
                ConditionExpression='attribute_not_exists(#k)',
                ExpressionAttributeNames={'#k': self.KEY_ATTRIBUTE},
            )
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                return False
            raise
        return True

    def delete(self, key: str) -> bool:
        response = self.client.delete_item(
            TableName=self.table_name,
            Key=self._key(key),
            ReturnValues='ALL_OLD',
        )
        return bool(response.get('Attributes'))


class FileCoordinator(Coordinator):
    """
    File-based coordinator for development and testing.
    Stores deployment records in one JSON file on a local or shared filesystem.

    Every operation takes an exclusive flock and re-reads the file, so
    separate processes and threads (each flock() call opens its own file
    description) observe each other's writes.

    WARNING: This is NOT suitable for production use. Use SSM or DynamoDB.
    """

    def __init__(self, data_dir: str = '/tmp/rds-farm'):
        """
        Initialize file coordinator.

        Args:
            data_dir: Directory to store the state file
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.state_file = self.data_dir / 'deployment_state.json'
        self.lock_file = self.data_dir / 'deployment_state.lock'

    @contextmanager
    def _locked_state(self) -> Iterator[Dict[str, Any]]:
        """Yield the current state under an exclusive lock; persist it on exit."""
        with open(self.lock_file, 'a') as lock:
            fcntl.flock(lock.fileno(), fcntl.LOCK_EX)
            try:
                state = self._load_state()
                before = json.dumps(state, sort_keys=True)
                yield state
                if json.dumps(state, sort_keys=True) != before:
                    self._save_state(state)
            finally:
                fcntl.flock(lock.fileno(), fcntl.LOCK_UN)

    def _load_state(self) -> Dict[str, Any]:
        if not self.state_file.exists():
            return {}
        with open(self.state_file, 'r') as f:
            content = f.read()
        return json.loads(content) if content.strip() else {}

    def _save_state(self, state: Dict[str, Any]) -> None:
        tmp_file = self.state_file.with_suffix('.tmp')
        with open(tmp_file, 'w') as f:
            json.dump(state, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_file, self.state_file)

    def get(self, key: str) -> Optional[str]:
        with self._locked_state() as state:
            entry = state.get(key)
        return entry['value'] if entry else None

    def put(self, key: str, value: str) -> None:
        with self._locked_state() as state:
            state[key] = {'value': value, 'timestamp': time.time()}

    def create(self, key: str, value: str) -> bool:
        with self._locked_state() as state:
            if key in state:
                return False
            state[key] = {'value': value, 'timestamp': time.time()}
            return True

    def delete(self, key: str) -> bool:
        with self._locked_state() as state:
            return state.pop(key, None) is not None
