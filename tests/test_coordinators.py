"""
Tests for the Coordinator backends.

SSM and DynamoDB backends are exercised against MagicMock boto3 clients;
the file backend against a temporary directory.
"""

import os
import sys
import threading
from unittest.mock import MagicMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rdsfarm.distributed.coordinators import (
    DynamoDBCoordinator,
    FileCoordinator,
    SSMParameterCoordinator,
)
from conftest import client_error


# ===========================================================================
# SSM Parameter Store Tests
# ===========================================================================

class TestSSMParameterCoordinator:
    """Tests for the Parameter Store backend."""

    def test_get(self):
        client = MagicMock()
        client.get_parameter.return_value = {'Parameter': {'Name': "Farm", 'Value': "[]"}}
        assert SSMParameterCoordinator(client).get("Farm") == "[]"
        client.get_parameter.assert_called_once_with(Name="Farm", WithDecryption=True)

    def test_get_missing(self):
        client = MagicMock()
        client.get_parameter.side_effect = client_error("ParameterNotFound", "GetParameter")
        assert SSMParameterCoordinator(client).get("Farm") is None

    def test_get_other_error_propagates(self):
        client = MagicMock()
        client.get_parameter.side_effect = client_error("AccessDeniedException", "GetParameter")
        with pytest.raises(Exception) as excinfo:
            SSMParameterCoordinator(client).get("Farm")
        assert "AccessDeniedException" in str(excinfo.value)

    def test_put_overwrites(self):
        client = MagicMock()
        SSMParameterCoordinator(client).put("Farm", "[]")
        client.put_parameter.assert_called_once_with(
            Name="Farm", Value="[]", Type='String', Overwrite=True,
        )

    def test_create(self):
        client = MagicMock()
        assert SSMParameterCoordinator(client).create("Farm-Conch", "tok,2024") is True
        assert client.put_parameter.call_args.kwargs['Overwrite'] is False

    def test_create_existing(self):
        client = MagicMock()
        client.put_parameter.side_effect = client_error("ParameterAlreadyExists", "PutParameter")
        assert SSMParameterCoordinator(client).create("Farm-Conch", "tok,2024") is False

    def test_delete(self):
        client = MagicMock()
        assert SSMParameterCoordinator(client).delete("Farm-Conch") is True
        client.delete_parameter.side_effect = client_error("ParameterNotFound", "DeleteParameter")
        assert SSMParameterCoordinator(client).delete("Farm-Conch") is False


# ===========================================================================
# DynamoDB Tests
# ===========================================================================

class TestDynamoDBCoordinator:
    """Tests for the DynamoDB backend."""

    def test_get_is_consistent(self):
        client = MagicMock()
        client.get_item.return_value = {
            'Item': {'RecordKey': {'S': "Farm"}, 'RecordValue': {'S': "[]"}},
        }
        assert DynamoDBCoordinator(client, "farm-table").get("Farm") == "[]"
        client.get_item.assert_called_once_with(
            TableName="farm-table",
            Key={'RecordKey': {'S': "Farm"}},
            ConsistentRead=True,
        )

    def test_get_missing(self):
        client = MagicMock()
        client.get_item.return_value = {}
        assert DynamoDBCoordinator(client, "farm-table").get("Farm") is None

    def test_put(self):
        client = MagicMock()
        DynamoDBCoordinator(client, "farm-table").put("Farm", "[]")
        client.put_item.assert_called_once_with(
            TableName="farm-table",
            Item={'RecordKey': {'S': "Farm"}, 'RecordValue': {'S': "[]"}},
        )

    def test_create_is_conditional(self):
        client = MagicMock()
        assert DynamoDBCoordinator(client, "farm-table").create("Farm-Conch", "v") is True
        kwargs = client.put_item.call_args.kwargs
        assert kwargs['ConditionExpression'] == 'attribute_not_exists(#k)'
        assert kwargs['ExpressionAttributeNames'] == {'#k': 'RecordKey'}

    def test_create_existing(self):
        client = MagicMock()
        client.put_item.side_effect = client_error("ConditionalCheckFailedException", "PutItem")
        assert DynamoDBCoordinator(client, "farm-table").create("Farm-Conch", "v") is False

    def test_delete(self):
        client = MagicMock()
        client.delete_item.return_value = {'Attributes': {'RecordKey': {'S': "Farm-Conch"}}}
        assert DynamoDBCoordinator(client, "farm-table").delete("Farm-Conch") is True
        client.delete_item.return_value = {}
        assert DynamoDBCoordinator(client, "farm-table").delete("Farm-Conch") is False


# ===========================================================================
# File Backend Tests
# ===========================================================================

class TestFileCoordinator:
    """Tests for the file backend."""

    def test_put_get(self, coordinator):
        assert coordinator.get("Farm") is None
        coordinator.put("Farm", "[]")
        assert coordinator.get("Farm") == "[]"

    def test_create_if_absent(self, coordinator):
        assert coordinator.create("Farm-Conch", "a") is True
        assert coordinator.create("Farm-Conch", "b") is False
        assert coordinator.get("Farm-Conch") == "a"

    def test_delete(self, coordinator):
        coordinator.put("Farm", "[]")
        assert coordinator.delete("Farm") is True
        assert coordinator.delete("Farm") is False

    def test_state_shared_between_instances(self, temp_dir):
        first = FileCoordinator(str(temp_dir / "shared"))
        second = FileCoordinator(str(temp_dir / "shared"))
        first.put("Farm", "[1]")
        assert second.get("Farm") == "[1]"

    @pytest.mark.concurrency
    def test_concurrent_create_has_one_winner(self, coordinator):
        results = []
        barrier = threading.Barrier(8)

        def contend(n):
            barrier.wait()
            results.append(coordinator.create("Farm-Conch", str(n)))

        threads = [threading.Thread(target=contend, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
