"""
Tests for the invocation entry point.

The handler runs against the file backend with mocked AWS clients.
"""

import os
import sys
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rdsfarm.config.settings import ConfigurationError, StoreBackend
from rdsfarm.distributed.coordinators import (
    DynamoDBCoordinator,
    FileCoordinator,
    SSMParameterCoordinator,
)
from rdsfarm.distributed.membership import MembershipStore, MemberStatus
from rdsfarm.handler import build_coordinator, lambda_handler
from conftest import DEPLOYMENT, hook_payload, sns_event


@pytest.fixture
def aws_clients():
    """One MagicMock per AWS service, patched into the handler."""
    clients = {}

    def factory(service, region_name=None):
        if service not in clients:
            client = MagicMock(name=service)
            if service == 'ec2':
                client.describe_instance_status.return_value = {
                    'InstanceStatuses': [{'InstanceState': {'Name': 'running'}}],
                }
            if service == 'ssm':
                client.send_command.return_value = {'Command': {'CommandId': "cmd-1"}}
            clients[service] = client
        return clients[service]

    with patch('rdsfarm.handler.get_client', side_effect=factory):
        yield clients


@pytest.fixture
def env(environment, monkeypatch):
    for name, value in environment.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setenv('FARM_RESCHEDULE_DELAY', "0")
    return environment


class TestLambdaHandler:
    """Tests for lambda_handler."""

    def test_missing_configuration_is_fatal(self, monkeypatch, aws_clients):
        for name in ('TABLE_NAME', 'SNS_TOPIC_ARN', 'RDS_DEPLOYMENT_NAME'):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(ConfigurationError):
            lambda_handler(sns_event())
        assert aws_clients == {}

    def test_event_without_records(self, env, aws_clients):
        result = lambda_handler({'source': "aws.events"})
        assert result['outcomes'] == []
        assert "Records" in result['message']

    def test_broker_launch(self, env, aws_clients):
        result = lambda_handler(sns_event(hook_payload("i-b1", "RDS-Connection-Broker-LAUNCHING")))

        assert result == {'message': "1 messages processed.", 'outcomes': ["configuring"]}
        assert aws_clients['ssm'].send_command.call_args.kwargs['DocumentName'] == "RDS-InitPrimaryBroker"
        aws_clients['sns'].publish.assert_called_once()

        store = MembershipStore(FileCoordinator(env['TABLE_NAME']), DEPLOYMENT)
        primary = store.get_view().primary_broker
        assert primary.instance_id == "i-b1"
        assert primary.status is MemberStatus.CONFIGURING

    def test_multiple_records(self, env, aws_clients):
        result = lambda_handler(sns_event(
            {'Event': "autoscaling:TEST_NOTIFICATION"},
            hook_payload("i-g1", "RDS-Gateway-LAUNCHING"),
        ))

        assert result['message'] == "2 messages processed."
        assert result['outcomes'] == ["skipped", "rescheduled"]


class TestBuildCoordinator:
    """Tests for backend selection."""

    def test_file_backend(self, config):
        assert isinstance(build_coordinator(config), FileCoordinator)

    def test_dynamodb_backend(self, config, aws_clients):
        config = replace(config, store_backend=StoreBackend.DYNAMODB)
        coordinator = build_coordinator(config)
        assert isinstance(coordinator, DynamoDBCoordinator)
        assert coordinator.table_name == config.table_name

    def test_ssm_backend(self, config, aws_clients):
        config = replace(config, store_backend=StoreBackend.SSM)
        assert isinstance(build_coordinator(config), SSMParameterCoordinator)
