"""
Tests for the Status Aggregator.
"""

import os
import sys
from unittest.mock import MagicMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rdsfarm.status_aggregator import (
    ABANDONING,
    PRIORITY,
    WAITING,
    CommandStatus,
    StatusAggregator,
    StatusCounts,
)


def aggregate(statuses):
    commands = MagicMock()
    commands.list_invocation_statuses.return_value = list(statuses)
    return StatusAggregator(commands).aggregate("i-1")


class TestCommandStatus:
    """Tests for the status vocabulary."""

    def test_values(self):
        assert {s.value for s in CommandStatus} == {
            "Pending", "InProgress", "Delayed", "Success",
            "Cancelled", "TimedOut", "Failed", "Cancelling",
        }

    def test_waiting_and_abandoning_are_disjoint(self):
        assert not WAITING & ABANDONING
        assert CommandStatus.SUCCESS not in WAITING | ABANDONING
        assert set(PRIORITY) == WAITING | ABANDONING


class TestAggregate:
    """Tests for reducing invocation statuses to one overall status."""

    @pytest.mark.parametrize("statuses,expected", [
        (["Success", "Success"], CommandStatus.SUCCESS),
        (["Success", "InProgress"], CommandStatus.IN_PROGRESS),
        (["Success", "Failed", "InProgress"], CommandStatus.FAILED),
        (["Pending", "Delayed"], CommandStatus.PENDING),
        (["Delayed"], CommandStatus.DELAYED),
        (["TimedOut", "InProgress"], CommandStatus.TIMED_OUT),
        (["Cancelling", "TimedOut"], CommandStatus.CANCELLING),
        (["Cancelled", "Cancelling", "TimedOut"], CommandStatus.CANCELLED),
        (["Failed", "Cancelled"], CommandStatus.FAILED),
    ])
    def test_priority(self, statuses, expected):
        assert aggregate(statuses) is expected

    def test_no_invocations_is_success(self):
        assert aggregate([]) is CommandStatus.SUCCESS

    def test_unknown_status_is_indeterminate(self):
        """An unknown status blocks Success and matches no priority entry."""
        assert aggregate(["Success", "Paused"]) is None

    def test_unknown_status_does_not_mask_failure(self):
        assert aggregate(["Paused", "Failed"]) is CommandStatus.FAILED


class TestStatusCounts:
    """Tests for the per-status tally."""

    def test_counts(self):
        tally = StatusCounts.from_statuses(["Success", "Success", "Failed", "Weird"])
        assert tally[CommandStatus.SUCCESS] == 2
        assert tally[CommandStatus.FAILED] == 1
        assert tally[CommandStatus.PENDING] == 0
        assert tally.total == 4

    def test_aggregator_queries_instance(self):
        commands = MagicMock()
        commands.list_invocation_statuses.return_value = ["Success"]
        StatusAggregator(commands).aggregate("i-abc")
        commands.list_invocation_statuses.assert_called_once_with("i-abc")
