"""
Status Aggregator - reduces all command invocations of an instance to one
overall configuration status.

Failure-class outcomes dominate pending work so that a stuck instance is
abandoned rather than waited on forever, and Success needs every tracked
invocation to have succeeded.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class CommandStatus(Enum):
    """Status of one command invocation."""
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    DELAYED = "Delayed"
    SUCCESS = "Success"
    CANCELLED = "Cancelled"
    TIMED_OUT = "TimedOut"
    FAILED = "Failed"
    CANCELLING = "Cancelling"


# Most authoritative first; Success is decided separately (unanimity)
PRIORITY = (
    CommandStatus.FAILED,
    CommandStatus.CANCELLED,
    CommandStatus.CANCELLING,
    CommandStatus.TIMED_OUT,
    CommandStatus.IN_PROGRESS,
    CommandStatus.PENDING,
    CommandStatus.DELAYED,
)

WAITING = frozenset({CommandStatus.IN_PROGRESS, CommandStatus.PENDING, CommandStatus.DELAYED})
ABANDONING = frozenset({
    CommandStatus.FAILED,
    CommandStatus.CANCELLED,
    CommandStatus.CANCELLING,
    CommandStatus.TIMED_OUT,
})


@dataclass
class StatusCounts:
    """Invocation counts per status for one instance."""
    counts: Dict[CommandStatus, int] = field(
        default_factory=lambda: {status: 0 for status in CommandStatus}
    )
    total: int = 0

    @classmethod
    def from_statuses(cls, statuses: Iterable[str]) -> 'StatusCounts':
        tally = cls()
        for raw in statuses:
            tally.total += 1
            try:
                tally.counts[CommandStatus(raw)] += 1
            except ValueError:
                logger.warning(f"Ignoring unknown command invocation status {raw!r}")
        return tally

    def __getitem__(self, status: CommandStatus) -> int:
        return self.counts[status]

    def resolve(self) -> Optional[CommandStatus]:
        """Overall status by fixed priority; None when indeterminate."""
        if self.counts[CommandStatus.SUCCESS] == self.total:
            return CommandStatus.SUCCESS
        for status in PRIORITY:
            if self.counts[status] > 0:
                return status
        return None


class StatusAggregator:
    """Aggregates the command invocations recorded against an instance."""

    def __init__(self, commands):
        """
        Args:
            commands: Object with list_invocation_statuses(instance_id)
                (normally a CommandRunner)
        """
        self.commands = commands

    def counts(self, instance_id: str) -> StatusCounts:
        return StatusCounts.from_statuses(self.commands.list_invocation_statuses(instance_id))

    def aggregate(self, instance_id: str) -> Optional[CommandStatus]:
        tally = self.counts(instance_id)
        overall = tally.resolve()
        seen = {s.value: n for s, n in tally.counts.items() if n}
        logger.debug(
            f"Command status for {instance_id}: {seen} total={tally.total} -> "
            f"{overall.value if overall else 'indeterminate'}"
        )
        return overall
