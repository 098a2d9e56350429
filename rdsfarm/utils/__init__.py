"""
Utility modules for the RDS Farm Coordinator.

Provides common utilities including:
- Error categorization and reporting
- Safe execution of fire-and-forget external calls
"""

from .error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ErrorAggregator,
    get_error_aggregator,
    handle_error,
    safe_execute,
    determine_severity,
    log_external_error,
)

__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'get_error_aggregator',
    'handle_error',
    'safe_execute',
    'determine_severity',
    'log_external_error',
]
