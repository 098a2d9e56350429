"""
Configuration Module for the RDS Farm Coordinator.

Provides the explicit per-invocation configuration:
- Required deployment settings with fail-fast validation
- Store backend selection
- Per-operation SSM document names
"""

from .settings import (
    CoordinatorConfig,
    ConfigurationError,
    Operation,
    StoreBackend,
    REQUIRED_SETTINGS,
)

__all__ = [
    'CoordinatorConfig',
    'ConfigurationError',
    'Operation',
    'StoreBackend',
    'REQUIRED_SETTINGS',
]
