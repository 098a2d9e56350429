"""
RDS Farm Coordinator

Coordinates the membership of a Remote Desktop Services farm (connection
brokers, gateways, web-access nodes) behind autoscaling groups: serializes
membership changes with a lease, elects a single primary broker, drives
instance configuration through SSM Run Command and resolves the autoscaling
lifecycle hooks.
"""

# Installs FarmLogger as the logger class before any module logger exists
from . import logging_config  # noqa: F401

__version__ = "1.0.0"
