"""
CLI Module for the RDS Farm Coordinator

Provides command-line tools for operators:
- farmctl: inspect, repair and exercise deployment records

Usage:
    python -m rdsfarm.cli.farmctl --deployment MyFarm show
"""

from .farmctl import main as farmctl_main

__all__ = [
    'farmctl_main',
]
