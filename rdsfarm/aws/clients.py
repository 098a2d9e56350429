"""
AWS client construction.

Clients are created lazily and cached per (service, region) so that warm
invocations reuse connections.
"""

import threading
from typing import Dict, Optional, Tuple

import boto3
from botocore.config import Config

from ..constants import Retries

_clients: Dict[Tuple[str, Optional[str]], object] = {}
_clients_lock = threading.Lock()

_MAX_ATTEMPTS = {
    'sns': Retries.AWS_MAX_ATTEMPTS_NOTIFY,
    'autoscaling': Retries.AWS_MAX_ATTEMPTS_NOTIFY,
}


def get_client(service: str, region_name: Optional[str] = None):
    """Return a cached boto3 client with standard retries."""
    key = (service, region_name)
    with _clients_lock:
        client = _clients.get(key)
        if client is None:
            client = boto3.client(
                service,
                region_name=region_name,
                config=Config(retries={
                    "max_attempts": _MAX_ATTEMPTS.get(service, Retries.AWS_MAX_ATTEMPTS),
                    "mode": "standard",
                }),
            )
            _clients[key] = client
        return client


def clear_clients() -> None:
    """Drop cached clients (tests, credential rotation)."""
    with _clients_lock:
        _clients.clear()
