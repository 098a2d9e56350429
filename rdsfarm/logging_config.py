"""
Logging Configuration for the RDS Farm Coordinator.

Provides centralized logging configuration with a verbose toggle,
per-component feature areas, and text or JSON-lines formatting (JSON lines
read well in CloudWatch Logs).

Usage:
    from rdsfarm.logging_config import setup_logging, get_logger

    # Setup once per invocation container
    setup_logging(verbose=True)

    # Get component logger
    logger = get_logger('rdsfarm.distributed.lease')
    logger.log_with_data(logging.INFO, "Lease acquired", {'token': token})
"""

import os
import sys
import json
import logging
import threading
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Optional, Dict, Any, Set, TextIO
from dataclasses import dataclass, field


# =============================================================================
# LOGGING LEVELS AND FEATURES
# =============================================================================

class FeatureArea(Enum):
    """Feature areas for targeted logging."""
    CORE = auto()           # Invocation entry point
    LEASE = auto()          # Conch acquisition and release
    MEMBERSHIP = auto()     # Membership store and view
    ELECTION = auto()       # Mutation protocol and primary election
    RECONCILE = auto()      # Reconciliation loop
    STATUS = auto()         # Command status aggregation
    AWS = auto()            # External AWS collaborators
    CLI = auto()            # Operator tooling


# Add custom log levels
logging.addLevelName(5, 'TRACE')
logging.addLevelName(15, 'VERBOSE')


@dataclass
class LoggingState:
    """Thread-safe logging configuration state."""
    verbose: bool = False
    trace: bool = False
    log_file: Optional[str] = None
    json_format: bool = False
    enabled_features: Set[FeatureArea] = field(default_factory=lambda: set(FeatureArea))
    initialized: bool = False
    _lock: threading.RLock = field(default_factory=threading.RLock)


_state = LoggingState()


# =============================================================================
# CUSTOM FORMATTER
# =============================================================================

class FarmFormatter(logging.Formatter):
    """Formatter producing aligned text lines or JSON lines."""

    def __init__(self, json_format: bool = False):
        self.json_format = json_format
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        if self.json_format:
            return self._format_json(record)
        return self._format_text(record)

    def _format_text(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        feature = self._extract_feature(record.name)
        feature_str = f"[{feature}]" if feature else ""

        msg = record.getMessage()

        extra_str = ""
        if hasattr(record, 'extra_data') and record.extra_data:
            extra_items = [f"{k}={v}" for k, v in record.extra_data.items()]
            extra_str = f" | {', '.join(extra_items)}"

        line = f"{timestamp} {record.levelname:8} {feature_str:20} {msg}{extra_str}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line

    def _format_json(self, record: logging.LogRecord) -> str:
        data = {
            'timestamp': datetime.now().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'feature': self._extract_feature(record.name),
        }

        if hasattr(record, 'extra_data') and record.extra_data:
            data['extra'] = record.extra_data

        if record.exc_info:
            data['exception'] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)

    def _extract_feature(self, logger_name: str) -> str:
        """Extract feature area from logger name."""
        parts = logger_name.split('.')
        if len(parts) >= 2:
            # rdsfarm.distributed.lease -> lease
            return parts[-1] if parts[0] == 'rdsfarm' else parts[0]
        return parts[0] if parts else 'core'


# =============================================================================
# CUSTOM LOGGER CLASS
# =============================================================================

class FarmLogger(logging.Logger):
    """Logger with extra levels and structured data support."""

    def __init__(self, name: str, level: int = logging.NOTSET):
        super().__init__(name, level)
        self._feature: FeatureArea = self._detect_feature(name)

    @property
    def feature(self) -> FeatureArea:
        return self._feature

    def _detect_feature(self, name: str) -> FeatureArea:
        """Detect feature area from logger name."""
        feature_map = {
            'lease': FeatureArea.LEASE,
            'membership': FeatureArea.MEMBERSHIP,
            'coordinators': FeatureArea.MEMBERSHIP,
            'election': FeatureArea.ELECTION,
            'reconciler': FeatureArea.RECONCILE,
            'events': FeatureArea.RECONCILE,
            'status': FeatureArea.STATUS,
            'aws': FeatureArea.AWS,
            'cli': FeatureArea.CLI,
        }

        name_lower = name.lower()
        for key, feature in feature_map.items():
            if key in name_lower:
                return feature
        return FeatureArea.CORE

    def trace(self, msg: str, *args, **kwargs):
        """Log at TRACE level (ultra-verbose)."""
        if self.isEnabledFor(5):
            self._log(5, msg, args, **kwargs)

    def verbose(self, msg: str, *args, **kwargs):
        """Log at VERBOSE level."""
        if self.isEnabledFor(15):
            self._log(15, msg, args, **kwargs)

    def log_with_data(self, level: int, msg: str, data: Dict[str, Any], **kwargs):
        """Log with structured extra data."""
        if not self.isEnabledFor(level):
            return
        extra = kwargs.get('extra', {})
        extra['extra_data'] = data
        kwargs['extra'] = extra
        self._log(level, msg, (), **kwargs)


# Set our custom logger class
logging.setLoggerClass(FarmLogger)


# =============================================================================
# SETUP AND CONFIGURATION
# =============================================================================

def setup_logging(
    verbose: bool = False,
    trace: bool = False,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
    features: Optional[Set[FeatureArea]] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Initialize the logging system.

    Args:
        verbose: Enable verbose logging (VERBOSE level)
        trace: Enable trace logging (TRACE level, implies verbose)
        log_file: Optional file path for log output
        console: Enable console output
        json_format: Use JSON format for logs
        features: Feature areas logged at the base level; others get WARNING
        stream: Console stream (defaults to stdout)
    """
    with _state._lock:
        _state.verbose = verbose or trace
        _state.trace = trace
        _state.log_file = log_file
        _state.json_format = json_format
        _state.enabled_features = set(features) if features is not None else set(FeatureArea)

        if trace:
            base_level = 5
        elif verbose:
            base_level = 15
        else:
            base_level = logging.INFO

        root = logging.getLogger()
        root.setLevel(base_level)

        # The Lambda runtime pre-installs a handler on the root logger
        for handler in root.handlers[:]:
            root.removeHandler(handler)

        if console:
            console_handler = logging.StreamHandler(stream or sys.stdout)
            console_handler.setLevel(base_level)
            console_handler.setFormatter(FarmFormatter(json_format=json_format))
            root.addHandler(console_handler)

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(base_level)
            file_handler.setFormatter(FarmFormatter(json_format=json_format))
            root.addHandler(file_handler)

        for existing in list(logging.Logger.manager.loggerDict.values()):
            if isinstance(existing, FarmLogger):
                _apply_feature_level(existing, base_level)

        # botocore is chatty at DEBUG
        logging.getLogger('botocore').setLevel(max(base_level, logging.INFO))
        logging.getLogger('boto3').setLevel(max(base_level, logging.INFO))

        _state.initialized = True


def _apply_feature_level(logger: FarmLogger, base_level: int) -> None:
    if logger.feature in _state.enabled_features:
        logger.setLevel(logging.NOTSET)
    else:
        logger.setLevel(max(base_level, logging.WARNING))


def get_logger(name: str) -> FarmLogger:
    """
    Get a feature-aware logger.

    Args:
        name: Logger name (e.g., 'rdsfarm.reconciler')

    Returns:
        FarmLogger instance
    """
    logger = logging.getLogger(name)
    if _state.initialized and isinstance(logger, FarmLogger):
        _apply_feature_level(logger, logging.getLogger().level)
    return logger


def get_logging_state() -> Dict[str, Any]:
    """Get current logging configuration state."""
    with _state._lock:
        return {
            'verbose': _state.verbose,
            'trace': _state.trace,
            'log_file': _state.log_file,
            'json_format': _state.json_format,
            'enabled_features': sorted(f.name for f in _state.enabled_features),
            'initialized': _state.initialized,
        }


# =============================================================================
# ENVIRONMENT VARIABLE CONFIGURATION
# =============================================================================

def _env_flag(name: str, environ: Dict[str, str]) -> bool:
    return environ.get(name, '').lower() in ('1', 'true', 'yes')


def configure_from_environment(environ: Optional[Dict[str, str]] = None) -> None:
    """Configure logging from FARM_* environment variables."""
    environ = os.environ if environ is None else environ

    enabled_features = set(FeatureArea)
    disabled = environ.get('FARM_LOG_DISABLE_FEATURES', '')
    if disabled:
        for feature_name in disabled.split(','):
            try:
                enabled_features.discard(FeatureArea[feature_name.strip().upper()])
            except KeyError:
                pass

    setup_logging(
        verbose=_env_flag('FARM_VERBOSE', environ),
        trace=_env_flag('FARM_TRACE', environ),
        log_file=environ.get('FARM_LOG_FILE'),
        json_format=_env_flag('FARM_LOG_JSON', environ),
        features=enabled_features,
    )


__all__ = [
    'FeatureArea',
    'setup_logging',
    'configure_from_environment',
    'get_logger',
    'get_logging_state',
    'FarmLogger',
    'FarmFormatter',
]
