"""Wrist GPS telemetry package.

This package provides:
- ConfigManager: YAML-based configuration management
- validator: accuracy/freshness gate for position samples
- CalibrationEngine: accuracy-weighted center/rig calibration
- LiveTelemetryShaper: filtered, rate-limited live fix delivery
- TelemetrySession: event-in/actions-out session state machine
- TelemetryService: MQTT host for the session
"""

from .config_manager import ConfigManager, SessionConfig
from .calibration import CalibrationEngine
from .shaper import LiveTelemetryShaper
from .session import TelemetrySession
from .service import TelemetryService

__all__ = [
    "ConfigManager",
    "SessionConfig",
    "CalibrationEngine",
    "LiveTelemetryShaper",
    "TelemetrySession",
    "TelemetryService",
]
