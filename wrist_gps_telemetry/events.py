"""
会话的输入事件与输出动作。

TelemetrySession.handle(event) 只接收下面的事件，返回动作列表；
真正的副作用（MQTT 发送、定时器、传感器启停）由 TelemetryService 执行。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple

from .models import AuthorizationStatus, CalibrationKind, PositionSample


# ---------- Events ----------
@dataclass(frozen=True)
class StartTracking:
    now: float


@dataclass(frozen=True)
class StopTracking:
    now: float


@dataclass(frozen=True)
class AuthorizationChanged:
    status: AuthorizationStatus


@dataclass(frozen=True)
class SampleReceived:
    """一批定位（按到达顺序），最后一个为最新点"""

    samples: Tuple[PositionSample, ...]
    now: float


@dataclass(frozen=True)
class StartCalibration:
    kind: CalibrationKind
    now: float


@dataclass(frozen=True)
class CancelCalibration:
    now: float


@dataclass(frozen=True)
class DeadlineElapsed:
    run_id: int
    now: float


@dataclass(frozen=True)
class SensorFailed:
    message: str


class Channel(Enum):
    LIVE = "live"
    CENTER = "center"
    RIG = "rig"
    CONTROL = "control"


@dataclass(frozen=True)
class TransportFailed:
    channel: Channel
    reason: str


@dataclass(frozen=True)
class TransportSent:
    channel: Channel


@dataclass(frozen=True)
class RequestSubjectLock:
    pass


# ---------- Actions ----------
@dataclass(frozen=True)
class SendPayload:
    channel: Channel
    payload: Dict[str, Any]


@dataclass(frozen=True)
class ScheduleDeadline:
    run_id: int
    delay_s: float


@dataclass(frozen=True)
class CancelDeadline:
    run_id: int


@dataclass(frozen=True)
class RequestAuthorization:
    pass


@dataclass(frozen=True)
class StartAcquisition:
    pass


@dataclass(frozen=True)
class StopAcquisition:
    pass


@dataclass(frozen=True)
class StartKeepAlive:
    pass


@dataclass(frozen=True)
class StopKeepAlive:
    pass
