from __future__ import annotations

import json
import math
import time
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List
from enum import Enum


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Thresholds:
    """单个上下文（标定/实时）的样本门限"""

    max_accuracy_m: float
    max_age_s: float


@dataclass(frozen=True)
class PositionSample:
    """
    一次 GPS 定位（fix）
    horizontal_accuracy_m 为负表示传感器认为该点无效
    timestamp 为 epoch 秒
    """

    latitude: float
    longitude: float
    horizontal_accuracy_m: float
    timestamp: float

    @property
    def position(self) -> Position:
        return Position(latitude=self.latitude, longitude=self.longitude)

    def to_live_dict(self) -> Dict[str, float]:
        # 精简字段，降低链路开销
        return {
            "lat": self.latitude,
            "lon": self.longitude,
            "ts": self.timestamp,
            "acc": self.horizontal_accuracy_m,
        }

    @classmethod
    def parse(cls, data_str: str, default_ts: Optional[float] = None) -> Optional["PositionSample"]:
        """
        解析一条定位消息，支持两种格式：
          - JSON: {"lat": .., "lon": .., "acc": .., "ts": ..}
          - CSV:  lat,lon,acc[,ts]
        缺少 ts 时使用 default_ts（默认当前时间）
        无法解析、或坐标/时间戳不是有限值时返回 None
        """
        text = (data_str or "").strip()
        if not text:
            return None
        fallback_ts = time.time() if default_ts is None else default_ts

        if text.startswith("{"):
            try:
                obj = json.loads(text)
                lat, lon, acc = float(obj["lat"]), float(obj["lon"]), float(obj["acc"])
                ts = float(obj.get("ts", fallback_ts))
            except (ValueError, KeyError, TypeError):
                return None
        else:
            fields = [f.strip() for f in text.split(",")]
            if len(fields) not in (3, 4):
                return None
            try:
                lat, lon, acc = (float(f) for f in fields[:3])
                ts = float(fields[3]) if len(fields) == 4 else fallback_ts
            except ValueError:
                return None

        # 精度为 NaN 交给校验器按无效点统计；坐标与时间必须可用
        if not all(math.isfinite(v) for v in (lat, lon, ts)):
            return None
        return cls(latitude=lat, longitude=lon, horizontal_accuracy_m=acc, timestamp=ts)


class CalibrationKind(Enum):
    CENTER = "center"
    RIG = "rig"

    @property
    def payload_key(self) -> str:
        return f"{self.value}Calibration"


class CalibrationStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailureReason(Enum):
    INSUFFICIENT_SAMPLES = "insufficient_samples"
    NO_AVERAGE = "no_average"


class RejectReason(Enum):
    INVALID_FIX = "invalid_fix"
    INVALID_ACCURACY = "invalid_accuracy"
    POOR_ACCURACY = "poor_accuracy"
    STALE = "stale"


class StartPolicy(Enum):
    """已有标定在运行时再次 start 的处理方式"""

    REJECT = "reject"
    RESTART = "restart"


class AuthorizationStatus(Enum):
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"


class AccuracyGrade(Enum):
    UNKNOWN = "unknown"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    @classmethod
    def from_accuracy(cls, accuracy_m: float) -> "AccuracyGrade":
        if accuracy_m < 0 or math.isnan(accuracy_m):
            return cls.UNKNOWN
        if accuracy_m <= 5:
            return cls.GOOD
        if accuracy_m <= 10:
            return cls.FAIR
        return cls.POOR


@dataclass(frozen=True)
class CalibrationResult:
    """
    标定结果（一次成功的标定只产生一个）
    spread_m: 已接受样本到平均点的最大距离（米），写入日志与会话快照，不上送
    """

    kind: CalibrationKind
    latitude: float
    longitude: float
    sample_count: int
    average_accuracy_m: float
    spread_m: float = 0.0

    @property
    def position(self) -> Position:
        return Position(latitude=self.latitude, longitude=self.longitude)

    def to_payload(self) -> Dict[str, Any]:
        return {
            self.kind.payload_key: {
                "lat": self.latitude,
                "lon": self.longitude,
                "samples": self.sample_count,
                "avgAccuracy": self.average_accuracy_m,
            }
        }


@dataclass
class CalibrationRun:
    """一次标定过程"""

    run_id: int
    kind: CalibrationKind
    started_at: float
    deadline_at: float
    samples: List[PositionSample] = field(default_factory=list)
    status: CalibrationStatus = CalibrationStatus.RUNNING
    progress: float = 0.0
    result: Optional[CalibrationResult] = None
    failure: Optional[FailureReason] = None

    @property
    def sample_count(self) -> int:
        return len(self.samples)

    @property
    def is_running(self) -> bool:
        return self.status is CalibrationStatus.RUNNING


@dataclass
class LiveTelemetryState:
    """实时上送状态：只由 LiveTelemetryShaper 读写"""

    last_sent_at: Optional[float] = None
    sent_count: int = 0
    rate_limited_count: int = 0
    rejected: Dict[RejectReason, int] = field(
        default_factory=lambda: {reason: 0 for reason in RejectReason}
    )


@dataclass
class SessionState:
    """
    会话快照，供界面层轮询
    """

    is_tracking: bool = False
    authorization: AuthorizationStatus = AuthorizationStatus.NOT_DETERMINED
    current_sample: Optional[PositionSample] = None
    accuracy_m: float = -1.0
    accuracy_grade: AccuracyGrade = AccuracyGrade.UNKNOWN
    update_rate_hz: float = 0.0

    is_calibrating: bool = False
    calibration_kind: Optional[CalibrationKind] = None
    calibration_progress: float = 0.0
    calibration_sample_count: int = 0
    last_calibration_status: Optional[CalibrationStatus] = None
    last_calibration_result: Optional[str] = None
    last_calibration_spread_m: Optional[float] = None

    live_sent_count: int = 0
    live_rejected: Dict[str, int] = field(default_factory=dict)
    transport_status: Optional[str] = None
    sensor_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for key, value in d.items():
            if isinstance(value, Enum):
                d[key] = value.value
        return {k: v for k, v in d.items() if v is not None}
