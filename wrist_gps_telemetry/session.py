from __future__ import annotations

import copy
import logging
import threading
from typing import List, Optional

from .calculator import bearing, haversine_distance
from .calibration import CalibrationEngine
from .config_manager import SessionConfig
from .errors import AlreadyRunning
from .events import (
    AuthorizationChanged,
    CancelCalibration,
    CancelDeadline,
    Channel,
    DeadlineElapsed,
    RequestAuthorization,
    RequestSubjectLock,
    SampleReceived,
    ScheduleDeadline,
    SendPayload,
    SensorFailed,
    StartAcquisition,
    StartCalibration,
    StartKeepAlive,
    StartTracking,
    StopAcquisition,
    StopKeepAlive,
    StopTracking,
    TransportFailed,
    TransportSent,
)
from .models import (
    AccuracyGrade,
    AuthorizationStatus,
    CalibrationKind,
    CalibrationRun,
    CalibrationStatus,
    FailureReason,
    Position,
    PositionSample,
    SessionState,
    StartPolicy,
)
from .shaper import LiveTelemetryShaper

logger = logging.getLogger(__name__)

STATS_WINDOW_S = 1.0

_FAILURE_MESSAGES = {
    FailureReason.INSUFFICIENT_SAMPLES: "Failed (too few samples)",
    FailureReason.NO_AVERAGE: "Failed (no average)",
}


class TelemetrySession:
    """
    单会话状态机：所有可变状态（标定 run、实时上送状态、界面快照）都归它所有。

    handle(event) 在 self.lock 内串行处理一个事件，返回需要执行的动作列表，
    本身不做任何 I/O。
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        authorization: AuthorizationStatus = AuthorizationStatus.NOT_DETERMINED,
    ):
        self.config = config or SessionConfig()
        self.lock = threading.Lock()

        self.engine = CalibrationEngine(
            self.config.calibration_thresholds,
            duration_s=self.config.calibration_duration_s,
            min_good_samples=self.config.min_good_samples,
            accuracy_floor_m=self.config.accuracy_floor_m,
            start_policy=self.config.start_policy,
        )
        self.shaper = LiveTelemetryShaper(
            self.config.live_thresholds, self.config.min_send_interval_s
        )

        self._state = SessionState(authorization=authorization)
        self._tracking_requested = False
        self._authorization_requested = False
        self._acquiring = False
        self._rig_position: Optional[Position] = None

        # 更新频率统计
        self._update_count = 0
        self._stats_reset_at: Optional[float] = None

    # ---------- Public ----------
    def handle(self, event) -> List[object]:
        with self.lock:
            match event:
                case SampleReceived(samples=samples, now=now):
                    return self._on_samples(samples, now)
                case DeadlineElapsed(run_id=run_id, now=now):
                    return self._on_deadline(run_id, now)
                case StartCalibration(kind=kind, now=now):
                    return self._start_calibration(kind, now)
                case CancelCalibration():
                    return self._cancel_calibration()
                case StartTracking(now=now):
                    return self._start_tracking(now)
                case StopTracking():
                    return self._stop_tracking()
                case AuthorizationChanged(status=status):
                    return self._on_authorization(status)
                case TransportFailed(channel=channel, reason=reason):
                    return self._on_transport_failed(channel, reason)
                case TransportSent():
                    self._state.transport_status = None
                    return []
                case SensorFailed(message=message):
                    logger.error("定位错误: %s", message)
                    self._state.sensor_status = message
                    return []
                case RequestSubjectLock():
                    return [SendPayload(Channel.CONTROL, {"lockSubject": True})]
                case _:
                    raise TypeError(f"未知事件类型: {type(event).__name__}")

    def snapshot(self) -> SessionState:
        with self.lock:
            return copy.deepcopy(self._state)

    # ---------- Tracking / authorization ----------
    def _start_tracking(self, now: Optional[float]) -> List[object]:
        self._tracking_requested = True
        if self._state.is_tracking:
            return []

        status = self._state.authorization
        if status is AuthorizationStatus.DENIED:
            logger.warning("定位权限被拒绝，无法开始跟踪")
            self._state.sensor_status = "location authorization denied"
            return []
        if status is AuthorizationStatus.NOT_DETERMINED:
            self._state.sensor_status = "waiting for authorization"
            return self._request_authorization_once()

        self._state.is_tracking = True
        self._state.sensor_status = None
        self._update_count = 0
        self._stats_reset_at = now
        actions: List[object] = [StartKeepAlive()]
        actions.extend(self._ensure_acquiring())
        logger.info("开始跟踪")
        return actions

    def _stop_tracking(self) -> List[object]:
        self._tracking_requested = False
        if not self._state.is_tracking:
            return []
        self._state.is_tracking = False
        actions: List[object] = [StopKeepAlive()]
        if not self.engine.is_running:
            actions.extend(self._release_acquisition())
        logger.info("停止跟踪")
        return actions

    def _on_authorization(self, status: AuthorizationStatus) -> List[object]:
        self._state.authorization = status
        if status is AuthorizationStatus.DENIED:
            logger.warning("定位权限被拒绝或受限")
            self._state.sensor_status = "location authorization denied"
            return []
        if status is AuthorizationStatus.AUTHORIZED:
            self._state.sensor_status = None
            actions: List[object] = []
            if self._tracking_requested and not self._state.is_tracking:
                actions.extend(self._start_tracking(None))
            elif self.engine.is_running:
                actions.extend(self._ensure_acquiring())
            return actions
        return []

    def _request_authorization_once(self) -> List[object]:
        # 只请求一次，避免反复弹出授权
        if self._authorization_requested:
            return []
        self._authorization_requested = True
        return [RequestAuthorization()]

    def _ensure_acquiring(self) -> List[object]:
        if self._acquiring:
            return []
        if self._state.authorization is not AuthorizationStatus.AUTHORIZED:
            return self._request_authorization_once()
        self._acquiring = True
        return [StartAcquisition()]

    def _release_acquisition(self) -> List[object]:
        if not self._acquiring:
            return []
        self._acquiring = False
        return [StopAcquisition()]

    # ---------- Samples ----------
    def _on_samples(self, samples, now: float) -> List[object]:
        if not samples:
            return []
        latest: PositionSample = samples[-1]
        self._update_stats(now)
        self._state.current_sample = latest
        self._state.accuracy_m = latest.horizontal_accuracy_m
        self._state.accuracy_grade = AccuracyGrade.from_accuracy(latest.horizontal_accuracy_m)

        actions: List[object] = []
        run = self.engine.run
        if run is not None and run.is_running:
            for sample in samples:
                finished = self.engine.ingest(sample, now)
                if finished is not None:
                    actions.extend(self._on_run_finished(finished, from_deadline=False))
                    break
            else:
                self._state.calibration_progress = run.progress
                self._state.calibration_sample_count = run.sample_count

        # 实时点只取最新一个
        payload = self.shaper.offer(latest, now)
        if payload is not None:
            actions.append(SendPayload(Channel.LIVE, payload))
        live = self.shaper.state
        self._state.live_sent_count = live.sent_count
        self._state.live_rejected = {r.value: n for r, n in live.rejected.items()}
        return actions

    def _update_stats(self, now: float) -> None:
        if self._stats_reset_at is None:
            self._stats_reset_at = now
        self._update_count += 1
        elapsed = now - self._stats_reset_at
        if elapsed > STATS_WINDOW_S:
            self._state.update_rate_hz = self._update_count / elapsed
            self._update_count = 0
            self._stats_reset_at = now

    # ---------- Calibration ----------
    def _start_calibration(self, kind: CalibrationKind, now: float) -> List[object]:
        previous = self.engine.run if self.engine.is_running else None
        try:
            run = self.engine.start(kind, now)
        except AlreadyRunning as e:
            logger.warning("忽略标定请求: %s", e)
            self._state.last_calibration_result = "Calibration already running"
            return []

        actions: List[object] = []
        if previous is not None and self.config.start_policy is StartPolicy.RESTART:
            actions.append(CancelDeadline(previous.run_id))

        self._state.is_calibrating = True
        self._state.calibration_kind = kind
        self._state.calibration_progress = 0.0
        self._state.calibration_sample_count = 0
        self._state.last_calibration_status = CalibrationStatus.RUNNING
        self._state.last_calibration_result = None
        self._state.last_calibration_spread_m = None

        actions.append(ScheduleDeadline(run.run_id, self.engine.duration_s))
        actions.extend(self._ensure_acquiring())
        return actions

    def _cancel_calibration(self) -> List[object]:
        run = self.engine.run
        if run is None or not self.engine.cancel():
            return []
        self._state.is_calibrating = False
        self._state.calibration_progress = 0.0
        self._state.calibration_sample_count = 0
        self._state.last_calibration_status = CalibrationStatus.CANCELLED
        actions: List[object] = [CancelDeadline(run.run_id)]
        if not self._state.is_tracking:
            actions.extend(self._release_acquisition())
        return actions

    def _on_deadline(self, run_id: int, now: float) -> List[object]:
        finished = self.engine.deadline_elapsed(run_id, now)
        if finished is None:
            return []
        return self._on_run_finished(finished, from_deadline=True)

    def _on_run_finished(self, run: CalibrationRun, from_deadline: bool) -> List[object]:
        self._state.is_calibrating = False
        self._state.calibration_progress = 1.0
        self._state.calibration_sample_count = run.sample_count
        self._state.last_calibration_status = run.status

        actions: List[object] = []
        if not from_deadline:
            actions.append(CancelDeadline(run.run_id))

        result = run.result
        if result is not None:
            label = "Center" if result.kind is CalibrationKind.CENTER else "Rig"
            message = f"{label} sent"
            if result.kind is CalibrationKind.RIG:
                self._rig_position = result.position
            elif self._rig_position is not None:
                message = self._check_center_against_rig(self._rig_position, result.position, message)
            self._state.last_calibration_result = message
            self._state.last_calibration_spread_m = result.spread_m
            channel = Channel.CENTER if result.kind is CalibrationKind.CENTER else Channel.RIG
            actions.append(SendPayload(channel, result.to_payload()))
        elif run.failure is not None:
            self._state.last_calibration_result = _FAILURE_MESSAGES[run.failure]

        if not self._state.is_tracking:
            actions.extend(self._release_acquisition())
        return actions

    def _check_center_against_rig(self, rig: Position, center: Position, message: str) -> str:
        distance = haversine_distance(rig, center)
        heading = bearing(rig, center)
        logger.info("中心点距机位 %.1fm，方位 %.1f°", distance, heading)
        if distance < self.config.min_center_distance_from_rig_m:
            logger.warning(
                "中心点距机位过近: %.1fm < %.1fm",
                distance,
                self.config.min_center_distance_from_rig_m,
            )
            return f"{message} (only {distance:.1f}m from rig)"
        return message

    # ---------- Transport ----------
    def _on_transport_failed(self, channel: Channel, reason: str) -> List[object]:
        logger.warning("发送失败(%s): %s", channel.value, reason)
        self._state.transport_status = reason
        if channel is Channel.CENTER:
            self._state.last_calibration_result = f"Center {reason}"
        elif channel is Channel.RIG:
            self._state.last_calibration_result = f"Rig {reason}"
        return []
