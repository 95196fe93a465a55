from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

from .events import (
    DeadlineElapsed,
    SampleReceived,
    ScheduleDeadline,
    CancelDeadline,
    SendPayload,
    StartCalibration,
    StartTracking,
)
from .models import CalibrationKind, PositionSample
from .session import TelemetrySession

logger = logging.getLogger(__name__)


class ReplayRunner:
    """
    用模拟时钟驱动会话回放一条轨迹。
    每个点在 ts + latency_s 时刻到达；截止定时器按模拟时间触发。
    on_send 收到每个 SendPayload（默认只收集）。
    """

    def __init__(
        self,
        session: TelemetrySession,
        latency_s: float = 0.0,
        on_send: Optional[Callable[[SendPayload], None]] = None,
    ):
        self.session = session
        self.latency_s = latency_s
        self.on_send = on_send
        self.sent: List[SendPayload] = []
        self._deadlines: Dict[int, float] = {}

    def _apply(self, actions: Iterable[object], now: float) -> None:
        for action in actions:
            match action:
                case SendPayload():
                    self.sent.append(action)
                    if self.on_send is not None:
                        self.on_send(action)
                case ScheduleDeadline(run_id=run_id, delay_s=delay_s):
                    self._deadlines[run_id] = now + delay_s
                case CancelDeadline(run_id=run_id):
                    self._deadlines.pop(run_id, None)

    def _fire_due(self, now: float) -> None:
        for run_id, due in sorted(self._deadlines.items(), key=lambda kv: kv[1]):
            if due <= now:
                del self._deadlines[run_id]
                self._apply(self.session.handle(DeadlineElapsed(run_id, due)), due)

    def run(
        self, samples: List[PositionSample], calibrate: Optional[CalibrationKind] = None
    ) -> List[SendPayload]:
        if not samples:
            logger.warning("轨迹为空，无需回放")
            return self.sent

        start = samples[0].timestamp + self.latency_s
        self._apply(self.session.handle(StartTracking(now=start)), start)
        if calibrate is not None:
            self._apply(self.session.handle(StartCalibration(calibrate, start)), start)

        now = start
        for sample in samples:
            now = sample.timestamp + self.latency_s
            self._fire_due(now)
            self._apply(self.session.handle(SampleReceived((sample,), now)), now)

        # 轨迹结束后让剩余的截止时间到达
        if self._deadlines:
            self._fire_due(max(self._deadlines.values()))
        logger.info("回放结束: %s 个点，发出 %s 条消息", len(samples), len(self.sent))
        return self.sent
