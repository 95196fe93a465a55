from __future__ import annotations

import itertools
import logging
import threading
from typing import Optional

from . import validator
from .calculator import mean_accuracy, spread, weighted_average
from .errors import AlreadyRunning
from .models import (
    CalibrationKind,
    CalibrationResult,
    CalibrationRun,
    CalibrationStatus,
    FailureReason,
    StartPolicy,
    Thresholds,
)

logger = logging.getLogger(__name__)


class EngineState:
    IDLE = "idle"
    RUNNING = "running"


class CalibrationEngine:
    """
    标定引擎：在限定时间内累积合格样本，按精度加权求平均点。

    两个触发源可以结束同一次标定：
      - ingest 时样本数达到 min_good_samples（提前结束）
      - 截止时间到达（deadline_elapsed）
    结束只通过 _finish 中对 (run_id, RUNNING) 的 compare-and-set 完成，
    先到者生效，后到者为 no-op。
    """

    def __init__(
        self,
        thresholds: Thresholds,
        duration_s: float = 120.0,
        min_good_samples: int = 10,
        accuracy_floor_m: float = 0.5,
        start_policy: StartPolicy = StartPolicy.REJECT,
    ):
        self.thresholds = thresholds
        self.duration_s = duration_s
        self.min_good_samples = min_good_samples
        self.accuracy_floor_m = accuracy_floor_m
        self.start_policy = start_policy

        self._lock = threading.Lock()
        self._run_ids = itertools.count(1)
        self.run: Optional[CalibrationRun] = None

    @property
    def state(self) -> str:
        if self.run is not None and self.run.is_running:
            return EngineState.RUNNING
        return EngineState.IDLE

    @property
    def is_running(self) -> bool:
        return self.state == EngineState.RUNNING

    # ---------- Lifecycle ----------
    def start(self, kind: CalibrationKind, now: float) -> CalibrationRun:
        active = self.run
        if active is not None and active.is_running:
            if self.start_policy is StartPolicy.REJECT:
                raise AlreadyRunning(active.run_id, active.kind.value)
            logger.info("重新开始标定，取消进行中的 #%s", active.run_id)
            self.cancel()

        run = CalibrationRun(
            run_id=next(self._run_ids),
            kind=kind,
            started_at=now,
            deadline_at=now + self.duration_s,
        )
        self.run = run
        logger.info("开始%s标定 #%s，时限 %.0fs", kind.value, run.run_id, self.duration_s)
        return run

    def cancel(self) -> bool:
        run = self.run
        if run is None or not self._transition(run.run_id, CalibrationStatus.CANCELLED):
            return False
        run.samples.clear()
        run.progress = 0.0
        logger.info("标定 #%s 已取消", run.run_id)
        return True

    # ---------- Sampling ----------
    def ingest(self, sample, now: float) -> Optional[CalibrationRun]:
        """
        处理一个样本；若本次调用使标定结束，返回该 run，否则返回 None
        """
        run = self.run
        if run is None or not run.is_running:
            return None

        reason = validator.check(sample, now, self.thresholds)
        if reason is not None:
            logger.debug("标定样本被拒绝(%s): acc=%.2f", reason.value, sample.horizontal_accuracy_m)
            return None

        run.samples.append(sample)
        elapsed = now - run.started_at
        run.progress = min(1.0, elapsed / self.duration_s) if self.duration_s > 0 else 1.0

        if run.sample_count >= self.min_good_samples:
            return self._finish(run.run_id)
        return None

    def deadline_elapsed(self, run_id: int, now: float) -> Optional[CalibrationRun]:
        run = self.run
        if run is None or run.run_id != run_id or not run.is_running:
            return None
        logger.info("标定 #%s 到时，已采集 %s 个样本", run_id, run.sample_count)
        return self._finish(run_id)

    # ---------- Completion ----------
    def _transition(self, run_id: int, new_status: CalibrationStatus) -> bool:
        # compare-and-set: 只有当前 run 且仍在 RUNNING 时才能离开 RUNNING
        with self._lock:
            run = self.run
            if run is None or run.run_id != run_id or not run.is_running:
                return False
            run.status = new_status
            return True

    def _finish(self, run_id: int) -> Optional[CalibrationRun]:
        run = self.run
        if run is None:
            return None
        samples = list(run.samples)

        if len(samples) < self.min_good_samples:
            if not self._transition(run_id, CalibrationStatus.FAILED):
                return None
            run.failure = FailureReason.INSUFFICIENT_SAMPLES
            logger.warning(
                "标定失败: 仅 %s 个合格样本 (<%s)", len(samples), self.min_good_samples
            )
            return run

        avg = weighted_average(samples, self.accuracy_floor_m)
        if avg is None:
            if not self._transition(run_id, CalibrationStatus.FAILED):
                return None
            run.failure = FailureReason.NO_AVERAGE
            logger.warning("标定失败: 无法计算平均点")
            return run

        if not self._transition(run_id, CalibrationStatus.COMPLETED):
            return None
        run.progress = 1.0
        run.result = CalibrationResult(
            kind=run.kind,
            latitude=avg.latitude,
            longitude=avg.longitude,
            sample_count=len(samples),
            average_accuracy_m=mean_accuracy(samples),
            spread_m=spread(samples, avg),
        )
        logger.info(
            "%s标定完成: (%.7f, %.7f)，样本 %s，平均精度 %.2fm，离散 %.2fm",
            run.kind.value,
            avg.latitude,
            avg.longitude,
            len(samples),
            run.result.average_accuracy_m,
            run.result.spread_m,
        )
        return run
