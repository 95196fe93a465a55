from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from . import validator
from .models import LiveTelemetryState, PositionSample, Thresholds

logger = logging.getLogger(__name__)


class LiveTelemetryShaper:
    """实时点上送整形：质量过滤 + 最小发送间隔（只丢弃，不排队）"""

    def __init__(self, thresholds: Thresholds, min_send_interval_s: float = 0.2):
        self.thresholds = thresholds
        self.min_send_interval_s = min_send_interval_s
        self.state = LiveTelemetryState()

    def offer(self, sample: PositionSample, now: float) -> Optional[Dict[str, Any]]:
        """返回需要上送的 payload；被过滤或限流时返回 None"""
        reason = validator.check(sample, now, self.thresholds)
        if reason is not None:
            self.state.rejected[reason] += 1
            logger.debug(
                "跳过实时点(%s): acc=%.2fm, age=%.2fs",
                reason.value,
                sample.horizontal_accuracy_m,
                abs(now - sample.timestamp),
            )
            return None

        last = self.state.last_sent_at
        if last is not None and now - last < self.min_send_interval_s:
            self.state.rate_limited_count += 1
            return None

        # 发送失败也占用本次时隙，不回滚
        self.state.last_sent_at = now
        self.state.sent_count += 1
        return {"locations": [sample.to_live_dict()]}
