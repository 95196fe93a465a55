from __future__ import annotations

import math
from typing import Optional

from .models import PositionSample, RejectReason, Thresholds


def check(sample: PositionSample, now: float, thresholds: Thresholds) -> Optional[RejectReason]:
    """
    按门限检查样本，返回第一个不满足的原因；通过返回 None
    0) 坐标或时间戳非有限值：无效定位
    1) 精度 <= 0（或 NaN）：无效点
    2) 精度 > max_accuracy_m：精度差
    3) |now - ts| > max_age_s：过期（时钟前后偏移同样处理）
    """
    if not all(math.isfinite(v) for v in (sample.latitude, sample.longitude, sample.timestamp)):
        return RejectReason.INVALID_FIX
    acc = sample.horizontal_accuracy_m
    if math.isnan(acc) or acc <= 0:
        return RejectReason.INVALID_ACCURACY
    if acc > thresholds.max_accuracy_m:
        return RejectReason.POOR_ACCURACY
    if abs(now - sample.timestamp) > thresholds.max_age_s:
        return RejectReason.STALE
    return None


def accept(sample: PositionSample, now: float, thresholds: Thresholds) -> bool:
    return check(sample, now, thresholds) is None
