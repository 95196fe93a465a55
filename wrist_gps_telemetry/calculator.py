from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from .models import Position, PositionSample

DEFAULT_ACCURACY_FLOOR_M = 0.5


def weighted_average(
    samples: Sequence[PositionSample], floor_m: float = DEFAULT_ACCURACY_FLOOR_M
) -> Optional[Position]:
    """
    精度加权平均（逆方差加权）：
      w = 1 / max(acc, floor)^2
      lat = Σ(lat·w) / Σw, lon 同理
    精度越好的点权重越大；floor 防止过于乐观的精度独占结果。
    样本为空或权重和非正时返回 None
    """
    if len(samples) == 0:
        return None

    lats = np.array([s.latitude for s in samples], dtype=float)
    lons = np.array([s.longitude for s in samples], dtype=float)
    accs = np.array([s.horizontal_accuracy_m for s in samples], dtype=float)

    weights = 1.0 / np.maximum(accs, floor_m) ** 2
    total_weight = float(np.sum(weights))
    if not math.isfinite(total_weight) or total_weight <= 0:
        return None

    lat = float(np.sum(lats * weights) / total_weight)
    lon = float(np.sum(lons * weights) / total_weight)
    return Position(latitude=lat, longitude=lon)


def mean_accuracy(samples: Sequence[PositionSample]) -> float:
    """样本精度的算术平均（米）"""
    if len(samples) == 0:
        return 0.0
    return float(np.mean([s.horizontal_accuracy_m for s in samples]))


def haversine_distance(pos1: Position, pos2: Position) -> float:
    """两点球面距离（米）。"""
    R = 6_371_000.0
    phi1 = math.radians(pos1.latitude)
    phi2 = math.radians(pos2.latitude)
    dphi = math.radians(pos2.latitude - pos1.latitude)
    dlambda = math.radians(pos2.longitude - pos1.longitude)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R * c


def bearing(origin: Position, target: Position) -> float:
    """从 origin 指向 target 的方位角，0..360 度，正北为 0、正东为 90"""
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(target.latitude)
    dlon = math.radians(target.longitude - origin.longitude)

    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    deg = math.degrees(math.atan2(y, x))
    return deg + 360.0 if deg < 0 else deg


def spread(samples: Sequence[PositionSample], center: Position) -> float:
    """样本到 center 的最大距离（米）"""
    if len(samples) == 0:
        return 0.0
    return max(haversine_distance(s.position, center) for s in samples)
