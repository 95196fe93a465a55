from __future__ import annotations

import logging
import os
from typing import List, Optional

import pandas as pd

from .models import AuthorizationStatus, PositionSample

logger = logging.getLogger(__name__)

REPLAY_COLUMNS = ["lat", "lon", "acc", "ts"]


class MqttFixSource:
    """
    定位点来自 MQTT 定位主题；是否允许采集由配置 sensor.enabled 决定。
    start/stop 只控制是否把收到的定位交给会话。
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.updating = False

    def authorization_status(self) -> AuthorizationStatus:
        return AuthorizationStatus.AUTHORIZED if self.enabled else AuthorizationStatus.DENIED

    def request_authorization(self) -> AuthorizationStatus:
        return self.authorization_status()

    def start_updates(self) -> None:
        self.updating = True

    def stop_updates(self) -> None:
        self.updating = False


class CsvReplaySource:
    """回放记录的轨迹（pandas + CSV），列: lat, lon, acc, ts"""

    def __init__(self, csv_path: str):
        self.csv_path = csv_path
        self.updating = False
        self._df: Optional[pd.DataFrame] = None

    # ---- Utils ----
    @staticmethod
    def _normalize_df(df: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in ("lat", "lon", "acc") if c not in df.columns]
        if missing:
            raise KeyError(f"CSV 文件缺少列: {', '.join(missing)}")
        if "ts" not in df.columns:
            # 没有时间戳时按 1Hz 生成
            df["ts"] = range(len(df))
        for col in REPLAY_COLUMNS:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        # 坐标或时间无法解析的行丢弃；精度缺失按无效点（-1）处理
        df = df.dropna(subset=["lat", "lon", "ts"]).copy()
        df["acc"] = df["acc"].fillna(-1.0)
        df = df[REPLAY_COLUMNS].astype("float64")
        return df.sort_values("ts", kind="stable").reset_index(drop=True)

    # ---- Load ----
    def load(self) -> pd.DataFrame:
        df = pd.read_csv(self.csv_path)
        self._df = self._normalize_df(df)
        logger.info("已加载轨迹 %s，共 %s 个点", self.csv_path, len(self._df))
        return self._df

    def samples(self) -> List[PositionSample]:
        df = self._df if self._df is not None else self.load()
        return [
            PositionSample(
                latitude=float(row.lat),
                longitude=float(row.lon),
                horizontal_accuracy_m=float(row.acc),
                timestamp=float(row.ts),
            )
            for row in df.itertuples(index=False)
        ]

    # ---- FixSource ----
    def authorization_status(self) -> AuthorizationStatus:
        if os.path.exists(self.csv_path):
            return AuthorizationStatus.AUTHORIZED
        return AuthorizationStatus.DENIED

    def request_authorization(self) -> AuthorizationStatus:
        return self.authorization_status()

    def start_updates(self) -> None:
        self.updating = True

    def stop_updates(self) -> None:
        self.updating = False
