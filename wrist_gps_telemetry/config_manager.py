from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass
from typing import Callable, Any

import yaml

from .models import StartPolicy, Thresholds

logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except Exception:
            return v
    return default


def _as_bool(v: str) -> bool:
    return v.lower() in ("1", "true", "yes")


DEFAULT_CONFIG_PATH = _env_or_default(
    "WRIST_GPS_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("WGT_MQTT_IP", "localhost"),
                "port": _env_or_default("WGT_MQTT_PORT", 1883, int),
                "fix_topic": _env_or_default("WGT_MQTT_FIX_TOPIC", "/watch/{deviceId}/fix"),
                "command_topic": _env_or_default("WGT_MQTT_COMMAND_TOPIC", "/watch/{deviceId}/command"),
                "uplink_topic": _env_or_default("WGT_MQTT_UPLINK_TOPIC", "/rig/{deviceId}/telemetry"),
                "status_topic": _env_or_default("WGT_MQTT_STATUS_TOPIC", "/watch/{deviceId}/status"),
                "device_id": _env_or_default("WGT_DEVICE_ID", "watch-1"),
            },
            "calibration": {
                "duration_s": _env_or_default("WGT_CAL_DURATION", 120.0, float),
                "max_accuracy_m": _env_or_default("WGT_CAL_MAX_ACCURACY", 3.0, float),
                "max_age_s": _env_or_default("WGT_CAL_MAX_AGE", 2.0, float),
                "min_good_samples": _env_or_default("WGT_CAL_MIN_SAMPLES", 10, int),
                "accuracy_floor_m": _env_or_default("WGT_CAL_ACCURACY_FLOOR", 0.5, float),
                "start_policy": _env_or_default("WGT_CAL_START_POLICY", StartPolicy.REJECT.value),
                "min_center_distance_from_rig_m": _env_or_default(
                    "WGT_CAL_MIN_CENTER_DISTANCE", 15.0, float
                ),
            },
            "live": {
                "max_accuracy_m": _env_or_default("WGT_LIVE_MAX_ACCURACY", 3.0, float),
                "max_age_s": _env_or_default("WGT_LIVE_MAX_AGE", 2.0, float),
                "min_send_interval_s": _env_or_default("WGT_LIVE_MIN_SEND_INTERVAL", 0.2, float),
            },
            "sensor": {
                "enabled": _env_or_default("WGT_SENSOR_ENABLED", True, _as_bool),
            },
            "paths": {
                "replay_csv": _env_or_default(
                    "WGT_PATH_REPLAY_CSV", os.path.join(".", "tracks", "track.csv")
                ),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                self._merge_default_config()
            else:
                self.config = copy.deepcopy(self.default_config)
                self.save_config()
        except yaml.YAMLError as e:
            # 配置文件损坏时回退到默认配置
            logger.error("配置文件解析失败，使用默认配置: %s", e)
            self.config = copy.deepcopy(self.default_config)
            self.save_config()

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            logger.warning("保存配置失败 %s: %s", self.config_file, e)

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_calibration_config(self):
        return self.config["calibration"]

    def get_live_config(self):
        return self.config["live"]

    def get_sensor_config(self):
        return self.config.get("sensor", {"enabled": True})

    def get_paths(self):
        return self.config.get("paths", {})

    def get_replay_csv_path(self):
        return self.get_paths()["replay_csv"]

    def set_mqtt_config(self, ip, port, fix_topic=None, command_topic=None, uplink_topic=None):
        self.config["mqtt"]["ip"] = ip
        self.config["mqtt"]["port"] = port
        if fix_topic is not None:
            self.config["mqtt"]["fix_topic"] = fix_topic
        if command_topic is not None:
            self.config["mqtt"]["command_topic"] = command_topic
        if uplink_topic is not None:
            self.config["mqtt"]["uplink_topic"] = uplink_topic
        self.save_config()

    def set_calibration_config(self, **values):
        self.config["calibration"].update(values)
        self.save_config()

    def set_live_config(self, **values):
        self.config["live"].update(values)
        self.save_config()


@dataclass(frozen=True)
class SessionConfig:
    """会话使用的强类型配置"""

    calibration_thresholds: Thresholds = Thresholds(max_accuracy_m=3.0, max_age_s=2.0)
    live_thresholds: Thresholds = Thresholds(max_accuracy_m=3.0, max_age_s=2.0)
    calibration_duration_s: float = 120.0
    min_good_samples: int = 10
    accuracy_floor_m: float = 0.5
    start_policy: StartPolicy = StartPolicy.REJECT
    min_center_distance_from_rig_m: float = 15.0
    min_send_interval_s: float = 0.2

    @classmethod
    def from_config_manager(cls, config_manager: ConfigManager) -> "SessionConfig":
        cal = config_manager.get_calibration_config()
        live = config_manager.get_live_config()
        return cls(
            calibration_thresholds=Thresholds(
                max_accuracy_m=float(cal["max_accuracy_m"]),
                max_age_s=float(cal["max_age_s"]),
            ),
            live_thresholds=Thresholds(
                max_accuracy_m=float(live["max_accuracy_m"]),
                max_age_s=float(live["max_age_s"]),
            ),
            calibration_duration_s=float(cal["duration_s"]),
            min_good_samples=int(cal["min_good_samples"]),
            accuracy_floor_m=float(cal["accuracy_floor_m"]),
            start_policy=StartPolicy(cal["start_policy"]),
            min_center_distance_from_rig_m=float(cal["min_center_distance_from_rig_m"]),
            min_send_interval_s=float(live["min_send_interval_s"]),
        )
