from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .collaborators import FixSource, KeepAlive, Transport
from .config_manager import ConfigManager, SessionConfig
from .errors import TransportError
from .events import (
    AuthorizationChanged,
    CancelCalibration,
    CancelDeadline,
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
from .models import CalibrationKind, PositionSample
from .mqtt_transport import MqttKeepAlive, MqttTransport
from .session import TelemetrySession
from .sources import MqttFixSource


logger = logging.getLogger(__name__)


def parse_command(data: Dict[str, Any], now: float):
    """把控制消息转换为会话事件；无法识别返回 None"""
    command = data.get("command")
    match command:
        case "start_tracking":
            return StartTracking(now=now)
        case "stop_tracking":
            return StopTracking(now=now)
        case "start_calibration":
            try:
                kind = CalibrationKind(data.get("kind", CalibrationKind.CENTER.value))
            except ValueError:
                return None
            return StartCalibration(kind=kind, now=now)
        case "cancel_calibration":
            return CancelCalibration(now=now)
        case "lock_subject":
            return RequestSubjectLock()
        case _:
            return None


def parse_fixes(payload: str, now: float) -> List[PositionSample]:
    """一条消息可包含多行定位，每行一个 fix；无法解析的行跳过"""
    samples: List[PositionSample] = []
    for line in payload.splitlines():
        sample = PositionSample.parse(line, default_ts=now)
        if sample is not None:
            samples.append(sample)
    return samples


class TelemetryService:
    def __init__(
        self,
        config_manager: ConfigManager,
        client: Optional[mqtt.Client] = None,
        transport: Optional[Transport] = None,
        keepalive: Optional[KeepAlive] = None,
        source: Optional[FixSource] = None,
        clock: Callable[[], float] = time.time,
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self.config_manager = config_manager
        self.clock = clock
        self.timer_factory = timer_factory

        mqtt_config = self.config_manager.get_mqtt_config()
        device_id = mqtt_config.get("device_id", "watch-1")
        self.fix_topic = mqtt_config["fix_topic"].format(deviceId=device_id)
        self.command_topic = mqtt_config["command_topic"].format(deviceId=device_id)
        uplink_topic = mqtt_config["uplink_topic"].format(deviceId=device_id)
        status_topic = mqtt_config["status_topic"].format(deviceId=device_id)

        self.client = client or mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message

        # 协作方（可注入测试替身）
        self.transport = transport or MqttTransport(self.client, uplink_topic)
        self.keepalive = keepalive or MqttKeepAlive(self.client, status_topic)
        self.source = source or MqttFixSource(
            enabled=bool(self.config_manager.get_sensor_config().get("enabled", True))
        )

        self.session = TelemetrySession(
            SessionConfig.from_config_manager(self.config_manager),
            authorization=self.source.authorization_status(),
        )

        self._timers: Dict[int, Any] = {}
        self._timers_lock = threading.Lock()
        self._transport_error = False

    # ---------- Core processing ----------
    def handle(self, event) -> List[object]:
        actions = self.session.handle(event)
        self.execute(actions)
        return actions

    def execute(self, actions: List[object]) -> None:
        for action in actions:
            match action:
                case SendPayload():
                    self._send(action)
                case ScheduleDeadline(run_id=run_id, delay_s=delay_s):
                    self._arm_deadline(run_id, delay_s)
                case CancelDeadline(run_id=run_id):
                    self._disarm_deadline(run_id)
                case RequestAuthorization():
                    status = self.source.request_authorization()
                    self.handle(AuthorizationChanged(status))
                case StartAcquisition():
                    self.source.start_updates()
                case StopAcquisition():
                    self.source.stop_updates()
                case StartKeepAlive():
                    self.keepalive.start()
                case StopKeepAlive():
                    self.keepalive.stop()
                case _:
                    logger.warning("未知动作: %r", action)

    def _send(self, action: SendPayload) -> None:
        try:
            self.transport.send(action.payload)
        except TransportError as e:
            # 不重试、不排队，只上报一次状态
            logger.warning("发送 %s 消息失败: %s", action.channel.value, e)
            self._transport_error = True
            self.handle(TransportFailed(action.channel, e.reason))
            return
        if self._transport_error:
            self._transport_error = False
            self.handle(TransportSent(action.channel))

    # ---------- Deadline timers ----------
    def _arm_deadline(self, run_id: int, delay_s: float) -> None:
        timer = self.timer_factory(delay_s, self._on_deadline, args=(run_id,))
        timer.daemon = True
        with self._timers_lock:
            self._timers[run_id] = timer
        timer.start()

    def _disarm_deadline(self, run_id: int) -> None:
        with self._timers_lock:
            timer = self._timers.pop(run_id, None)
        if timer is not None:
            timer.cancel()

    def _on_deadline(self, run_id: int) -> None:
        with self._timers_lock:
            self._timers.pop(run_id, None)
        try:
            self.handle(DeadlineElapsed(run_id=run_id, now=self.clock()))
        except Exception as e:
            logger.exception("处理标定截止时出错: %s", e)

    def close(self) -> None:
        with self._timers_lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        self.keepalive.stop()

    # ---------- Inbound ----------
    def on_fix_payload(self, payload: str) -> None:
        if not self.source.updating:
            logger.debug("未在采集，丢弃定位消息")
            return
        now = self.clock()
        samples = parse_fixes(payload, now)
        if not samples:
            logger.warning("定位消息无有效数据: %s", payload)
            return
        self.handle(SampleReceived(samples=tuple(samples), now=now))

    def on_command_payload(self, payload: str) -> None:
        try:
            data = json.loads(payload)
        except ValueError:
            logger.warning("控制消息不是合法 JSON: %s", payload)
            return
        event = parse_command(data, self.clock()) if isinstance(data, dict) else None
        if event is None:
            logger.warning("无法识别的控制消息: %s", payload)
            return
        self.handle(event)

    # ---------- MQTT ----------
    def start_mqtt_client(self):
        try:
            mqtt_config = self.config_manager.get_mqtt_config()
            self.client.connect(mqtt_config["ip"], mqtt_config["port"], 60)
            logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])
            self.client.loop_forever()
        except OSError as e:
            logger.error("MQTT连接错误: %s", e)

    def stop_mqtt_client(self):
        self.close()
        try:
            self.client.disconnect()
            self.client.loop_stop()
            logger.info("MQTT连接已断开")
        except Exception as e:
            logger.error("断开MQTT连接时出错: %s", e)

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("连接失败，返回码: %s", reason_code)
            return
        logger.info("成功连接到MQTT服务器")
        client.subscribe(self.fix_topic)
        client.subscribe(self.command_topic)
        logger.info("已订阅主题: %s, %s", self.fix_topic, self.command_topic)
        # 连接建立后自动开始跟踪
        self.handle(StartTracking(now=self.clock()))

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            payload = msg.payload.decode("utf-8")
            if mqtt.topic_matches_sub(self.command_topic, msg.topic):
                self.on_command_payload(payload)
            elif mqtt.topic_matches_sub(self.fix_topic, msg.topic):
                self.on_fix_payload(payload)
        except UnicodeDecodeError as e:
            self.handle(SensorFailed(f"消息解码失败: {e}"))
        except Exception as e:
            logger.exception("处理消息时出错: %s", e)
