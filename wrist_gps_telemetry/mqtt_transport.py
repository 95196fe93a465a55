from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict

import paho.mqtt.client as mqtt

from .errors import TransportSendFailed, TransportUnreachable

logger = logging.getLogger(__name__)


class MqttTransport:
    """把 payload 以 JSON 发布到上行主题（fire-and-forget，QoS 0）"""

    def __init__(self, client: mqtt.Client, topic: str):
        self.client = client
        self.topic = topic

    @property
    def is_reachable(self) -> bool:
        return bool(self.client.is_connected())

    def send(self, payload: Dict[str, Any]) -> None:
        if not self.is_reachable:
            raise TransportUnreachable(f"MQTT 未连接，无法发布到 {self.topic}")
        info = self.client.publish(self.topic, json.dumps(payload, separators=(",", ":")))
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportSendFailed(f"发布到 {self.topic} 失败: {mqtt.error_string(info.rc)}")


class MqttKeepAlive:
    """
    会话保活：在状态主题上发布保留消息 active/ended，
    对端据此判断手表会话是否仍在运行
    """

    def __init__(self, client: mqtt.Client, topic: str):
        self.client = client
        self.topic = topic
        self.active = False

    def _publish(self, state: str) -> None:
        message = json.dumps({"session": state, "ts": time.time()})
        info = self.client.publish(self.topic, message, retain=True)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning("会话状态发布失败: %s", mqtt.error_string(info.rc))

    def start(self) -> None:
        self.active = True
        self._publish("active")
        logger.info("会话保活已开始")

    def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        self._publish("ended")
        logger.info("会话保活已结束")
