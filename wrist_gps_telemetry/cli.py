from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading

import paho.mqtt.publish as mqtt_publish

from .config_manager import ConfigManager, SessionConfig
from .events import SendPayload
from .models import CalibrationKind
from .replay import ReplayRunner
from .service import TelemetryService
from .session import TelemetrySession
from .sources import CsvReplaySource

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def run_mqtt(args):
    config = ConfigManager(args.config)
    service = TelemetryService(config)

    t = threading.Thread(target=service.start_mqtt_client, daemon=True)
    t.start()

    # graceful shutdown
    def handle_sigint(sig, frame):
        service.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    t.join()


def run_replay(args):
    config = ConfigManager(args.config)
    csv_path = args.csv or config.get_replay_csv_path()
    source = CsvReplaySource(csv_path)
    session = TelemetrySession(
        SessionConfig.from_config_manager(config),
        authorization=source.authorization_status(),
    )

    if args.publish:
        mqtt_config = config.get_mqtt_config()
        topic = mqtt_config["uplink_topic"].format(deviceId=mqtt_config.get("device_id", "watch-1"))

        def on_send(action: SendPayload):
            mqtt_publish.single(
                topic,
                json.dumps(action.payload),
                hostname=mqtt_config["ip"],
                port=int(mqtt_config["port"]),
            )
    else:

        def on_send(action: SendPayload):
            print(json.dumps(action.payload, ensure_ascii=False))

    kind = CalibrationKind(args.calibrate) if args.calibrate else None
    runner = ReplayRunner(session, latency_s=args.latency, on_send=on_send)
    runner.run(source.samples(), calibrate=kind)

    state = session.snapshot()
    if state.last_calibration_result:
        logger.info("标定结果: %s", state.last_calibration_result)
    return 0


def send_calibrate(args):
    config = ConfigManager(args.config)
    mqtt_config = config.get_mqtt_config()
    topic = mqtt_config["command_topic"].format(deviceId=mqtt_config.get("device_id", "watch-1"))
    command = "cancel_calibration" if args.cancel else "start_calibration"
    mqtt_publish.single(
        topic,
        json.dumps({"command": command, "kind": args.kind}),
        hostname=mqtt_config["ip"],
        port=int(mqtt_config["port"]),
    )
    logger.info("已发送 %s (%s) 到 %s", command, args.kind, topic)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="wrist-gps-telemetry", description="Wrist GPS telemetry source CLI"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 WRIST_GPS_CONFIG",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行 MQTT 服务")
    p_run.set_defaults(func=run_mqtt)

    p_replay = sub.add_parser("replay", help="回放 CSV 轨迹并输出上送消息")
    p_replay.add_argument("csv", nargs="?", default=None, help="轨迹文件 (lat,lon,acc,ts)")
    p_replay.add_argument("--calibrate", choices=[k.value for k in CalibrationKind], default=None)
    p_replay.add_argument("--latency", type=float, default=0.0, help="模拟到达延迟（秒）")
    p_replay.add_argument("--publish", action="store_true", help="发布到 MQTT 而不是打印")
    p_replay.set_defaults(func=run_replay)

    p_cal = sub.add_parser("calibrate", help="向运行中的服务发送标定指令")
    p_cal.add_argument("kind", choices=[k.value for k in CalibrationKind])
    p_cal.add_argument("--cancel", action="store_true", help="取消进行中的标定")
    p_cal.set_defaults(func=send_calibrate)

    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    # 无子命令/无参数时默认启动服务器
    if not hasattr(args, "func"):
        return run_mqtt(args)
    return args.func(args)


if __name__ == "__main__":
    main()
