"""
入口转发

  - 包名: wrist_gps_telemetry
  - CLI: wrist-gps-telemetry

此文件仅用于兼容 `python main.py` 的运行方式，会转发到 `wrist_gps_telemetry.cli:main`。
"""

from wrist_gps_telemetry.cli import main as _cli_main


def main():
    _cli_main()


if __name__ == "__main__":  # pragma: no cover
    main()
