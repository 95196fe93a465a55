from __future__ import annotations


class TelemetryError(Exception):
    """包内异常基类"""


class AlreadyRunning(TelemetryError):
    """已有标定在运行，且策略为 reject"""

    def __init__(self, run_id: int, kind: str):
        super().__init__(f"标定 #{run_id} ({kind}) 正在进行中")
        self.run_id = run_id
        self.kind = kind


class TransportError(TelemetryError):
    """发送失败基类；reason 为给界面显示的简短说明"""

    reason = "send failed"


class TransportUnreachable(TransportError):
    reason = "phone not reachable"


class TransportSendFailed(TransportError):
    reason = "send failed"
