"""外部协作方的最小接口（传输、保活、定位源）"""

from __future__ import annotations

from typing import Any, Dict, Protocol

from .models import AuthorizationStatus


class Transport(Protocol):
    @property
    def is_reachable(self) -> bool: ...

    def send(self, payload: Dict[str, Any]) -> None:
        """发送一条消息；不可达抛 TransportUnreachable，发送失败抛 TransportSendFailed"""
        ...


class KeepAlive(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


class FixSource(Protocol):
    updating: bool

    def authorization_status(self) -> AuthorizationStatus: ...

    def request_authorization(self) -> AuthorizationStatus: ...

    def start_updates(self) -> None: ...

    def stop_updates(self) -> None: ...
