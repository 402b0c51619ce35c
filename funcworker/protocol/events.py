"""Log record emission for the worker protocol."""

from __future__ import annotations

from typing import Callable, Optional

from funcworker.protocol.schema import build_envelope
from funcworker.protocol.types import Envelope, LogLevel, RpcLog


class LogForwarder:
    """Wrap log lines into uncorrelated rpc_log envelopes and write them immediately."""

    def __init__(self, send: Callable[[Envelope], None]) -> None:
        self._send = send

    def forward(
        self,
        invocation_id: Optional[str],
        category: str,
        message: str,
        level: LogLevel = "information",
    ) -> RpcLog:
        record = RpcLog(
            invocation_id=invocation_id,
            category=category,
            level=level,
            message=message,
        )
        self._send(build_envelope("rpc_log", record))
        return record
