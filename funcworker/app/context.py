"""Per-invocation execution context handed to user functions."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from funcworker.app.registry import FunctionMetadata, FunctionRegistry
from funcworker.app.responses import ResponseEmitter
from funcworker.converters import http as http_converters
from funcworker.converters import typed_data
from funcworker.protocol.events import LogForwarder
from funcworker.protocol.types import (
    INVOCATION_LOG_CATEGORY,
    WEBHOOK_BINDING_ALIAS,
    InvocationRequest,
    LogLevel,
    RpcHttp,
    TypedDataType,
)

logger = logging.getLogger(__name__)

HTTP_TRIGGER_TYPE = "http"


@dataclass(frozen=True)
class ExecutionContext:
    invocation_id: str
    function_name: str
    function_directory: str


class InvocationLogger:
    """Callable user logger; every call becomes an rpc_log record for this invocation."""

    def __init__(self, forwarder: LogForwarder, invocation_id: str) -> None:
        self._forwarder = forwarder
        self._invocation_id = invocation_id

    @staticmethod
    def _message_text(message: Any) -> str:
        if isinstance(message, str):
            return message
        return json.dumps(message, default=str)

    def _emit(self, level: LogLevel, message: Any) -> None:
        self._forwarder.forward(
            self._invocation_id,
            INVOCATION_LOG_CATEGORY,
            self._message_text(message),
            level,
        )

    def __call__(self, message: Any) -> None:
        self._emit("information", message)

    def info(self, message: Any) -> None:
        self._emit("information", message)

    def warn(self, message: Any) -> None:
        self._emit("warning", message)

    def error(self, message: Any) -> None:
        self._emit("error", message)

    def verbose(self, message: Any) -> None:
        self._emit("trace", message)


class CompletionSignal:
    """Single-use completion for one invocation.

    Callable as ``done(error, result)`` from user code on any thread. Only the
    first call completes the invocation; later calls are logged and dropped.
    """

    def __init__(self, on_complete: Callable[[Any, Any], None], invocation_id: str) -> None:
        self._on_complete = on_complete
        self._invocation_id = invocation_id
        self._lock = threading.Lock()
        self._fired = False
        self._finished = threading.Event()

    @property
    def fired(self) -> bool:
        with self._lock:
            return self._fired

    def __call__(self, error: Any = None, result: Any = None) -> None:
        with self._lock:
            if self._fired:
                logger.warning("Ignoring repeated completion for invocation_id=%s", self._invocation_id)
                return
            self._fired = True
        try:
            self._on_complete(error, result)
        finally:
            self._finished.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._finished.wait(timeout)


class InvocationContext:
    """State and capabilities for one invocation; discarded once its response is written."""

    def __init__(
        self,
        *,
        request_id: Optional[str],
        metadata: FunctionMetadata,
        execution_context: ExecutionContext,
        inputs: List[Any],
        bindings: Dict[str, Any],
        binding_data: Mapping[str, Any],
        trigger_type: Optional[str],
        req: Optional[Dict[str, Any]],
        emitter: ResponseEmitter,
    ) -> None:
        self.request_id = request_id
        self.metadata = metadata
        self.function_id = metadata.function_id
        self.invocation_id = execution_context.invocation_id
        self.execution_context = execution_context
        self.inputs = inputs
        self.bindings = bindings
        self.binding_data = binding_data
        self.trigger_type = trigger_type
        self.req = req
        self.entry_point = metadata.entry_point
        self._emitter = emitter
        self.log: InvocationLogger
        self.done: CompletionSignal

    def bind(self, values: Mapping[str, Any], callback: Optional[Callable[[Any], Any]] = None) -> None:
        """Merge ``values`` into the output bindings, then call ``callback(None)`` if given."""
        for name, value in values.items():
            self.bindings[name] = value
        if callable(callback):
            callback(None)

    def handle_uncaught_exception(self, stack_trace: str, message: Optional[str] = None) -> None:
        """Report a Failure for this invocation right away, outside normal completion."""
        if not stack_trace:
            return
        logger.error("Uncaught failure in invocation_id=%s\n%s", self.invocation_id, stack_trace)
        self._emitter.fail(self, stack_trace=stack_trace, message=message)


class InvocationContextBuilder:
    """Turn an invocation_request payload into an InvocationContext."""

    def __init__(
        self,
        *,
        registry: FunctionRegistry,
        emitter: ResponseEmitter,
        forwarder: LogForwarder,
    ) -> None:
        self._registry = registry
        self._emitter = emitter
        self._forwarder = forwarder

    def build(self, request: InvocationRequest, *, request_id: Optional[str] = None) -> InvocationContext:
        """Build the context; raises ``FunctionNotFoundError`` before any decoding when the id is unknown."""
        metadata: FunctionMetadata = self._registry.lookup(request.function_id)

        binding_data: Dict[str, Any] = {
            name: typed_data.decode(value) for name, value in request.trigger_metadata.items()
        }

        inputs: List[Any] = []
        bindings: Dict[str, Any] = {}
        http_request: Optional[Dict[str, Any]] = None
        trigger_type: Optional[str] = None
        for binding in request.input_data:
            if binding.data is None:
                continue
            if binding.data.type == TypedDataType.HTTP:
                value = http_converters.from_wire(binding.data.http_val or RpcHttp())
                http_request = value
                trigger_type = HTTP_TRIGGER_TYPE
                if binding.name == WEBHOOK_BINDING_ALIAS:
                    continue
            else:
                value = typed_data.decode(binding.data)
            inputs.append(value)
            bindings[binding.name] = value

        if http_request is not None:
            binding_data["sys"] = {
                "method_name": metadata.name,
                "utc_now": datetime.now(timezone.utc).isoformat(),
                "rand_guid": str(uuid.uuid4()),
            }
            binding_data.setdefault("query", dict(http_request["query"]))
            binding_data.setdefault("headers", dict(http_request["headers"]))

        context = InvocationContext(
            request_id=request_id,
            metadata=metadata,
            execution_context=ExecutionContext(
                invocation_id=request.invocation_id,
                function_name=metadata.name,
                function_directory=metadata.directory,
            ),
            inputs=inputs,
            bindings=bindings,
            binding_data=MappingProxyType(binding_data),
            trigger_type=trigger_type,
            req=http_request,
            emitter=self._emitter,
        )
        context.log = InvocationLogger(self._forwarder, request.invocation_id)
        context.done = CompletionSignal(
            lambda error, result: self._emitter.complete(context, error, result),
            request.invocation_id,
        )
        return context
