"""Worker runtime assembly and inbound message routing."""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import threading
import traceback
from concurrent.futures import Future, ThreadPoolExecutor
from io import TextIOBase
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from funcworker import __version__
from funcworker.app.context import InvocationContext, InvocationContextBuilder
from funcworker.app.loader import FunctionLoader
from funcworker.app.registry import FunctionMetadata, FunctionRegistry
from funcworker.app.responses import ResponseEmitter
from funcworker.config import Config, WorkerSettings
from funcworker.errors import EntryPointError, FunctionNotFoundError, UserCodeError, WorkerError
from funcworker.protocol.events import LogForwarder
from funcworker.protocol.schema import build_envelope, parse_payload
from funcworker.protocol.stream import EnvelopeStream
from funcworker.protocol.types import (
    SYSTEM_LOG_CATEGORY,
    Envelope,
    EnvelopeType,
    FunctionEnvironmentReloadRequest,
    FunctionEnvironmentReloadResponse,
    FunctionLoadRequest,
    FunctionLoadResponse,
    InvocationCancel,
    InvocationRequest,
    RpcException,
    StartStream,
    StatusKind,
    StatusResult,
    WorkerInitRequest,
    WorkerInitResponse,
    WorkerStatusRequest,
    WorkerStatusResponse,
)

logger = logging.getLogger(__name__)

PayloadModelT = TypeVar("PayloadModelT", bound=BaseModel)
EnvelopeRoute = Callable[[BaseModel, Optional[str]], None]

WORKER_CAPABILITIES = {
    "RawHttpBodyBytes": "true",
    "WorkerStatus": "true",
}


def _status_from_error(error: Optional[BaseException]) -> StatusResult:
    if error is None:
        return StatusResult()
    return StatusResult(
        status=StatusKind.FAILURE,
        result=str(error),
        exception=RpcException(message=str(error), stack_trace="".join(traceback.format_exception(error))),
    )


def accepts_callback(function: Callable) -> bool:
    """True when ``function`` takes ``done`` as a required second positional argument."""
    try:
        signature = inspect.signature(function)
    except (TypeError, ValueError):
        return False

    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind == inspect.Parameter.VAR_POSITIONAL:
            return True
        if parameter.default is not inspect.Parameter.empty:
            continue
        if parameter.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 2


async def _resolve(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class WorkerRuntime:
    """Route inbound envelopes to handlers and run user functions off the reader thread."""

    def __init__(
        self,
        *,
        config: Optional[Config] = None,
        stream: Optional[EnvelopeStream] = None,
        rpc_stdin: TextIOBase | None = None,
        rpc_stdout: TextIOBase | None = None,
        registry: Optional[FunctionRegistry] = None,
        loader: Optional[FunctionLoader] = None,
    ) -> None:
        self.config = config
        worker_settings = config.worker if config is not None else WorkerSettings()
        self.worker_settings = worker_settings

        self.stream = stream or EnvelopeStream(stdin=rpc_stdin, stdout=rpc_stdout)
        self.registry = registry or FunctionRegistry()
        self.loader = loader or FunctionLoader()
        self.log_forwarder = LogForwarder(send=self.stream.write)
        self.response_emitter = ResponseEmitter(send=self.stream.write)
        self.context_builder = InvocationContextBuilder(
            registry=self.registry,
            emitter=self.response_emitter,
            forwarder=self.log_forwarder,
        )

        self._executor = ThreadPoolExecutor(
            max_workers=worker_settings.max_workers,
            thread_name_prefix="funcworker-invoke",
        )
        self._inflight_lock = threading.Lock()
        self._inflight: Dict[str, InvocationContext] = {}
        self._routes: Dict[str, EnvelopeRoute] = {}
        self._register_routes()

    def _register_typed_route(
        self,
        *,
        envelope_type: EnvelopeType,
        payload_model: type[PayloadModelT],
        handler: Callable[[PayloadModelT, Optional[str]], None],
    ) -> None:
        """Register an envelope handler while preserving its payload typing."""

        def _wrapper(payload: BaseModel, request_id: Optional[str]) -> None:
            if not isinstance(payload, payload_model):
                raise TypeError(
                    f"{envelope_type} expects {payload_model.__name__}, got {type(payload).__name__}"
                )
            handler(payload, request_id)

        self._routes[envelope_type] = _wrapper

    def _register_routes(self) -> None:
        self._register_typed_route(
            envelope_type="worker_init_request",
            payload_model=WorkerInitRequest,
            handler=self._on_worker_init,
        )
        self._register_typed_route(
            envelope_type="worker_status_request",
            payload_model=WorkerStatusRequest,
            handler=self._on_worker_status,
        )
        self._register_typed_route(
            envelope_type="function_load_request",
            payload_model=FunctionLoadRequest,
            handler=self._on_function_load,
        )
        self._register_typed_route(
            envelope_type="invocation_request",
            payload_model=InvocationRequest,
            handler=self._on_invocation,
        )
        self._register_typed_route(
            envelope_type="invocation_cancel",
            payload_model=InvocationCancel,
            handler=self._on_invocation_cancel,
        )
        self._register_typed_route(
            envelope_type="function_environment_reload_request",
            payload_model=FunctionEnvironmentReloadRequest,
            handler=self._on_environment_reload,
        )

    def dispatch(self, envelope: Envelope) -> None:
        """Route one inbound envelope by its type tag."""
        route = self._routes.get(envelope.type)
        if route is None:
            logger.warning("Ignoring envelope type=%s request_id=%s", envelope.type, envelope.request_id)
            return

        try:
            payload = parse_payload(envelope)
        except (ValidationError, ValueError) as exc:
            logger.warning("Dropping %s request_id=%s with invalid payload: %s", envelope.type, envelope.request_id, exc)
            if envelope.type == "invocation_request":
                self._reject_malformed_invocation(envelope, exc)
            return

        route(payload, envelope.request_id)

    def _reject_malformed_invocation(self, envelope: Envelope, error: Exception) -> None:
        invocation_id = envelope.payload.get("invocation_id")
        if not isinstance(invocation_id, str) or not invocation_id:
            return
        self.response_emitter.reject(
            request_id=envelope.request_id,
            invocation_id=invocation_id,
            error=WorkerError(f"Invalid invocation_request payload: {error}"),
        )

    def _on_worker_init(self, params: WorkerInitRequest, request_id: Optional[str]) -> None:
        logger.info(
            "Worker init host_version=%s app_directory=%s",
            params.host_version,
            params.function_app_directory,
        )
        response = WorkerInitResponse(
            worker_version=__version__,
            capabilities=dict(WORKER_CAPABILITIES),
            result=StatusResult(),
        )
        self.stream.write(build_envelope("worker_init_response", response, request_id=request_id))

    def _on_worker_status(self, _params: WorkerStatusRequest, request_id: Optional[str]) -> None:
        self.stream.write(build_envelope("worker_status_response", WorkerStatusResponse(), request_id=request_id))

    def _on_function_load(self, params: FunctionLoadRequest, request_id: Optional[str]) -> None:
        metadata = FunctionMetadata.from_wire(params.function_id, params.metadata)
        self.registry.register(params.function_id, metadata)
        logger.info("Registered function_id=%s name=%s script=%s", metadata.function_id, metadata.name, metadata.script_file)

        response = FunctionLoadResponse(
            function_id=params.function_id,
            result=StatusResult(result="Loaded function"),
        )
        self.stream.write(build_envelope("function_load_response", response, request_id=request_id))

    def _on_invocation(self, params: InvocationRequest, request_id: Optional[str]) -> None:
        try:
            context = self.context_builder.build(params, request_id=request_id)
        except FunctionNotFoundError as exc:
            logger.error("Invocation %s rejected: %s", params.invocation_id, exc)
            self.response_emitter.reject(request_id=request_id, invocation_id=params.invocation_id, error=exc)
            return

        with self._inflight_lock:
            self._inflight[context.invocation_id] = context
        future = self._executor.submit(self._run_invocation, context)
        future.add_done_callback(lambda done_future: self._finish_invocation(context, done_future))

    def _on_invocation_cancel(self, params: InvocationCancel, _request_id: Optional[str]) -> None:
        with self._inflight_lock:
            running = params.invocation_id in self._inflight
        # Running user code is never interrupted; cancellation is left to the function.
        logger.info("Cancel requested invocation_id=%s running=%s", params.invocation_id, running)

    def _on_environment_reload(self, params: FunctionEnvironmentReloadRequest, request_id: Optional[str]) -> None:
        self.log_forwarder.forward(
            None,
            SYSTEM_LOG_CATEGORY,
            f"Reloading environment variables. Found {len(params.environment_variables)} variables to reload.",
        )
        error: Optional[BaseException] = None
        try:
            os.environ.clear()
            os.environ.update(params.environment_variables)
            if params.function_app_directory:
                self.log_forwarder.forward(
                    None,
                    SYSTEM_LOG_CATEGORY,
                    f"Changing current working directory to {params.function_app_directory}",
                )
                os.chdir(params.function_app_directory)
        except OSError as exc:
            logger.error("Environment reload failed: %s", exc)
            error = exc

        response = FunctionEnvironmentReloadResponse(result=_status_from_error(error))
        self.stream.write(build_envelope("function_environment_reload_response", response, request_id=request_id))

    def _call_user_function(self, function: Callable, context: InvocationContext, with_callback: bool) -> Any:
        args = (context, context.done) if with_callback else (context,)
        try:
            outcome = function(*args)
            if inspect.isawaitable(outcome):
                outcome = asyncio.run(_resolve(outcome))
        except Exception as exc:
            raise UserCodeError(exc) from exc
        return outcome

    def _run_invocation(self, context: InvocationContext) -> None:
        try:
            function = self.loader.entry_point(context.metadata)
        except EntryPointError as exc:
            context.handle_uncaught_exception(traceback.format_exc(), message=str(exc))
            return

        with_callback = accepts_callback(function)
        try:
            outcome = self._call_user_function(function, context, with_callback)
        except UserCodeError as exc:
            stack_trace = "".join(traceback.format_exception(exc.original))
            context.handle_uncaught_exception(stack_trace, message=str(exc))
            return

        # A function that takes no callback and returns nothing is finished.
        if outcome is not None or not with_callback:
            context.done(None, outcome)

    def _finish_invocation(self, context: InvocationContext, future: Future) -> None:
        with self._inflight_lock:
            self._inflight.pop(context.invocation_id, None)
        error = future.exception()
        if error is not None:
            logger.error(
                "Invocation %s failed outside user code",
                context.invocation_id,
                exc_info=(type(error), error, error.__traceback__),
            )

    def inflight_invocations(self) -> list[str]:
        with self._inflight_lock:
            return sorted(self._inflight.keys())

    def start_stream(self) -> None:
        """Announce the worker on a freshly established channel."""
        self.stream.write(
            build_envelope("start_stream", StartStream(), request_id=self.worker_settings.request_id)
        )

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def run(self) -> None:
        logger.info("Starting funcworker worker_id=%s version=%s", self.worker_settings.worker_id, __version__)
        self.start_stream()
        try:
            self.stream.run_forever(self.dispatch)
        finally:
            self.close(wait=True)
