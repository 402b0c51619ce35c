"""Invocation response assembly and emission."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, List, Optional

from funcworker.converters import http as http_converters
from funcworker.converters import typed_data
from funcworker.protocol.schema import build_envelope
from funcworker.protocol.types import (
    HTTP_BINDING_ALIASES,
    RETURN_BINDING_NAME,
    Envelope,
    InvocationResponse,
    ParameterBinding,
    RpcException,
    StatusKind,
    StatusResult,
    TypedData,
    TypedDataType,
)

if TYPE_CHECKING:
    from funcworker.app.context import InvocationContext


def output_binding(name: str, value: Any) -> ParameterBinding:
    """Encode one output binding; the reserved HTTP aliases use the HTTP message encoding."""
    if name in HTTP_BINDING_ALIASES:
        data = TypedData(type=TypedDataType.HTTP, http_val=http_converters.to_wire(value))
    else:
        data = typed_data.encode(value)
    return ParameterBinding(name=name, data=data)


class ResponseEmitter:
    """Serialize invocation outcomes into invocation_response envelopes."""

    def __init__(self, send: Callable[[Envelope], None]) -> None:
        self._send = send

    def _write(self, request_id: Optional[str], response: InvocationResponse) -> None:
        self._send(build_envelope("invocation_response", response, request_id=request_id))

    def complete(
        self,
        context: "InvocationContext",
        error: Any = None,
        result: Any = None,
    ) -> InvocationResponse:
        """Write the single response for a finished invocation.

        ``error`` and ``result`` may both be given. Every current binding is
        written as an output binding after the optional ``$return`` binding.
        """
        status = StatusKind.SUCCESS
        result_text: Optional[str] = None
        output_data: List[ParameterBinding] = []

        if error is not None:
            status = StatusKind.FAILURE
            result_text = str(error)
        if result is not None:
            status = StatusKind.SUCCESS
            result_text = str(result)
            output_data.append(ParameterBinding(name=RETURN_BINDING_NAME, data=typed_data.encode(result)))

        for name, value in list(context.bindings.items()):
            output_data.append(output_binding(name, value))

        # The host receives Success once bindings are written, even after an error.
        status = StatusKind.SUCCESS

        response = InvocationResponse(
            invocation_id=context.invocation_id,
            output_data=output_data,
            result=StatusResult(status=status, result=result_text),
        )
        self._write(context.request_id, response)
        return response

    def fail(
        self,
        context: "InvocationContext",
        *,
        stack_trace: str,
        message: Optional[str] = None,
    ) -> InvocationResponse:
        """Write a Failure response carrying ``stack_trace``, bypassing binding output."""
        response = InvocationResponse(
            invocation_id=context.invocation_id,
            result=StatusResult(
                status=StatusKind.FAILURE,
                result=message,
                exception=RpcException(message=message, stack_trace=stack_trace),
            ),
        )
        self._write(context.request_id, response)
        return response

    def reject(self, *, request_id: Optional[str], invocation_id: str, error: BaseException) -> InvocationResponse:
        """Write a Failure response for an invocation that never got a context."""
        response = InvocationResponse(
            invocation_id=invocation_id,
            result=StatusResult(
                status=StatusKind.FAILURE,
                result=str(error),
                exception=RpcException(message=str(error)),
            ),
        )
        self._write(request_id, response)
        return response
