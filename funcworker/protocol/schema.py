"""Payload schemas keyed by envelope type."""

from __future__ import annotations

from typing import Any, Dict, Optional, Type

from pydantic import BaseModel

from funcworker.protocol.types import (
    Envelope,
    EnvelopeType,
    FunctionEnvironmentReloadRequest,
    FunctionEnvironmentReloadResponse,
    FunctionLoadRequest,
    FunctionLoadResponse,
    InvocationCancel,
    InvocationRequest,
    InvocationResponse,
    RpcLog,
    StartStream,
    WorkerInitRequest,
    WorkerInitResponse,
    WorkerStatusRequest,
    WorkerStatusResponse,
)

PAYLOAD_MODELS: Dict[str, Type[BaseModel]] = {
    "start_stream": StartStream,
    "worker_init_request": WorkerInitRequest,
    "worker_init_response": WorkerInitResponse,
    "worker_status_request": WorkerStatusRequest,
    "worker_status_response": WorkerStatusResponse,
    "function_load_request": FunctionLoadRequest,
    "function_load_response": FunctionLoadResponse,
    "invocation_request": InvocationRequest,
    "invocation_response": InvocationResponse,
    "invocation_cancel": InvocationCancel,
    "function_environment_reload_request": FunctionEnvironmentReloadRequest,
    "function_environment_reload_response": FunctionEnvironmentReloadResponse,
    "rpc_log": RpcLog,
}


def parse_payload(envelope: Envelope) -> BaseModel:
    """Validate an envelope payload against the model for its type tag."""
    model = PAYLOAD_MODELS.get(envelope.type)
    if model is None:
        raise ValueError(f"Unsupported envelope type: {envelope.type}")
    return model.model_validate(envelope.payload)


def build_envelope(
    envelope_type: EnvelopeType,
    payload: Optional[BaseModel] = None,
    *,
    request_id: Optional[str] = None,
) -> Envelope:
    """Wrap a payload model into a wire envelope."""
    body: Dict[str, Any] = {}
    if payload is not None:
        body = payload.model_dump(mode="json", exclude_none=True)
    return Envelope(request_id=request_id, type=envelope_type, payload=body)
