"""Core wire types for host/worker communication."""

from __future__ import annotations

import base64
import json
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer

# Binding names that carry an HTTP message instead of plain typed data.
HTTP_BINDING_ALIASES = ("req", "request", "res")
# HTTP trigger input the host passes through without exposing it as a binding.
WEBHOOK_BINDING_ALIAS = "webhookReq"
RETURN_BINDING_NAME = "$return"

INVOCATION_LOG_CATEGORY = "Invocation"
SYSTEM_LOG_CATEGORY = "System"

EnvelopeType = Literal[
    "start_stream",
    "worker_init_request",
    "worker_init_response",
    "worker_status_request",
    "worker_status_response",
    "function_load_request",
    "function_load_response",
    "invocation_request",
    "invocation_response",
    "invocation_cancel",
    "function_environment_reload_request",
    "function_environment_reload_response",
    "rpc_log",
]

LogLevel = Literal["trace", "debug", "information", "warning", "error", "critical", "none"]


def _bytes_from_wire(value: Any) -> Any:
    if isinstance(value, str):
        return base64.b64decode(value)
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value


def _bytes_to_wire(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _tag_from_wire(value: Any) -> Any:
    if isinstance(value, TypedDataType):
        return value
    if value is None:
        return TypedDataType.STRING
    try:
        return TypedDataType(value)
    except (TypeError, ValueError):
        return TypedDataType.STRING


def _text_from_wire(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, default=str)


# Raw bytes in memory, base64 text on the wire.
WireBytes = Annotated[
    bytes,
    BeforeValidator(_bytes_from_wire),
    PlainSerializer(_bytes_to_wire, return_type=str, when_used="json"),
]


class TypedDataType(str, Enum):
    """Tag for the populated TypedData variant."""

    STRING = "string"
    JSON = "json"
    BYTES = "bytes"
    HTTP = "http"
    INT = "int"
    DOUBLE = "double"
    BOOL = "bool"


# Unknown tags read as text; non-string text values are kept as their JSON text.
WireTag = Annotated[TypedDataType, BeforeValidator(_tag_from_wire)]
WireText = Annotated[str, BeforeValidator(_text_from_wire)]


class StatusKind(str, Enum):
    """Outcome reported in a StatusResult."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


class TypedData(BaseModel):
    """Tagged-union scalar used for every value crossing the wire."""

    model_config = ConfigDict(extra="ignore")

    type: WireTag = TypedDataType.STRING
    string_val: Optional[WireText] = None
    bytes_val: Optional[WireBytes] = None
    http_val: Optional[RpcHttp] = None
    int_val: Optional[int] = None
    double_val: Optional[float] = None
    bool_val: Optional[bool] = None


class RpcHttp(BaseModel):
    """HTTP sub-message carried inside TypedData."""

    model_config = ConfigDict(extra="ignore")

    method: Optional[str] = None
    url: Optional[str] = None
    headers: List[Tuple[str, str]] = Field(default_factory=list)
    query: List[Tuple[str, str]] = Field(default_factory=list)
    params: List[Tuple[str, TypedData]] = Field(default_factory=list)
    raw_body: Optional[WireBytes] = None
    body: Optional[TypedData] = None
    status_code: Optional[str] = None
    is_raw: Optional[bool] = None
    raw_response: Optional[TypedData] = None


class RpcException(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: Optional[str] = None
    stack_trace: Optional[str] = None


class StatusResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: StatusKind = StatusKind.SUCCESS
    result: Optional[str] = None
    exception: Optional[RpcException] = None


class ParameterBinding(BaseModel):
    """Named input or output value of an invocation."""

    model_config = ConfigDict(extra="ignore")

    name: str
    data: Optional[TypedData] = None


class RpcFunctionMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    directory: str = ""
    script_file: str = Field(min_length=1)
    entry_point: Optional[str] = None


class StartStream(BaseModel):
    model_config = ConfigDict(extra="forbid")


class WorkerInitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host_version: Optional[str] = None
    capabilities: Dict[str, str] = Field(default_factory=dict)
    function_app_directory: Optional[str] = None


class WorkerInitResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    worker_version: str
    capabilities: Dict[str, str] = Field(default_factory=dict)
    result: StatusResult


class WorkerStatusRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")


class WorkerStatusResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")


class FunctionLoadRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    function_id: str = Field(min_length=1)
    metadata: RpcFunctionMetadata


class FunctionLoadResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    function_id: str
    result: StatusResult


class InvocationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    invocation_id: str = Field(min_length=1)
    function_id: str = Field(min_length=1)
    input_data: List[ParameterBinding] = Field(default_factory=list)
    trigger_metadata: Dict[str, TypedData] = Field(default_factory=dict)


class InvocationResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    invocation_id: str
    output_data: List[ParameterBinding] = Field(default_factory=list)
    result: StatusResult = Field(default_factory=StatusResult)


class InvocationCancel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    invocation_id: str = Field(min_length=1)


class FunctionEnvironmentReloadRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    environment_variables: Dict[str, str] = Field(default_factory=dict)
    function_app_directory: Optional[str] = None


class FunctionEnvironmentReloadResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    result: StatusResult


class RpcLog(BaseModel):
    """Log line written by user code during an invocation."""

    model_config = ConfigDict(extra="forbid")

    invocation_id: Optional[str] = None
    category: str = INVOCATION_LOG_CATEGORY
    level: LogLevel = "information"
    message: str = ""


class Envelope(BaseModel):
    """Wire frame: correlation id, type tag and tag-specific payload."""

    model_config = ConfigDict(extra="forbid")

    request_id: Optional[str] = None
    type: EnvelopeType
    payload: Dict[str, Any] = Field(default_factory=dict)


TypedData.model_rebuild()
RpcHttp.model_rebuild()
