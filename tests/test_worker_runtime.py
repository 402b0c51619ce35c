from __future__ import annotations

import io
import json
import os
from pathlib import Path
from typing import Any

import pytest

from funcworker.app.worker_runtime import WorkerRuntime, accepts_callback
from funcworker.config import Config
from funcworker.protocol.types import Envelope


def _runtime(config: Config | None = None) -> tuple[WorkerRuntime, io.StringIO]:
    stdout = io.StringIO()
    runtime = WorkerRuntime(config=config, rpc_stdin=io.StringIO(""), rpc_stdout=stdout)
    return runtime, stdout


def _frames(stdout: io.StringIO) -> list[dict[str, Any]]:
    return [json.loads(line) for line in stdout.getvalue().splitlines() if line.strip()]


def _of_type(stdout: io.StringIO, envelope_type: str) -> list[dict[str, Any]]:
    return [frame for frame in _frames(stdout) if frame["type"] == envelope_type]


def _send(runtime: WorkerRuntime, envelope_type: str, payload: dict[str, Any], request_id: str | None = None) -> None:
    runtime.dispatch(Envelope.model_validate({"request_id": request_id, "type": envelope_type, "payload": payload}))


def _load(runtime: WorkerRuntime, directory: Path, source: str, function_id: str = "fn-1") -> None:
    (directory / f"{function_id}.py").write_text(source, encoding="utf-8")
    _send(
        runtime,
        "function_load_request",
        {
            "function_id": function_id,
            "metadata": {"name": "Demo", "directory": str(directory), "script_file": f"{function_id}.py"},
        },
        request_id="load-1",
    )


def _invoke(runtime: WorkerRuntime, invocation_id: str, function_id: str = "fn-1", **payload: Any) -> None:
    body = {"invocation_id": invocation_id, "function_id": function_id}
    body.update(payload)
    _send(runtime, "invocation_request", body, request_id=f"req-{invocation_id}")


def _responses_by_id(stdout: io.StringIO) -> dict[str, dict[str, Any]]:
    return {frame["payload"]["invocation_id"]: frame for frame in _of_type(stdout, "invocation_response")}


def test_function_load_registers_and_echoes_request_id(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(runtime, tmp_path, "def run(context):\n    return None\n")
    runtime.close()

    assert runtime.registry.has("fn-1")
    response = _of_type(stdout, "function_load_response")[0]
    assert response["request_id"] == "load-1"
    assert response["payload"] == {
        "function_id": "fn-1",
        "result": {"status": "success", "result": "Loaded function"},
    }


def test_invocation_of_unknown_function_fails_without_running_code() -> None:
    runtime, stdout = _runtime()
    _invoke(runtime, "inv-1", function_id="never-loaded")
    runtime.close()

    response = _responses_by_id(stdout)["inv-1"]
    assert response["request_id"] == "req-inv-1"
    assert response["payload"]["result"]["status"] == "failure"
    assert "never-loaded" in response["payload"]["result"]["result"]


def test_http_invocation_returns_http_output(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(
        runtime,
        tmp_path,
        "def run(context):\n"
        "    context.log('handling ' + context.req['method'])\n"
        "    context.bind({'res': {'status': 200, 'body': {'echo': context.req['query']['name']}}})\n",
    )
    _invoke(
        runtime,
        "inv-1",
        input_data=[
            {
                "name": "req",
                "data": {"type": "http", "http_val": {"method": "GET", "query": [["name", "ada"]]}},
            }
        ],
    )
    runtime.close()

    logs = _of_type(stdout, "rpc_log")
    assert logs[0]["payload"]["message"] == "handling GET"
    assert logs[0]["payload"]["invocation_id"] == "inv-1"

    payload = _responses_by_id(stdout)["inv-1"]["payload"]
    assert payload["result"]["status"] == "success"
    outputs = {binding["name"]: binding["data"] for binding in payload["output_data"]}
    assert outputs["res"]["http_val"]["status_code"] == "200"
    assert outputs["res"]["http_val"]["body"]["string_val"] == '{"echo": "ada"}'


def test_return_value_becomes_return_binding(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(runtime, tmp_path, "def run(context):\n    return {'total': len(context.inputs)}\n")
    _invoke(runtime, "inv-1", input_data=[{"name": "a", "data": {"type": "string", "string_val": "x"}}])
    runtime.close()

    payload = _responses_by_id(stdout)["inv-1"]["payload"]
    assert payload["output_data"][0] == {"name": "$return", "data": {"type": "string", "string_val": '{"total": 1}'}}


def test_callback_style_function_completes_through_done(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(
        runtime,
        tmp_path,
        "def run(context, done):\n"
        "    context.bind({'out': 'value'})\n"
        "    done(None, 'finished')\n"
        "    done(None, 'ignored')\n",
    )
    _invoke(runtime, "inv-1")
    runtime.close()

    responses = _of_type(stdout, "invocation_response")
    assert len(responses) == 1
    assert responses[0]["payload"]["result"]["result"] == "finished"


def test_async_function_is_awaited(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(
        runtime,
        tmp_path,
        "import asyncio\n\nasync def run(context):\n    await asyncio.sleep(0)\n    return 'async-result'\n",
    )
    _invoke(runtime, "inv-1")
    runtime.close()

    assert _responses_by_id(stdout)["inv-1"]["payload"]["result"]["result"] == "async-result"


def test_raising_function_reports_failure_with_stack_trace(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(runtime, tmp_path, "def run(context):\n    raise ValueError('bad input')\n")
    _invoke(runtime, "inv-1")
    runtime.close()

    result = _responses_by_id(stdout)["inv-1"]["payload"]["result"]
    assert result["status"] == "failure"
    assert result["exception"]["message"] == "bad input"
    assert "ValueError" in result["exception"]["stack_trace"]


def test_missing_entry_point_reports_failure(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(runtime, tmp_path, "def a(context):\n    pass\n\ndef b(context):\n    pass\n")
    _invoke(runtime, "inv-1")
    runtime.close()

    result = _responses_by_id(stdout)["inv-1"]["payload"]["result"]
    assert result["status"] == "failure"
    assert "entry point" in result["exception"]["message"]


def test_invocations_run_concurrently(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(
        runtime,
        tmp_path,
        "import threading\n\n"
        "BARRIER = threading.Barrier(2, timeout=10)\n\n"
        "def run(context):\n"
        "    BARRIER.wait()\n"
        "    return context.invocation_id\n",
    )
    _invoke(runtime, "inv-1")
    _invoke(runtime, "inv-2")
    runtime.close()

    responses = _responses_by_id(stdout)
    assert responses["inv-1"]["payload"]["result"] == {"status": "success", "result": "inv-1"}
    assert responses["inv-2"]["payload"]["result"] == {"status": "success", "result": "inv-2"}
    assert runtime.inflight_invocations() == []


def test_every_output_line_is_a_whole_envelope(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(
        runtime,
        tmp_path,
        "def run(context):\n"
        "    for index in range(20):\n"
        "        context.log('line %d' % index)\n"
        "    return 'ok'\n",
    )
    for index in range(6):
        _invoke(runtime, f"inv-{index}")
    runtime.close()

    frames = _frames(stdout)
    assert len(_of_type(stdout, "invocation_response")) == 6
    assert len(_of_type(stdout, "rpc_log")) == 120
    assert all(set(frame) <= {"request_id", "type", "payload"} for frame in frames)


def test_worker_init_and_status_responses() -> None:
    runtime, stdout = _runtime()
    _send(runtime, "worker_init_request", {"host_version": "4.0"}, request_id="init-1")
    _send(runtime, "worker_status_request", {}, request_id="status-1")
    runtime.close()

    init = _of_type(stdout, "worker_init_response")[0]
    assert init["request_id"] == "init-1"
    assert init["payload"]["capabilities"]["RawHttpBodyBytes"] == "true"
    assert init["payload"]["result"]["status"] == "success"
    assert _of_type(stdout, "worker_status_response")[0]["request_id"] == "status-1"


def test_invalid_and_unrouted_envelopes_are_dropped() -> None:
    runtime, stdout = _runtime()
    _send(runtime, "invocation_request", {"function_id": "fn-1"})
    _send(runtime, "function_load_request", {"function_id": "fn-1"})
    _send(runtime, "rpc_log", {"message": "from host"})
    _send(runtime, "invocation_cancel", {"invocation_id": "inv-1"})
    runtime.close()

    assert _frames(stdout) == []


def test_malformed_invocation_with_readable_id_gets_failure() -> None:
    runtime, stdout = _runtime()
    _send(runtime, "invocation_request", {"invocation_id": "inv-1", "input_data": "not-a-list"}, request_id="r1")
    runtime.close()

    response = _responses_by_id(stdout)["inv-1"]
    assert response["request_id"] == "r1"
    assert response["payload"]["result"]["status"] == "failure"
    assert "Invalid invocation_request payload" in response["payload"]["result"]["result"]


def test_unknown_typed_data_tags_decode_as_text(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(
        runtime,
        tmp_path,
        "def run(context):\n"
        "    return {'inputs': context.inputs, 'meta': context.binding_data['m']}\n",
    )
    _invoke(
        runtime,
        "inv-1",
        input_data=[
            {"name": "a", "data": {"type": "collection_string", "string_val": "hi"}},
            {"name": "b", "data": {"type": "string", "string_val": 5, "extra_field": True}},
        ],
        trigger_metadata={"m": {"type": "stream", "string_val": "x"}},
    )
    runtime.close()

    result = _responses_by_id(stdout)["inv-1"]["payload"]["result"]
    assert result["status"] == "success"
    assert result["result"] == "{'inputs': ['hi', 5], 'meta': 'x'}"


def test_defaulted_second_parameter_completes_through_return(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(runtime, tmp_path, "def run(context, retries=3):\n    context.bind({'out': retries})\n")
    _invoke(runtime, "inv-1")
    runtime.close()

    responses = _of_type(stdout, "invocation_response")
    assert len(responses) == 1
    outputs = {binding["name"]: binding["data"] for binding in responses[0]["payload"]["output_data"]}
    assert outputs["out"] == {"type": "string", "string_val": "3"}


def test_raise_after_done_adds_failure_response(tmp_path: Path) -> None:
    runtime, stdout = _runtime()
    _load(
        runtime,
        tmp_path,
        "def run(context, done):\n"
        "    done(None, 'partial')\n"
        "    raise RuntimeError('after completion')\n",
    )
    _invoke(runtime, "inv-1")
    runtime.close()

    responses = _of_type(stdout, "invocation_response")
    assert [response["payload"]["result"]["status"] for response in responses] == ["success", "failure"]
    assert responses[0]["payload"]["result"]["result"] == "partial"
    assert "after completion" in responses[1]["payload"]["result"]["exception"]["stack_trace"]


def test_environment_reload_replaces_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(os, "environ", {"OLD": "1"})
    monkeypatch.chdir(tmp_path)
    app_dir = tmp_path / "app"
    app_dir.mkdir()

    runtime, stdout = _runtime()
    _send(
        runtime,
        "function_environment_reload_request",
        {"environment_variables": {"NEW": "2"}, "function_app_directory": str(app_dir)},
        request_id="reload-1",
    )
    runtime.close()

    assert os.environ == {"NEW": "2"}
    assert Path.cwd() == app_dir.resolve()
    response = _of_type(stdout, "function_environment_reload_response")[0]
    assert response["request_id"] == "reload-1"
    assert response["payload"]["result"]["status"] == "success"
    messages = [frame["payload"]["message"] for frame in _of_type(stdout, "rpc_log")]
    assert messages[0] == "Reloading environment variables. Found 1 variables to reload."
    assert all(frame["payload"]["category"] == "System" for frame in _of_type(stdout, "rpc_log"))


def test_environment_reload_reports_bad_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(os, "environ", {})
    monkeypatch.chdir(tmp_path)

    runtime, stdout = _runtime()
    _send(
        runtime,
        "function_environment_reload_request",
        {"function_app_directory": str(tmp_path / "missing")},
    )
    runtime.close()

    result = _of_type(stdout, "function_environment_reload_response")[0]["payload"]["result"]
    assert result["status"] == "failure"


def test_start_stream_carries_configured_request_id(tmp_path: Path) -> None:
    config = Config(config_path=tmp_path / "absent.yaml", environ={})
    config.apply_overrides(request_id="boot-1", max_workers=2)
    runtime, stdout = _runtime(config)

    runtime.start_stream()
    runtime.close()

    assert _frames(stdout) == [{"request_id": "boot-1", "type": "start_stream", "payload": {}}]


def test_accepts_callback_inspects_positional_parameters() -> None:
    def one(context):
        return None

    def two(context, done):
        return None

    def star(*args):
        return None

    def defaulted(context, retries=3):
        return None

    assert accepts_callback(defaulted) is False
    assert accepts_callback(one) is False
    assert accepts_callback(two) is True
    assert accepts_callback(star) is True
