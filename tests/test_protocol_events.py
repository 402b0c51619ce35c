from funcworker.protocol.events import LogForwarder


def test_log_forwarder_writes_uncorrelated_rpc_log() -> None:
    emitted = []
    forwarder = LogForwarder(send=emitted.append)

    record = forwarder.forward("inv-1", "Invocation", "hello", "warning")
    forwarder.forward(None, "System", "reloading")

    assert record.message == "hello"
    assert emitted[0].type == "rpc_log"
    assert emitted[0].request_id is None
    assert emitted[0].payload == {
        "invocation_id": "inv-1",
        "category": "Invocation",
        "level": "warning",
        "message": "hello",
    }
    assert emitted[1].payload == {"category": "System", "level": "information", "message": "reloading"}
