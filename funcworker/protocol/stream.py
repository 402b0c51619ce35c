"""Line-delimited JSON envelope stream for worker mode."""

from __future__ import annotations

import json
import logging
import sys
import threading
from io import TextIOBase
from typing import Any, Callable, Dict, Iterator, Optional

from pydantic import ValidationError

from funcworker.protocol.types import Envelope

logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]
EnvelopeHandler = Callable[[Envelope], None]


class EnvelopeStream:
    """Duplex envelope stream over stdio; every write is serialized by one lock."""

    def __init__(
        self,
        *,
        stdin: Optional[TextIOBase] = None,
        stdout: Optional[TextIOBase] = None,
    ) -> None:
        self._running = False
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._write_lock = threading.Lock()

    def send_raw(self, payload: JsonDict) -> None:
        wire = json.dumps(payload, ensure_ascii=True, separators=(",", ":"))
        with self._write_lock:
            self._stdout.write(wire)
            self._stdout.write("\n")
            self._stdout.flush()

    def write(self, envelope: Envelope) -> None:
        self.send_raw(envelope.model_dump(mode="json", exclude_none=True))

    def read_envelopes(self) -> Iterator[Envelope]:
        """Yield inbound envelopes in arrival order until EOF or shutdown."""
        self._running = True
        while self._running:
            line = self._stdin.readline()
            if line == "":
                break

            raw = line.strip()
            if not raw:
                continue

            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as exc:
                logger.warning("Dropping unparseable inbound line: %s", exc)
                continue

            try:
                envelope = Envelope.model_validate(payload)
            except ValidationError as exc:
                logger.warning("Dropping invalid inbound envelope: %s", exc.errors())
                continue

            yield envelope

    def run_forever(self, handler: EnvelopeHandler) -> None:
        for envelope in self.read_envelopes():
            handler(envelope)

    def shutdown(self) -> None:
        self._running = False
