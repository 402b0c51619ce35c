"""Main entry point for the funcworker language worker."""

from __future__ import annotations

import argparse
import sys
from io import TextIOBase
from pathlib import Path
from typing import Optional, Sequence

from funcworker.app.worker_runtime import WorkerRuntime
from funcworker.config import Config, ConfigError
from funcworker.logging_config import configure_logging


def _build_config(args: argparse.Namespace) -> Config:
    config = Config(config_path=args.config)
    config.apply_overrides(
        worker_id=args.worker_id,
        request_id=args.request_id,
        max_workers=args.max_workers,
        log_level=args.log_level,
    )
    return config


def _run_worker_stdio(config: Config) -> None:
    # Reserve true stdio for the envelope stream.
    rpc_stdin = sys.stdin
    rpc_stdout = sys.stdout
    if not isinstance(rpc_stdin, TextIOBase) or not isinstance(rpc_stdout, TextIOBase):
        raise RuntimeError("Worker stdio transport requires text-based stdio streams")

    # Route prints from user functions away from the envelope stream.
    sys.stdout = sys.stderr

    runtime = WorkerRuntime(config=config, rpc_stdin=rpc_stdin, rpc_stdout=rpc_stdout)
    runtime.run()


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="funcworker")
    parser.add_argument("--config", type=Path, default=None, help="Path to a YAML config file.")
    parser.add_argument("--worker-id", default=None, help="Identifier assigned to this worker by the host.")
    parser.add_argument("--request-id", default=None, help="Correlation id for the start_stream announcement.")
    parser.add_argument("--max-workers", type=int, default=None, help="Concurrent invocation threads.")
    parser.add_argument("--log-level", default=None, help="Diagnostics log level (DEBUG, INFO, ...).")
    args = parser.parse_args(argv)

    try:
        config = _build_config(args)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(2)

    configure_logging(config)
    _run_worker_stdio(config)


if __name__ == "__main__":
    main()
