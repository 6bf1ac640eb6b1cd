from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Sequence

from httppal.config import EngineSettings, ExecutionParameters, HttpMethod, RequestDescriptor
from httppal.errors import FatalSchedulingError, RequestValidationError
from httppal.loadgen.runner import ExecutionEngine
from httppal.loadgen.transport import HttpxTransport
from httppal.metrics import AggregateResult, ExecutionProgress, per_second_frame, slowest_calls

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

logger = logging.getLogger(__name__)


def _pairs(values: Sequence[str], sep: str, label: str) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for item in values:
        key, found, value = item.partition(sep)
        if not found:
            msg = f"Invalid {label} '{item}', expected KEY{sep}VALUE"
            raise argparse.ArgumentTypeError(msg)
        parsed[key.strip()] = value.strip()
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Concurrent HTTP request runner")
    parser.add_argument("--url", required=True, help="Target URL, may contain {name} path placeholders")
    parser.add_argument("--method", choices=[m.value for m in HttpMethod], default="GET")
    parser.add_argument("--header", action="append", default=[], help="Header as Name:Value")
    parser.add_argument("--query", action="append", default=[], help="Query parameter as key=value")
    parser.add_argument("--path", action="append", default=[], help="Path parameter as key=value")
    parser.add_argument("--body", default=None)
    parser.add_argument("--timeout", type=float, default=30.0, help="Per-call timeout in seconds")
    parser.add_argument("--no-follow-redirects", action="store_true")

    parser.add_argument("--threads", type=int, default=1)
    parser.add_argument("--iterations", type=int, default=1)
    parser.add_argument("--run-timeout", type=float, default=None, help="Wall-clock budget for the run")
    parser.add_argument("--progress-interval", type=float, default=0.25, help="Seconds between progress lines")

    parser.add_argument("--timeline", action="store_true", help="Print per-second breakdown")
    parser.add_argument("--slowest", type=int, default=0, metavar="N", help="List the N slowest calls")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--log-level", default="WARNING")
    return parser


def _print_progress(progress: ExecutionProgress) -> None:
    print(
        f"\r{progress.completed_requests}/{progress.total_requests} "
        f"ok={progress.successful_requests} failed={progress.failed_requests}",
        end="",
        file=sys.stderr,
        flush=True,
    )


def _report(result: AggregateResult, args: argparse.Namespace) -> None:
    if args.json:
        print(json.dumps(result.to_metadata(), indent=2))
        return
    print(result.summary())
    print(f"Status codes: {dict(result.status_code_distribution)}")
    for message, count in result.error_distribution.items():
        print(f"  {count} x {message}")
    if args.timeline:
        print(per_second_frame(result).to_string(index=False))
    if args.slowest > 0:
        print(f"Slowest {args.slowest} calls:")
        for call in slowest_calls(result, limit=args.slowest):
            print(f"  #{call.call_index} {call.status_code} {call.response_time_ms:.1f}ms")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    try:
        descriptor = RequestDescriptor(
            url=args.url,
            method=HttpMethod(args.method),
            headers=_pairs(args.header, ":", "header"),
            body=args.body,
            timeout_sec=args.timeout,
            follow_redirects=not args.no_follow_redirects,
            query_params=_pairs(args.query, "=", "query parameter"),
            path_params=_pairs(args.path, "=", "path parameter"),
        )
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    parameters = ExecutionParameters(thread_count=args.threads, iterations=args.iterations)
    settings = EngineSettings(progress_interval_sec=args.progress_interval, run_timeout_sec=args.run_timeout)

    with HttpxTransport(max_connections=max(1, args.threads)) as transport:
        engine = ExecutionEngine(transport, settings)
        try:
            result = engine.run(descriptor, parameters, on_progress=None if args.json else _print_progress)
        except RequestValidationError as exc:
            for error in exc.errors:
                print(f"error: {error}", file=sys.stderr)
            return 2
        except FatalSchedulingError as exc:
            logger.error("Run failed: %s", exc)
            return 1
    if not args.json:
        print(file=sys.stderr)
    _report(result, args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
