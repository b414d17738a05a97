#!/usr/bin/env python3
"""Passive probe for the route-change stream.

Connects to the configured broker, subscribes to
``vehicle/<id>/route-started`` (or the wildcard when no vehicle is given)
and prints every message together with how it would be parsed.

Use this to check retained messages and event timestamps on a broker.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from routesync._constants import WILDCARD_ROUTE_TOPIC, route_started_topic  # noqa: E402
from routesync._mqtt import ChannelMessage, RouteChannelRuntime  # noqa: E402
from routesync.config import RouteSyncConfig  # noqa: E402
from routesync.ingestion.messages import parse_route_message  # noqa: E402

_LOG = logging.getLogger("route_event_probe")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Passive probe for the route-started topic.",
    )
    parser.add_argument(
        "--vehicle",
        default=None,
        help="Vehicle id to subscribe for (default: wildcard).",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Pretty-print raw JSON payloads.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_message(message: ChannelMessage, *, pretty: bool) -> None:
    ts_text = time.strftime("%Y-%m-%d %H:%M:%S")
    print(f"[probe] {ts_text} topic={message.topic} retained={message.retained} bytes={len(message.payload)}")
    try:
        parsed = json.loads(message.payload)
    except ValueError:
        print(f"[probe]   payload is not JSON: {message.payload[:120]!r}")
    else:
        print(json.dumps(parsed, indent=2 if pretty else None, ensure_ascii=False, sort_keys=True))

    event = parse_route_message(message.topic, message.payload, retained=message.retained)
    if event is None:
        print("[probe]   -> discarded")
    else:
        print(
            f"[probe]   -> route_id={event.route_id} kind={event.kind} "
            f"timestamp={event.timestamp.isoformat() if event.timestamp else '-'}"
        )


async def _run(args: argparse.Namespace) -> int:
    config = RouteSyncConfig.from_env()
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    count = 0

    def on_message(message: ChannelMessage) -> None:
        nonlocal count
        count += 1
        _print_message(message, pretty=args.json)

    def on_connection_change(connected: bool) -> None:
        print(f"[probe] {'Connected' if connected else 'Disconnected'}")

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    runtime = RouteChannelRuntime(
        loop=loop,
        config=config,
        on_message=on_message,
        on_connection_change=on_connection_change,
        logger=_LOG,
    )
    topic = route_started_topic(args.vehicle) if args.vehicle else WILDCARD_ROUTE_TOPIC
    print(f"[probe] broker={config.mqtt_host}:{config.mqtt_port} transport={config.mqtt_transport} topic={topic}")
    try:
        await loop.run_in_executor(None, runtime.start)
    except OSError as exc:  # pragma: no cover - network/system interaction
        print(f"[probe] Connect failed: {exc}", file=sys.stderr)
        return 2
    runtime.subscribe(topic)

    started = time.monotonic()
    try:
        while not stop.is_set():
            timeout = None
            if args.duration > 0:
                timeout = args.duration - (time.monotonic() - started)
                if timeout <= 0:
                    print(f"[probe] Reached --duration={args.duration}s, stopping.")
                    break
            try:
                await asyncio.wait_for(stop.wait(), timeout)
            except TimeoutError:
                continue
    finally:
        await loop.run_in_executor(None, runtime.stop)

    print(f"[probe] Received {count} message(s)")
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(_main())
