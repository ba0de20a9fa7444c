#!/usr/bin/env python3
"""Live fleet monitor.

Connects to the broker named by ``PULSAR_MQTT_*`` (or the command line),
subscribes to ``<root>/#`` and prints liveness changes, notifications and a
periodic fleet health summary. Optionally sends one command per online
device on startup.
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
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pulsarfleet import FleetConfig, FleetMqttRuntime, FleetSession, NotificationEntry  # noqa: E402
from pulsarfleet.exceptions import FleetError  # noqa: E402

_LOG = logging.getLogger("fleet_monitor")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Watch a pulsar device fleet over MQTT.",
    )
    parser.add_argument("--host", help="Broker host (default: PULSAR_MQTT_HOST).")
    parser.add_argument("--port", type=int, help="Broker port (default: PULSAR_MQTT_PORT or 1883).")
    parser.add_argument("--root", help="Topic root (default: PULSAR_TOPIC_ROOT or 'pulsar').")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--summary-seconds",
        type=int,
        default=10,
        help="Print a fleet summary every N seconds.",
    )
    parser.add_argument(
        "--broadcast",
        metavar="ACTION",
        help="Broadcast ACTION to online devices after the first summary.",
    )
    parser.add_argument(
        "--args",
        default="{}",
        help="JSON object sent as command args with --broadcast.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_notification(entry: NotificationEntry) -> None:
    ts_text = time.strftime("%H:%M:%S", time.localtime(entry.t / 1000))
    device = entry.device_id or "-"
    count = f" x{entry.count}" if entry.count > 1 else ""
    print(f"[fleet] {ts_text} {entry.level.value:<4} {device:<20} {entry.title}{count}: {entry.detail}")


def _print_summary(session: FleetSession) -> None:
    summary = session.health_summary()
    print(
        f"[fleet] devices={summary.total} online={summary.online} "
        f"stale={summary.stale} offline={summary.offline} "
        f"pending_cmds={session.commands.pending_count}"
    )
    for snapshot in session.devices():
        name = snapshot.name or snapshot.id
        print(f"[fleet]   {snapshot.liveness.value:<7} {name:<24} role={snapshot.role}")


async def _run(args: argparse.Namespace, config: FleetConfig) -> int:
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    session = FleetSession(config, on_notification=_print_notification)
    runtime = FleetMqttRuntime(
        loop=loop,
        on_message=session.on_message,
        topic_root=config.topic_root,
        keepalive=config.mqtt_keepalive,
        logger=_LOG,
    )

    async with session:
        try:
            runtime.start(config)
        except FleetError as exc:
            print(f"[fleet] Connect failed: {exc}", file=sys.stderr)
            return 2
        session.set_publisher(runtime.publish)
        print(f"[fleet] Subscribed to {runtime.subscription} on {config.mqtt_host}:{config.mqtt_port}")

        started = time.monotonic()
        broadcast_done = args.broadcast is None
        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=args.summary_seconds)
                except TimeoutError:
                    pass
                _print_summary(session)
                if not broadcast_done:
                    ids = session.broadcast_online(args.broadcast, json.loads(args.args))
                    print(f"[fleet] Broadcast {args.broadcast} -> {len(ids)} command(s)")
                    broadcast_done = True
                if args.duration and time.monotonic() - started >= args.duration:
                    break
        finally:
            session.set_publisher(None)
            runtime.stop()
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, Any] = {}
    if args.host:
        overrides["mqtt_host"] = args.host
    if args.port:
        overrides["mqtt_port"] = args.port
    if args.root:
        overrides["topic_root"] = args.root
    try:
        config = FleetConfig.from_env(**overrides)
    except FleetError as exc:
        print(f"[fleet] Invalid configuration: {exc}", file=sys.stderr)
        return 2

    try:
        args_obj = json.loads(args.args)
    except ValueError as exc:
        print(f"[fleet] --args is not valid JSON: {exc}", file=sys.stderr)
        return 2
    if not isinstance(args_obj, dict):
        print("[fleet] --args must be a JSON object", file=sys.stderr)
        return 2

    return asyncio.run(_run(args, config))


if __name__ == "__main__":
    raise SystemExit(_main())
