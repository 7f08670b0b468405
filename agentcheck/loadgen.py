"""Send statsd, collectd and embedded-metric-format load to a local agent."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import socket
import struct
import threading
import time
from typing import Any, Callable, Sequence

logger = logging.getLogger(__name__)

LOCALHOST = "127.0.0.1"
STATSD_PORT = 8125
STATSD_NAMESPACE = "statsd"
STATSD_MAX_MESSAGES_PER_PAYLOAD = 100
COLLECTD_PORT = 25826
COLLECTD_BUFFER_SIZE = 1452
EMF_PORT = 25888
EMF_CONNECT_TIMEOUT = 10.0
EMF_TICK_SECONDS = 60.0

_PART_HOST = 0x0000
_PART_PLUGIN = 0x0002
_PART_PLUGIN_INSTANCE = 0x0003
_PART_TYPE = 0x0004
_PART_TYPE_INSTANCE = 0x0005
_PART_VALUES = 0x0006
_PART_TIME_HR = 0x0008
_PART_INTERVAL_HR = 0x0009

_VALUE_ENCODINGS: dict[str, tuple[int, Callable[[Any], bytes]]] = {
    "counter": (0, lambda v: struct.pack(">Q", int(v))),
    "gauge": (1, lambda v: struct.pack("<d", float(v))),
    "derive": (2, lambda v: struct.pack(">q", int(v))),
    "absolute": (3, lambda v: struct.pack(">Q", int(v))),
}


def _run_ticks(start: float, interval: float, duration: float, action: Callable[[], None]) -> None:
    """Call ``action`` every ``interval`` seconds until ``duration`` after ``start``."""
    if interval <= 0:
        raise ValueError("sending interval must be positive")
    deadline = start + duration
    next_tick = start + interval
    while next_tick < deadline:
        delay = next_tick - time.monotonic()
        if delay > 0:
            time.sleep(delay)
        action()
        next_tick += interval
    delay = deadline - time.monotonic()
    if delay > 0:
        time.sleep(delay)


def _format_number(value: float) -> str:
    return f"{value:g}" if float(value) != int(value) else str(int(value))


def statsd_lines(metric_per_interval: int, tags: Sequence[str]) -> list[str]:
    """Return one interval's statsd lines: a counter and a gauge per index."""
    suffix = f"|#{','.join(tags)}" if tags else ""
    lines = []
    for t in range(1, metric_per_interval // 2 + 1):
        lines.append(f"{STATSD_NAMESPACE}.counter_{t}:{t}|c{suffix}")
        lines.append(f"{STATSD_NAMESPACE}.gauge_{t}:{_format_number(t)}|g{suffix}")
    return lines


def _send_statsd(sock: socket.socket, lines: Sequence[str]) -> None:
    for offset in range(0, len(lines), STATSD_MAX_MESSAGES_PER_PAYLOAD):
        batch = lines[offset:offset + STATSD_MAX_MESSAGES_PER_PAYLOAD]
        sock.send("\n".join(batch).encode())


def send_statsd_metrics(
    metric_per_interval: int, tags: Sequence[str], sending_interval: float, duration: float
) -> None:
    """Send statsd counters and gauges to the local agent for ``duration`` seconds."""
    lines = statsd_lines(metric_per_interval, list(tags))
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.connect((LOCALHOST, STATSD_PORT))
        start = time.monotonic()
        _send_statsd(sock, lines)

        def tick() -> None:
            with contextlib.suppress(OSError):
                _send_statsd(sock, lines)

        _run_ticks(start, sending_interval, duration, tick)


def _string_part(kind: int, text: str) -> bytes:
    data = text.encode() + b"\0"
    return struct.pack(">HH", kind, 4 + len(data)) + data


def _number_part(kind: int, number: int) -> bytes:
    return struct.pack(">HHQ", kind, 12, number)


def collectd_packet(
    host: str,
    plugin: str,
    type_name: str,
    value: float,
    timestamp: float,
    interval: float,
) -> bytes:
    """Encode one value list in the collectd binary network protocol.

    ``type_name`` selects the value encoding (counter, gauge, derive or absolute);
    ``timestamp`` and ``interval`` are in seconds. Empty names are left out.
    """
    try:
        code, encode = _VALUE_ENCODINGS[type_name]
    except KeyError:
        raise ValueError(f"unsupported collectd value type {type_name!r}") from None
    parts = [
        _string_part(kind, text)
        for kind, text in ((_PART_HOST, host), (_PART_PLUGIN, plugin), (_PART_TYPE, type_name))
        if text
    ]
    parts.append(_number_part(_PART_TIME_HR, int(timestamp * 2**30)))
    parts.append(_number_part(_PART_INTERVAL_HR, int(interval * 2**30)))
    parts.append(struct.pack(">HHH", _PART_VALUES, 4 + 2 + 9, 1) + bytes([code]) + encode(value))
    return b"".join(parts)


def _collectd_hostname() -> str:
    return os.environ.get("COLLECTD_HOSTNAME") or socket.gethostname()


class _CollectdBuffer:
    """Accumulates packets and sends them in datagrams no larger than the buffer size."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._pending = bytearray()

    def write(self, packet: bytes) -> None:
        if self._pending and len(self._pending) + len(packet) > COLLECTD_BUFFER_SIZE:
            self.flush()
        self._pending.extend(packet)

    def flush(self) -> None:
        if self._pending:
            self._sock.send(bytes(self._pending))
            self._pending.clear()


def _write_collectd_batch(buffer: _CollectdBuffer, metric_per_interval: int) -> None:
    for t in range(1, metric_per_interval // 2 + 1):
        now = time.time()
        host = _collectd_hostname()
        buffer.write(collectd_packet(host, f"gauge_{t}", "gauge", t, now, 60))
        buffer.write(collectd_packet(host, f"counter_{t}", "counter", t, now, 60))


def send_collectd_metrics(metric_per_interval: int, sending_interval: float, duration: float) -> None:
    """Send collectd gauges and counters to the local agent for ``duration`` seconds."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.connect((LOCALHOST, COLLECTD_PORT))
        buffer = _CollectdBuffer(sock)
        start = time.monotonic()
        _write_collectd_batch(buffer, metric_per_interval)
        time.sleep(30)
        buffer.flush()

        def tick() -> None:
            _write_collectd_batch(buffer, metric_per_interval)
            buffer.flush()

        _run_ticks(start, sending_interval, duration, tick)


def emf_document(
    log_group: str, namespace: str, metric_name: str, value: float, timestamp: float
) -> dict:
    """Build one embedded-metric-format record; ``timestamp`` is in epoch seconds."""
    return {
        "_aws": {
            "Timestamp": int(timestamp * 1000),
            "CloudWatchMetrics": [
                {
                    "Namespace": namespace,
                    "Dimensions": [["InstanceId"]],
                    "Metrics": [{"Name": metric_name, "Unit": "Milliseconds"}],
                }
            ],
            "LogGroupName": log_group,
        },
        "InstanceId": log_group,
        metric_name: value,
    }


def _send_emf_batch(conn: socket.socket, metric_per_interval: int, log_group: str, namespace: str) -> None:
    for t in range(1, metric_per_interval + 1):
        document = emf_document(log_group, namespace, f"emf_time_{t}", t, time.time())
        with contextlib.suppress(OSError):
            conn.sendall((json.dumps(document) + "\n").encode())


def send_emf_metrics(
    metric_per_interval: int,
    log_group: str,
    namespace: str,
    sending_interval: float,
    duration: float,
) -> None:
    """Send EMF records over TCP to the local agent, once a minute, for ``duration`` seconds."""
    with socket.create_connection((LOCALHOST, EMF_PORT), timeout=EMF_CONNECT_TIMEOUT) as conn:
        start = time.monotonic()
        _send_emf_batch(conn, metric_per_interval, log_group, namespace)
        _run_ticks(
            start,
            EMF_TICK_SECONDS,
            duration,
            lambda: _send_emf_batch(conn, metric_per_interval, log_group, namespace),
        )


def start_sending_metrics(
    receiver: str,
    duration: float,
    sending_interval: float,
    metric_per_interval: int,
    log_group: str,
    namespace: str,
) -> threading.Thread:
    """Start sending load for ``receiver`` (statsd, collectd or emf) in the background.

    An unknown receiver sends nothing. Failures are logged by the background thread.
    """
    senders: dict[str, Callable[[], None]] = {
        "statsd": lambda: send_statsd_metrics(metric_per_interval, [], sending_interval, duration),
        "collectd": lambda: send_collectd_metrics(metric_per_interval, sending_interval, duration),
        "emf": lambda: send_emf_metrics(
            metric_per_interval, log_group, namespace, sending_interval, duration
        ),
    }
    sender = senders.get(receiver)

    def run() -> None:
        if sender is None:
            return
        try:
            sender()
        except Exception as exc:
            logger.error("sending %s metrics failed: %s", receiver, exc)

    thread = threading.Thread(target=run, name=f"load-{receiver}", daemon=True)
    thread.start()
    return thread