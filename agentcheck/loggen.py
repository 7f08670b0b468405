"""Generate agent log configurations and write log lines for the agent to collect."""

from __future__ import annotations

import contextlib
import json
import logging
import platform
import subprocess
import threading
import time
from pathlib import Path
from typing import Any, Iterable, Mapping

from agentcheck.agent import AgentCommandError

logger = logging.getLogger(__name__)

LOG_LINE = "# %d - This is a log line. \n"
WINDOWS_TEMP_FOLDER = "C:/Users/Administrator/AppData/Local/Temp"
UNIX_TEMP_FOLDER = "/tmp"
WINDOWS_EVENTS_SOURCE = "WindowsEvents"


def _temp_folder() -> str:
    if platform.system() == "Windows":
        return WINDOWS_TEMP_FOLDER
    return UNIX_TEMP_FOLDER


def _collect_files(config: Mapping[str, Any]) -> dict:
    """Return the ``logs.logs_collected.files`` section of an agent config."""
    try:
        files = config["logs"]["logs_collected"]["files"]
    except (KeyError, TypeError) as exc:
        raise ValueError("config has no logs.logs_collected.files section") from exc
    if not isinstance(files, dict):
        raise ValueError("logs.logs_collected.files must be an object")
    return files


def generate_log_config(number_monitored_logs: int, file_path: str) -> None:
    """Rewrite the config's collect list to monitor ``test1.log`` .. ``testN.log``.

    The existing config must already contain a ``collect_list`` section; it is replaced.
    """
    if number_monitored_logs == 0 or not file_path:
        raise ValueError("number of monitored logs or file path is empty")

    path = Path(file_path)
    config = json.loads(path.read_text(encoding="utf-8"))
    files = _collect_files(config)

    temp_folder = _temp_folder()
    files["collect_list"] = [
        {
            "file_path": f"{temp_folder}/test{i}.log",
            "log_group_name": "{instance_id}",
            "log_stream_name": f"test{i}.log",
            "retention_in_days": 1,
            "timezone": "UTC",
        }
        for i in range(1, number_monitored_logs + 1)
    ]

    logger.info("Writing config file with %d logs to %s", number_monitored_logs, file_path)
    path.write_text(
        json.dumps(config, indent=1, sort_keys=True, ensure_ascii=False),
        encoding="utf-8",
    )


def log_file_paths(config_path: str) -> list[str]:
    """Return the file paths the agent config monitors."""
    config = json.loads(Path(config_path).read_text(encoding="utf-8"))
    collect_list = _collect_files(config).get("collect_list")
    if not isinstance(collect_list, list):
        raise ValueError("collect_list must be a list")
    return [entry["file_path"] for entry in collect_list]


def _write_batch(handle: Any, count: int) -> None:
    handle.write("".join(LOG_LINE % i for i in range(count)))
    handle.flush()


def _sleep_until(moment: float) -> None:
    remaining = moment - time.monotonic()
    if remaining > 0:
        time.sleep(remaining)


def write_to_logs(
    file_path: str, duration: float, sending_interval: float, lines_per_minute: int
) -> None:
    """Write ``lines_per_minute`` lines now and again every interval for ``duration`` seconds.

    The file is created fresh and removed when writing ends.
    """
    if sending_interval <= 0:
        raise ValueError("sending interval must be positive")
    path = Path(file_path)
    handle = path.open("w", encoding="utf-8")
    try:
        with handle:
            start = time.monotonic()
            deadline = start + duration
            _write_batch(handle, lines_per_minute)
            next_tick = start + sending_interval
            while next_tick < deadline:
                _sleep_until(next_tick)
                with contextlib.suppress(OSError):
                    _write_batch(handle, lines_per_minute)
                next_tick += sending_interval
            _sleep_until(deadline)
    finally:
        path.unlink(missing_ok=True)


def _write_logged(file_path: str, duration: float, sending_interval: float, count: int) -> None:
    try:
        write_to_logs(file_path, duration, sending_interval, count)
    except Exception as exc:
        logger.error("writing logs to %s failed: %s", file_path, exc)


def start_log_write(
    config_path: str, duration: float, sending_interval: float, lines_per_minute: int
) -> list[threading.Thread]:
    """Start one background writer per log file monitored by the config."""
    threads = []
    for path in log_file_paths(config_path):
        thread = threading.Thread(
            target=_write_logged,
            args=(path, duration, sending_interval, lines_per_minute),
            name=f"log-writer-{path}",
            daemon=True,
        )
        thread.start()
        threads.append(thread)
    return threads


def create_windows_event(log_name: str, level: str, message: str) -> None:
    """Create a Windows event with ``eventcreate``."""
    argv = [
        "eventcreate", "/ID", "1", "/L", log_name, "/T", level,
        "/SO", "MYEVENTSOURCE" + log_name, "/D", message,
    ]
    try:
        completed = subprocess.run(argv, capture_output=True, text=True, check=False)
    except OSError as exc:
        raise AgentCommandError(f"could not run eventcreate: {exc}") from exc
    if completed.returncode != 0:
        logger.error(
            "Windows event creation failed: status %d; the output is: %s",
            completed.returncode, completed.stdout,
        )
        raise AgentCommandError(
            f"eventcreate exited with status {completed.returncode}",
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            returncode=completed.returncode,
        )
    logger.info(
        "Windows Event is successfully created for logname: %s, loglevel: %s, logmsg: %s",
        log_name, level, message,
    )


def _field(validation: Any, name: str) -> str:
    if isinstance(validation, Mapping):
        return validation.get(name) or ""
    return getattr(validation, name, "") or ""


def _raise_combined(errors: list[Exception]) -> None:
    if not errors:
        return
    if len(errors) == 1:
        raise errors[0]
    raise AgentCommandError("; ".join(str(error) for error in errors))


def generate_windows_events(validations: Iterable[Any]) -> None:
    """Create an event for every Windows-event validation that names a level.

    Each validation is a mapping or object with ``log_source``, ``log_level``,
    ``log_stream`` and ``log_value``. All events are attempted before failures are raised.
    """
    errors: list[Exception] = []
    for validation in validations:
        level = _field(validation, "log_level")
        if _field(validation, "log_source") == WINDOWS_EVENTS_SOURCE and level:
            try:
                create_windows_event(
                    _field(validation, "log_stream"), level, _field(validation, "log_value")
                )
            except AgentCommandError as exc:
                errors.append(exc)
    _raise_combined(errors)


def generate_logs(
    config_path: str,
    duration: float,
    sending_interval: float,
    lines_per_minute: int,
    validations: Iterable[Any],
) -> list[threading.Thread]:
    """Start the log writers and create the requested Windows events."""
    errors: list[Exception] = []
    threads: list[threading.Thread] = []
    try:
        threads = start_log_write(config_path, duration, sending_interval, lines_per_minute)
    except (OSError, ValueError) as exc:
        errors.append(exc)
    try:
        generate_windows_events(validations)
    except AgentCommandError as exc:
        errors.append(exc)
    _raise_combined(errors)
    return threads