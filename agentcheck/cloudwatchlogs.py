"""Helpers for reading, checking and cleaning up CloudWatch Logs data."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, Mapping

import jsonschema

logger = logging.getLogger(__name__)

STANDARD_RETRIES = 3
LOG_STREAM_RETRIES = 20
RESOURCE_NOT_FOUND = "ResourceNotFoundException"

Sleep = Callable[[float], None]


def _is_resource_not_found(exc: BaseException) -> bool:
    """Tell whether an error from the service means the resource does not exist."""
    if any(cls.__name__ == RESOURCE_NOT_FOUND for cls in type(exc).__mro__):
        return True
    response = getattr(exc, "response", None)
    if isinstance(response, Mapping):
        error = response.get("Error")
        if isinstance(error, Mapping) and error.get("Code") == RESOURCE_NOT_FOUND:
            return True
    return False


def _to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def delete_log_group_and_stream(client: Any, log_group_name: str, log_stream_name: str) -> None:
    """Delete a log stream and then its log group, ignoring ones already gone."""
    delete_log_stream(client, log_group_name, log_stream_name)
    delete_log_group(client, log_group_name)


def delete_log_stream(client: Any, log_group_name: str, log_stream_name: str) -> None:
    """Delete a log stream; failures other than a missing stream are logged."""
    try:
        client.delete_log_stream(logGroupName=log_group_name, logStreamName=log_stream_name)
    except Exception as exc:  # noqa: BLE001 - cleanup never fails the caller
        if not _is_resource_not_found(exc):
            logger.warning("Error occurred while deleting log stream %s: %s", log_stream_name, exc)


def delete_log_group(client: Any, log_group_name: str) -> None:
    """Delete a log group; failures other than a missing group are logged."""
    try:
        client.delete_log_group(logGroupName=log_group_name)
    except Exception as exc:  # noqa: BLE001 - cleanup never fails the caller
        if not _is_resource_not_found(exc):
            logger.warning("Error occurred while deleting log group %s: %s", log_group_name, exc)


def validate_logs(
    client: Any,
    log_group: str,
    log_stream: str,
    since: datetime | None,
    until: datetime | None,
    validator: Callable[[list[str]], bool],
    sleep: Sleep = time.sleep,
) -> bool:
    """Fetch the stream's messages in the time window and apply ``validator`` to them."""
    logger.info("Checking %s/%s", log_group, log_stream)
    found = get_logs_since(client, log_group, log_stream, since, until, sleep)
    return validator(found)


def get_logs_since(
    client: Any,
    log_group: str,
    log_stream: str,
    since: datetime | None,
    until: datetime | None,
    sleep: Sleep = time.sleep,
) -> list[str]:
    """Page through GetLogEvents from the head of the stream and return every message.

    A missing group or stream is retried after a pause up to ``STANDARD_RETRIES``
    times; any other error is raised at once.
    """
    params: dict[str, Any] = {
        "logGroupName": log_group,
        "logStreamName": log_stream,
        "startFromHead": True,
    }
    if since is not None:
        params["startTime"] = _to_millis(since)
    if until is not None:
        params["endTime"] = _to_millis(until)

    found: list[str] = []
    next_token: str | None = None
    attempts = 0

    while True:
        if next_token is not None:
            params["nextToken"] = next_token
        attempts += 1
        try:
            output = client.get_log_events(**params)
        except Exception as exc:
            if _is_resource_not_found(exc) and attempts <= STANDARD_RETRIES:
                sleep(30)
                continue
            raise

        found.extend(event["message"] for event in output.get("events", []))

        forward = output.get("nextForwardToken")
        if next_token is not None and forward == next_token:
            logger.info(
                "Done paginating log events for %s/%s and found %d logs",
                log_group, log_stream, len(found),
            )
            break
        if forward is None:
            break
        next_token = forward

    return found


def log_group_exists(client: Any, log_group_name: str) -> bool:
    """Tell whether any log group starts with ``log_group_name``."""
    try:
        output = client.describe_log_groups(logGroupNamePrefix=log_group_name)
    except Exception as exc:  # noqa: BLE001 - an unanswerable check counts as absent
        logger.warning("error occurred while calling DescribeLogGroups: %s", exc)
        return False
    return len(output.get("logGroups", [])) > 0


def get_log_streams(client: Any, log_group_name: str, sleep: Sleep = time.sleep) -> list[dict]:
    """Return up to ten most recently written streams of a group, waiting for them to appear."""
    for _ in range(LOG_STREAM_RETRIES):
        try:
            output = client.describe_log_streams(
                logGroupName=log_group_name,
                orderBy="LastEventTime",
                descending=True,
                limit=10,
            )
        except Exception as exc:  # noqa: BLE001 - retried
            logger.warning("failed to get log streams for log group: %s - err: %s", log_group_name, exc)
            continue

        streams = output.get("logStreams", [])
        if streams:
            return list(streams)
        sleep(10)

    return []


def match_emf_log_with_schema(
    log_entry: str,
    schema: Mapping[str, Any] | Any,
    log_validator: Callable[[str], bool],
) -> bool:
    """Check a log entry against a JSON schema, then against ``log_validator``.

    ``schema`` is either a schema document or a ready jsonschema validator.
    """
    try:
        document = json.loads(log_entry)
    except ValueError as exc:
        logger.warning("failed to execute schema validator: %s", exc)
        return False

    if isinstance(schema, Mapping):
        validator_cls = jsonschema.validators.validator_for(schema)
        checker = validator_cls(schema)
    else:
        checker = schema

    errors = list(checker.iter_errors(document))
    if errors:
        logger.warning("failed schema validation: %s", [error.message for error in errors])
        return False

    return log_validator(log_entry)