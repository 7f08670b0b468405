"""CloudFormation stack creation, deletion and output lookup."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)

INSTANCE_ID_KEY = "InstanceId"
CREATE_COMPLETE = "CREATE_COMPLETE"


class StackError(Exception):
    """A stack could not be created, deleted or found."""


def create_stack_name(prefix: str) -> str:
    """Append five characters of a time-based UUID to ``prefix``."""
    return prefix + str(uuid.uuid1())[:5]


def start_stack(
    client: Any,
    stack_name: str,
    template_text: str,
    timeout_minutes: int,
    parameters: Iterable[dict] | None,
) -> None:
    """Start creating a stack from a template body."""
    logger.info("Template text : %s", template_text)
    try:
        client.create_stack(
            StackName=stack_name,
            TemplateBody=template_text,
            TimeoutInMinutes=timeout_minutes,
            Parameters=list(parameters or []),
        )
    except Exception as exc:
        raise StackError(f"Failed to create stack {exc}") from exc


def delete_stack(client: Any, stack_name: str) -> None:
    """Delete a stack."""
    try:
        client.delete_stack(StackName=stack_name)
    except Exception as exc:
        raise StackError(f"Could not delete stack {stack_name}") from exc


def find_stack_instance_id(
    client: Any,
    stack_name: str,
    timeout_minutes: int,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Wait, checking once a minute, for the stack's ``InstanceId`` output."""
    for minute in range(timeout_minutes + 1):
        try:
            stacks = client.describe_stacks(StackName=stack_name).get("Stacks", [])
        except Exception:  # noqa: BLE001 - treated as not ready yet
            stacks = None

        if stacks is None or len(stacks) != 1 or stacks[0].get("StackStatus") != CREATE_COMPLETE:
            logger.info("Stack %s not ready in minute %d continue to next minute", stack_name, minute)
        else:
            for output in stacks[0].get("Outputs", []):
                if output.get("OutputKey") == INSTANCE_ID_KEY:
                    value = output["OutputValue"]
                    logger.info("Found instance id %s from stack %s", value, stack_name)
                    return value
        logger.info("Sleep for one minute to wait for stack to start")
        sleep(60)
    raise StackError(f"Stack not created within timeout {stack_name}")