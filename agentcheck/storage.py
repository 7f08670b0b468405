"""DynamoDB items, S3 downloads and SSM string parameters."""

from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Any, Mapping, Sequence

logger = logging.getLogger(__name__)

PARAMETER_NOT_FOUND = "Parameter not found"


class ItemNotFoundError(Exception):
    """No matching item exists in the table."""


def _format_number(value: int | float | Decimal) -> str:
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"cannot marshal non-finite number {value!r}")
    number = Decimal(repr(value)) if isinstance(value, float) else value
    if not number.is_finite():
        raise ValueError(f"cannot marshal non-finite number {value!r}")
    return format(number, "f")


def _parse_number(text: str) -> int | float:
    try:
        return int(text)
    except ValueError:
        return float(text)


def _marshal_value(value: Any) -> dict:
    if value is None:
        return {"NULL": True}
    if isinstance(value, bool):
        return {"BOOL": value}
    if isinstance(value, (int, float, Decimal)):
        return {"N": _format_number(value)}
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, (bytes, bytearray)):
        return {"B": bytes(value)}
    if isinstance(value, Mapping):
        return {"M": marshal_item(value)}
    if isinstance(value, (set, frozenset)):
        if not value:
            raise ValueError("cannot marshal an empty set")
        if all(isinstance(v, str) for v in value):
            return {"SS": sorted(value)}
        if all(isinstance(v, (bytes, bytearray)) for v in value):
            return {"BS": sorted(bytes(v) for v in value)}
        if all(isinstance(v, (int, float, Decimal)) and not isinstance(v, bool) for v in value):
            return {"NS": sorted(_format_number(v) for v in value)}
        raise TypeError("set members must all be strings, bytes or numbers")
    if isinstance(value, (list, tuple)):
        return {"L": [_marshal_value(v) for v in value]}
    raise TypeError(f"cannot marshal value of type {type(value).__name__}")


def _unmarshal_value(attribute: Mapping[str, Any]) -> Any:
    if len(attribute) != 1:
        raise ValueError(f"attribute value must have exactly one type: {attribute!r}")
    (kind, raw), = attribute.items()
    if kind == "NULL":
        return None
    if kind in ("S", "BOOL"):
        return raw
    if kind == "B":
        return bytes(raw)
    if kind == "N":
        return _parse_number(raw)
    if kind == "M":
        return unmarshal_item(raw)
    if kind == "L":
        return [_unmarshal_value(v) for v in raw]
    if kind == "SS":
        return set(raw)
    if kind == "NS":
        return {_parse_number(v) for v in raw}
    if kind == "BS":
        return {bytes(v) for v in raw}
    raise ValueError(f"unknown attribute value type {kind!r}")


def marshal_item(item: Mapping[str, Any]) -> dict:
    """Convert a plain mapping to DynamoDB attribute values."""
    return {str(key): _marshal_value(value) for key, value in item.items()}


def unmarshal_item(item: Mapping[str, Any]) -> dict:
    """Convert DynamoDB attribute values back to plain Python values.

    Numbers become ``int`` when they are written as integers, ``float`` otherwise.
    """
    return {key: _unmarshal_value(value) for key, value in item.items()}


def _two_conditions(attributes: Sequence[str], values: Sequence[str]) -> tuple[dict, dict]:
    # DynamoDB key conditions accept at most two keys, so exactly two are used.
    if len(attributes) < 2 or len(values) < 2:
        raise ValueError("two checking attributes and two values are required")
    names = {"#first_attribute": attributes[0], "#second_attribute": attributes[1]}
    expression_values = {
        ":first_attribute": {"S": values[0]},
        ":second_attribute": {"S": values[1]},
    }
    return names, expression_values


def replace_item(client: Any, table_name: str, item: Mapping[str, Any]) -> None:
    """Write an item, replacing any item with the same key."""
    client.put_item(Item=marshal_item(item), TableName=table_name)


def add_item_if_not_exist(
    client: Any,
    table_name: str,
    attributes: Sequence[str],
    values: Sequence[str],
    item: Mapping[str, Any],
) -> None:
    """Write an item unless one already has both attribute values."""
    marshalled = marshal_item(item)
    names, expression_values = _two_conditions(attributes, values)
    client.put_item(
        Item=marshalled,
        TableName=table_name,
        ConditionExpression=(
            "#first_attribute <> :first_attribute and #second_attribute <> :second_attribute"
        ),
        ExpressionAttributeNames=names,
        ExpressionAttributeValues=expression_values,
    )


def get_item(
    client: Any,
    table_name: str,
    index_name: str,
    attributes: Sequence[str],
    values: Sequence[str],
    item: Mapping[str, Any] | None,
) -> dict:
    """Return the first item matching both attribute values.

    When nothing matches and ``item`` is given, it is stored and returned;
    otherwise :class:`ItemNotFoundError` is raised.
    """
    names, expression_values = _two_conditions(attributes, values)
    data = client.query(
        TableName=table_name,
        IndexName=index_name,
        KeyConditionExpression=(
            "#first_attribute = :first_attribute and #second_attribute = :second_attribute"
        ),
        ExpressionAttributeNames=names,
        ExpressionAttributeValues=expression_values,
        ScanIndexForward=True,
    )
    found = [unmarshal_item(entry) for entry in data.get("Items", [])]
    if found:
        return found[0]
    if item is not None:
        add_item_if_not_exist(client, table_name, attributes, values, item)
        return dict(item)
    raise ItemNotFoundError("there is no exist package from the database")


def download_file(client: Any, bucket: str, key: str, out_filename: str) -> None:
    """Download an S3 object to a local file."""
    logger.info("downloading, %s, %s, to %s...", bucket, key, out_filename)
    try:
        handle = open(out_filename, "wb")
    except OSError as exc:
        logger.error("error: creating file %s err %s", out_filename, exc)
        raise
    with handle:
        try:
            client.download_fileobj(bucket, key, handle)
        except Exception as exc:
            logger.error("error: downloading, %s", exc)
            raise


def put_string_parameter(client: Any, name: str, value: str) -> None:
    """Store a String parameter, overwriting any existing value."""
    client.put_parameter(Name=name, Value=value, Type="String", Overwrite=True)


def get_string_parameter(client: Any, name: str) -> str:
    """Return a parameter's value, or ``"Parameter not found"`` if it cannot be read."""
    try:
        response = client.get_parameter(Name=name)
    except Exception:  # noqa: BLE001 - any failure reads as missing
        return PARAMETER_NOT_FOUND
    return response["Parameter"]["Value"]