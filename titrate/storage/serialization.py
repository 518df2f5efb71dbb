"""
JSON serialization for stored columns.

Dose schedules are stored as a JSON list of stage objects and rebuilt into
an immutable DoseSchedule on load.
"""

import json
from datetime import date, datetime
from typing import Any

from titrate.storage.errors import SerializationError
from titrate.types import DoseSchedule


def serialize(data: Any) -> str:
    """
    Serialize data to a JSON string.

    Raises:
        SerializationError: If the data is not JSON serializable
    """
    try:
        return json.dumps(data, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(
            message=f"Failed to serialize data: {e}",
            operation="serialize",
            data_type=type(data).__name__,
        ) from e


def deserialize(data: str | bytes) -> Any:
    """
    Deserialize a JSON string.

    Raises:
        SerializationError: If the string is not valid JSON
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8")

    try:
        return json.loads(data)
    except (json.JSONDecodeError, ValueError) as e:
        raise SerializationError(
            message=f"Failed to deserialize data: {e}",
            operation="deserialize",
            data_type="str",
        ) from e


def serialize_schedule(schedule: DoseSchedule) -> str:
    return serialize(schedule.to_list())


def deserialize_schedule(data: str | bytes | None) -> DoseSchedule:
    if not data:
        return DoseSchedule()
    try:
        return DoseSchedule.from_list(deserialize(data))
    except (KeyError, TypeError, ValueError) as e:
        raise SerializationError(
            message=f"Stored dose schedule is malformed: {e}",
            operation="deserialize",
            data_type="DoseSchedule",
        ) from e


def to_iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
