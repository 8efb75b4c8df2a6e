"""Base model and timestamp helpers for backend records.

Every record model inherits from :class:`IcewatchModel` which provides:

* frozen instances, so snapshots handed to readers cannot be mutated;
* ``extra="ignore"`` so new backend columns do not break parsing;
* a read-only ``raw`` mapping that captures the original row.

Timestamp columns use :data:`Timestamp`, which accepts the formats the REST
and realtime interfaces emit (ISO 8601 with ``T`` or space separator, short
``+00`` offsets, epoch seconds) and always yields timezone-aware UTC values.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, model_validator


def parse_timestamp(value: Any) -> datetime | None:
    """Convert a backend timestamp to an aware UTC datetime.

    Returns ``None`` for ``None`` and blank strings.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=UTC)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def coerce_float(value: Any) -> float | None:
    """Parse a NUMERIC column; blanks and NaN become ``None``."""
    if value is None or value == "":
        return None
    result = float(value)
    if math.isnan(result):
        return None
    return result


def coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


Timestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces backend timestamps to aware UTC datetimes."""


def _read_only(value: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(value))


RawRow = Annotated[Mapping[str, Any], AfterValidator(_read_only)]


class IcewatchModel(BaseModel):
    """Base for backend record models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: RawRow = Field(default_factory=lambda: MappingProxyType({}), exclude=True, repr=False)
    """Original row as received from the backend (top level is read-only)."""

    @model_validator(mode="before")
    @classmethod
    def _stash_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        # Only auto-stash when not explicitly provided.
        if "raw" in values:
            return values
        stashed = dict(values)
        stashed["raw"] = dict(values)
        return stashed
