"""Compile loosely typed query parameters into a typed issue predicate."""

import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Type

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from .constants import IssueStatus, Priority
from .errors import InvalidEnumValue, ValidationError, field_error
from .geo import bounding_box, validate_coordinates, validate_radius
from .models.issue import Issue

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}
_LIKE_ESCAPE = "\\"
# an unencoded "+" in a query string arrives as a space before the UTC offset
_SPACED_OFFSET = re.compile(r"(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?) (\d{2}:?\d{2})$")


@dataclass(frozen=True)
class IssueFilter:
    """Typed set of optional issue predicates, combined with AND."""

    status: Optional[IssueStatus] = None
    priority: Optional[Priority] = None
    category: Optional[str] = None
    user_id: Optional[str] = None
    search: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_km: Optional[float] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    has_images: Optional[bool] = None

    @property
    def has_geo(self) -> bool:
        return None not in (self.latitude, self.longitude, self.radius_km)

    def with_owner(self, user_id: str) -> "IssueFilter":
        return replace(self, user_id=user_id)

    def clauses(self) -> List[ColumnElement]:
        """Return SQLAlchemy boolean expressions for every supplied predicate."""
        clauses: List[ColumnElement] = []
        if self.status is not None:
            clauses.append(Issue.status == self.status.value)
        if self.priority is not None:
            clauses.append(Issue.priority == self.priority.value)
        if self.category:
            clauses.append(ilike_contains(Issue.category, self.category))
        if self.user_id:
            clauses.append(Issue.user_id == self.user_id)
        if self.search:
            clauses.append(
                or_(
                    ilike_contains(Issue.title, self.search),
                    ilike_contains(Issue.description, self.search),
                )
            )
        if self.has_geo:
            box = bounding_box(self.latitude, self.longitude, self.radius_km)
            clauses.append(Issue.latitude.between(box.min_latitude, box.max_latitude))
            clauses.append(Issue.longitude.between(box.min_longitude, box.max_longitude))
        if self.start is not None:
            clauses.append(Issue.created_at >= self.start)
        if self.end is not None:
            clauses.append(Issue.created_at <= self.end)
        if self.has_images is not None:
            exists = Issue.image_rows.any()
            clauses.append(exists if self.has_images else ~exists)
        return clauses

    def predicate(self) -> Optional[ColumnElement]:
        clauses = self.clauses()
        if not clauses:
            return None
        return and_(*clauses)


def _contains(text: str) -> str:
    escaped = (
        text.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


def ilike_contains(column, text: str) -> ColumnElement:
    """Case-insensitive substring match with LIKE wildcards taken literally."""
    return column.ilike(_contains(text), escape=_LIKE_ESCAPE)


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def parse_enum(enum_cls: Type, value: Any, field: str):
    """Return the enumeration member for ``value`` or raise ``InvalidEnumValue``."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidEnumValue(
            f"Invalid {field}. Must be one of: {allowed}",
            [field_error(field, f"Must be one of: {allowed}", value)],
        ) from None


def _parse_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        text = _SPACED_OFFSET.sub(r"\1+\2", str(value).strip())
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(
            f"Invalid {field} date",
            [field_error(field, "Must be an ISO-8601 date or datetime", value)],
        ) from None
    # stored timestamps are naive UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValidationError(
        f"Invalid {field} flag",
        [field_error(field, "Must be true or false", value)],
    )


def compile_filter(params: Mapping[str, Any]) -> IssueFilter:
    """Parse raw query parameters into an :class:`IssueFilter`.

    Unknown keys and blank values are dropped. Enumeration, coordinate, radius,
    date and flag values that are present but malformed raise a
    ``ValidationError`` subclass.
    """
    values = {key: _clean(value) for key, value in params.items()}
    values = {key: value for key, value in values.items() if value is not None}

    status = values.get("status")
    priority = values.get("priority")

    latitude = longitude = radius_km = None
    if all(key in values for key in ("latitude", "longitude", "radius")):
        latitude, longitude = validate_coordinates(values["latitude"], values["longitude"])
        radius_km = validate_radius(values["radius"])

    start = _parse_datetime(values["start"], "start") if "start" in values else None
    end = _parse_datetime(values["end"], "end") if "end" in values else None
    if start and end and start > end:
        raise ValidationError(
            "start must be before end",
            [field_error("start", "Must not be later than end", values["start"])],
        )

    has_images = values.get("hasImages")

    return IssueFilter(
        status=parse_enum(IssueStatus, status, "status") if status is not None else None,
        priority=parse_enum(Priority, priority, "priority") if priority is not None else None,
        category=values.get("category"),
        user_id=values.get("userId"),
        search=values.get("search"),
        latitude=latitude,
        longitude=longitude,
        radius_km=radius_km,
        start=start,
        end=end,
        has_images=_parse_bool(has_images, "hasImages") if has_images is not None else None,
    )
