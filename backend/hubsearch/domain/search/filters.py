"""Search filter variants and their resolution from raw request mappings.

Raw filters are loosely shaped (`{"tags": [...]}`, `{"dateRange": {"from": ...}}`,
`{"reactionCountRange": {"min": 3}}`). They are resolved exactly once, here,
into one of four explicit variants so the query compiler never sniffs shapes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping, Optional, Union

from hubsearch.domain.search import exceptions

CREATED_AT_FIELD = "created_at"
DATE_RANGE_KEYS = ("dateRange", "date_range")
_RANGE_SUFFIXES = ("Range", "_range")
_DATE_BOUND_KEYS = frozenset({"from", "to"})
_NUMERIC_BOUND_KEYS = frozenset({"min", "max"})
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_DATE_MATH = re.compile(r"^now(?:[+-]\d+[yMwdhHms])*(?:/[yMwdhHms])?$")


@dataclass(slots=True, frozen=True)
class ExactFilter:
	field: str
	value: Union[str, int, float, bool]


@dataclass(slots=True, frozen=True)
class MembershipFilter:
	field: str
	values: tuple[Any, ...]


@dataclass(slots=True, frozen=True)
class RangeFilter:
	field: str
	minimum: Optional[float] = None
	maximum: Optional[float] = None


@dataclass(slots=True, frozen=True)
class DateRangeFilter:
	start: Optional[str] = None
	end: Optional[str] = None
	field: str = CREATED_AT_FIELD


SearchFilter = Union[ExactFilter, MembershipFilter, RangeFilter, DateRangeFilter]


def field_name(key: str) -> str:
	"""Map a request key (`communityId`) onto the document field (`community_id`)."""

	return _CAMEL_BOUNDARY.sub("_", key).lower()


def _strip_range_suffix(key: str) -> Optional[str]:
	for suffix in _RANGE_SUFFIXES:
		if key.endswith(suffix) and len(key) > len(suffix):
			return key[: -len(suffix)]
	return None


def _number(key: str, value: Any) -> Optional[float]:
	if value is None or value == "":
		return None
	if isinstance(value, bool):
		raise exceptions.QueryValidationError(f"invalid_range_bound:{key}")
	try:
		number = float(value)
	except (TypeError, ValueError) as exc:
		raise exceptions.QueryValidationError(f"invalid_range_bound:{key}") from exc
	return int(number) if number.is_integer() else number


def _date_bound(key: str, value: Any) -> Optional[str]:
	if value is None or value == "":
		return None
	if isinstance(value, (date, datetime)):
		return value.isoformat()
	if not isinstance(value, str):
		raise exceptions.QueryValidationError(f"invalid_range_bound:{key}")
	text = value.strip()
	if _DATE_MATH.match(text):
		return text
	candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
	try:
		datetime.fromisoformat(candidate)
	except ValueError as exc:
		raise exceptions.QueryValidationError(f"invalid_range_bound:{key}") from exc
	return text


def _resolve_one(key: str, value: Any) -> Optional[SearchFilter]:
	if key in DATE_RANGE_KEYS:
		if not isinstance(value, Mapping) or not set(value).issubset(_DATE_BOUND_KEYS):
			raise exceptions.QueryValidationError(f"invalid_filter:{key}")
		start = _date_bound(key, value.get("from"))
		end = _date_bound(key, value.get("to"))
		if start is None and end is None:
			return None
		return DateRangeFilter(start=start, end=end)

	if isinstance(value, (list, tuple, set)):
		values = tuple(value)
		if not values:
			return None
		return MembershipFilter(field=field_name(key), values=values)

	if isinstance(value, bool):
		return ExactFilter(field=field_name(key), value=value)

	if isinstance(value, Mapping):
		field = _strip_range_suffix(key)
		if field is None or not set(value).issubset(_NUMERIC_BOUND_KEYS):
			raise exceptions.QueryValidationError(f"invalid_filter:{key}")
		minimum = _number(key, value.get("min"))
		maximum = _number(key, value.get("max"))
		if minimum is None and maximum is None:
			return None
		return RangeFilter(field=field_name(field), minimum=minimum, maximum=maximum)

	if isinstance(value, (str, int, float)):
		return ExactFilter(field=field_name(key), value=value)

	raise exceptions.QueryValidationError(f"invalid_filter:{key}")


def resolve_filters(raw: Optional[Mapping[str, Any]]) -> tuple[SearchFilter, ...]:
	"""Translate a raw filter mapping into typed filters.

	`None` values, empty arrays and ranges without any bound are dropped.
	Keys are processed in sorted order so equal mappings resolve identically.
	"""

	if not raw:
		return ()
	resolved: list[SearchFilter] = []
	for key in sorted(raw):
		value = raw[key]
		if value is None:
			continue
		item = _resolve_one(str(key), value)
		if item is not None:
			resolved.append(item)
	return tuple(resolved)


def snapshot(filters: tuple[SearchFilter, ...]) -> dict[str, Any]:
	"""Render filters back into a JSON-friendly mapping for analytics."""

	result: dict[str, Any] = {}
	for item in filters:
		if isinstance(item, DateRangeFilter):
			result["date_range"] = {k: v for k, v in (("from", item.start), ("to", item.end)) if v is not None}
		elif isinstance(item, RangeFilter):
			result[f"{item.field}_range"] = {
				k: v for k, v in (("min", item.minimum), ("max", item.maximum)) if v is not None
			}
		elif isinstance(item, MembershipFilter):
			result[item.field] = list(item.values)
		else:
			result[item.field] = item.value
	return result
