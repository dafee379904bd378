"""
Facet constraints shared by the search and browse paths.

Options are compiled once into a list of declarative constraints. This module
evaluates them in memory; the DuckDB backend compiles the same list to SQL.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import TYPE_CHECKING, Any, Literal, Sequence, TypeAlias, Union

from ..models import UNKNOWN, SearchOptions

if TYPE_CHECKING:
    from ..storage.base import VideoRecord
    from .aggregation import SearchResult


ChoiceField = Literal["level", "session_type", "metadata_source"]
TaxonomyField = Literal["services", "topics", "industry"]

# Fields where an explicit filter never admits the Unknown sentinel.
_CLASSIFIED_FIELDS: frozenset[str] = frozenset({"level", "session_type"})


@dataclass(frozen=True)
class DateRangeConstraint:
    start: datetime | None
    end: datetime | None


@dataclass(frozen=True)
class DurationConstraint:
    min_seconds: float | None
    max_seconds: float | None


@dataclass(frozen=True)
class ChannelConstraint:
    values: tuple[str, ...]


@dataclass(frozen=True)
class ChoiceConstraint:
    field: ChoiceField
    values: tuple[str, ...]

    @property
    def excludes_unknown(self) -> bool:
        return self.field in _CLASSIFIED_FIELDS


@dataclass(frozen=True)
class TaxonomyConstraint:
    field: TaxonomyField
    values: tuple[str, ...]


Constraint: TypeAlias = Union[
    DateRangeConstraint,
    DurationConstraint,
    ChannelConstraint,
    ChoiceConstraint,
    TaxonomyConstraint,
]


class FilterParseError(ValueError):
    """Raised when filter expression syntax is invalid."""


def _clean(values: Sequence[str]) -> tuple[str, ...]:
    return tuple(value.strip() for value in values if value and value.strip())


def constraints_from_options(options: SearchOptions | None) -> list[Constraint]:
    """Compile request options into the constraint list both paths interpret."""
    if options is None:
        return []

    constraints: list[Constraint] = []
    if options.date_range is not None:
        start, end = options.date_range.start, options.date_range.end
        if start is not None and end is not None and start > end:
            start, end = end, start
        if start is not None or end is not None:
            constraints.append(DateRangeConstraint(start=start, end=end))

    channels = _clean(options.channels)
    if channels:
        constraints.append(ChannelConstraint(values=channels))

    if options.duration is not None:
        low, high = options.duration.min, options.duration.max
        if low is not None and high is not None and low > high:
            low, high = high, low
        if low is not None or high is not None:
            constraints.append(DurationConstraint(min_seconds=low, max_seconds=high))

    choice_fields: tuple[ChoiceField, ...] = ("level", "session_type", "metadata_source")
    for choice_field in choice_fields:
        values = _clean(getattr(options, choice_field))
        if values:
            constraints.append(ChoiceConstraint(field=choice_field, values=values))

    taxonomy_fields: tuple[TaxonomyField, ...] = ("services", "topics", "industry")
    for taxonomy_field in taxonomy_fields:
        values = _clean(getattr(options, taxonomy_field))
        if values:
            constraints.append(TaxonomyConstraint(field=taxonomy_field, values=values))

    return constraints


def taxonomy_matches(candidate: str, target: str) -> bool:
    """Fuzzy equality between a stored tag and a requested filter value.

    Matches on case-insensitive equality, containment in either direction, or
    a word token of one side containing (or contained by) a token of the other.
    """
    candidate_lower = candidate.lower().strip()
    target_lower = target.lower().strip()
    if not candidate_lower or not target_lower:
        return False

    if candidate_lower == target_lower:
        return True
    if target_lower in candidate_lower or candidate_lower in target_lower:
        return True

    candidate_words = candidate_lower.split()
    target_words = target_lower.split()
    return any(
        target_word in candidate_word or candidate_word in target_word
        for target_word in target_words
        for candidate_word in candidate_words
    )


def taxonomy_any(tags: Sequence[str] | None, targets: Sequence[str] | None) -> bool:
    """True when any stored tag fuzzily matches any requested value."""
    if not tags or not targets:
        return False
    return any(taxonomy_matches(tag, target) for target in targets for tag in tags)


def constraint_matches(video: VideoRecord, constraint: Constraint) -> bool:
    if isinstance(constraint, DateRangeConstraint):
        if constraint.start is not None and video.published_at < constraint.start:
            return False
        if constraint.end is not None and video.published_at > constraint.end:
            return False
        return True

    if isinstance(constraint, DurationConstraint):
        if constraint.min_seconds is not None and video.duration < constraint.min_seconds:
            return False
        if constraint.max_seconds is not None and video.duration > constraint.max_seconds:
            return False
        return True

    if isinstance(constraint, ChannelConstraint):
        channel_id = video.channel_id.lower()
        channel_title = video.channel_title.lower()
        return any(
            value.lower() in channel_id or value.lower() in channel_title
            for value in constraint.values
        )

    if isinstance(constraint, ChoiceConstraint):
        value = getattr(video, constraint.field)
        if constraint.excludes_unknown and value == UNKNOWN:
            return False
        return value in constraint.values

    if isinstance(constraint, TaxonomyConstraint):
        return taxonomy_any(getattr(video, constraint.field), constraint.values)

    raise TypeError(f"Unsupported constraint: {constraint!r}")


def matches(video: VideoRecord, constraints: Sequence[Constraint]) -> bool:
    """AND across constraints; each constraint is OR within its own values."""
    return all(constraint_matches(video, constraint) for constraint in constraints)


def filter_results(
    results: Sequence[SearchResult], constraints: Sequence[Constraint]
) -> list[SearchResult]:
    """Keep results whose video satisfies every constraint, preserving order."""
    if not constraints:
        return list(results)
    return [result for result in results if matches(result.video, constraints)]


def apply_filters(
    results: Sequence[SearchResult], options: SearchOptions | None
) -> list[SearchResult]:
    """Filter results by options and truncate to the positive limit, if any."""
    filtered = filter_results(results, constraints_from_options(options))
    limit = options.effective_limit if options is not None else None
    if limit is not None:
        filtered = filtered[:limit]
    return filtered


# ---------------------------------------------------------------------------
# Filter expression syntax
# ---------------------------------------------------------------------------

_LIST_FIELDS: frozenset[str] = frozenset(
    {
        "channels",
        "level",
        "session_type",
        "metadata_source",
        "services",
        "topics",
        "industry",
    }
)
_FIELD_ALIASES: dict[str, str] = {
    "channel": "channels",
    "levels": "level",
    "session": "session_type",
    "session_types": "session_type",
    "source": "metadata_source",
    "service": "services",
    "topic": "topics",
    "industries": "industry",
    "published_at": "published",
    "date": "published",
}
_RANGE_FIELDS: frozenset[str] = frozenset({"duration", "published"})
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
# `and` only separates conditions when another `field<op>` follows it.
_NEXT_CONDITION_RE = re.compile(r"\s+[A-Za-z_]+(?:\s*(?:<=|>=|=|<|>|:)|\s+in\b)", re.IGNORECASE)


def supported_filter_syntax() -> str:
    """Return a short help text for filter syntax."""
    return (
        "Supported filter syntax: "
        "`field=value`, `field in (a, b, c)`, `duration>=seconds`, `duration<=seconds`, "
        "`published>=YYYY-MM-DD`, `published<=YYYY-MM-DD`; "
        "combine with comma or `and`; quote values that contain commas, e.g. "
        "`topics='Data, Analytics'`. Fields: "
        + ", ".join(sorted(_LIST_FIELDS | _RANGE_FIELDS))
        + "."
    )


def parse_filter_expression(
    raw_filters: str | None,
    *,
    base: SearchOptions | None = None,
) -> SearchOptions:
    """Parse a raw filter string into search options layered over *base*."""
    options = base or SearchOptions()
    if raw_filters is None or not raw_filters.strip():
        return options

    lists: dict[str, list[str]] = {}
    duration: dict[str, float] = {}
    published: dict[str, datetime] = {}

    for condition in _split_conditions(raw_filters):
        field, operator, value = _parse_condition(condition)
        if field in _LIST_FIELDS:
            if operator not in {"eq", "in"}:
                raise FilterParseError(
                    f"Field {field!r} only supports `=` and `in`: {condition!r}"
                )
            values = value if isinstance(value, list) else [value]
            lists.setdefault(field, []).extend(str(item) for item in values)
        elif field == "duration":
            if operator in {"gt", "gte"}:
                duration["min"] = _as_number(value, condition)
            elif operator in {"lt", "lte"}:
                duration["max"] = _as_number(value, condition)
            else:
                raise FilterParseError(f"Duration needs a comparison operator: {condition!r}")
        elif field == "published":
            if operator in {"gt", "gte"}:
                published["start"] = _as_datetime(value, condition, end_of_day=False)
            elif operator in {"lt", "lte"}:
                published["end"] = _as_datetime(value, condition, end_of_day=True)
            else:
                raise FilterParseError(f"Published needs a comparison operator: {condition!r}")

    update: dict[str, Any] = dict(lists)
    if duration:
        update["duration"] = {"min": duration.get("min"), "max": duration.get("max")}
    if published:
        update["date_range"] = {"start": published.get("start"), "end": published.get("end")}

    payload = options.model_dump()
    payload.update(update)
    return SearchOptions.model_validate(payload)


def _parse_condition(condition: str) -> tuple[str, str, Any]:
    text = condition.strip()
    if not text:
        raise FilterParseError("Empty filter condition.")

    in_match = re.match(r"^\s*([A-Za-z_]+)\s+in\s+(.+)\s*$", text, flags=re.IGNORECASE)
    if in_match:
        field = _resolve_field(in_match.group(1))
        values = _parse_list_value(in_match.group(2))
        if not values:
            raise FilterParseError(f"`in` filter has no values: {text!r}")
        return field, "in", values

    op_match = re.match(r"^\s*([A-Za-z_]+)\s*(<=|>=|=|<|>|:)\s*(.+)\s*$", text)
    if not op_match:
        raise FilterParseError(f"Invalid filter syntax: {text!r}")

    operator_map = {"=": "eq", ":": "eq", ">": "gt", ">=": "gte", "<": "lt", "<=": "lte"}
    field = _resolve_field(op_match.group(1))
    return field, operator_map[op_match.group(2)], _unquote(op_match.group(3))


def _resolve_field(raw_field: str) -> str:
    field = raw_field.lower()
    field = _FIELD_ALIASES.get(field, field)
    if field not in _LIST_FIELDS and field not in _RANGE_FIELDS:
        allowed = ", ".join(sorted(_LIST_FIELDS | _RANGE_FIELDS))
        raise FilterParseError(f"Unknown filter field {raw_field!r}. Allowed fields: {allowed}")
    return field


def _as_number(value: Any, condition: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise FilterParseError(f"Expected a number: {condition!r}") from None


def _as_datetime(value: Any, condition: str, *, end_of_day: bool) -> datetime:
    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise FilterParseError(f"Expected an ISO date: {condition!r}") from None
    if end_of_day and _DATE_ONLY_RE.match(text):
        parsed = datetime.combine(parsed.date(), time.max)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _split_conditions(raw: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    depth = 0
    i = 0
    while i < len(raw):
        ch = raw[i]

        if quote is not None:
            current.append(ch)
            if ch == quote:
                quote = None
            i += 1
            continue

        if ch in {"'", '"'}:
            quote = ch
        elif ch in {"(", "["}:
            depth += 1
        elif ch in {")", "]"}:
            depth = max(depth - 1, 0)
        elif depth == 0 and ch == ",":
            _flush_part(parts, current)
            i += 1
            continue
        elif (
            depth == 0
            and raw[i : i + 3].lower() == "and"
            and (i == 0 or raw[i - 1].isspace())
            and _NEXT_CONDITION_RE.match(raw, i + 3)
        ):
            _flush_part(parts, current)
            i += 3
            continue

        current.append(ch)
        i += 1

    _flush_part(parts, current)
    return parts


def _flush_part(parts: list[str], current: list[str]) -> None:
    text = "".join(current).strip()
    if text:
        parts.append(text)
    current.clear()


def _parse_list_value(raw_value: str) -> list[str]:
    text = raw_value.strip()
    if (text.startswith("(") and text.endswith(")")) or (
        text.startswith("[") and text.endswith("]")
    ):
        text = text[1:-1]
    if not text.strip():
        return []
    return [_unquote(item) for item in _split_conditions(text)]


def _unquote(raw_value: str) -> str:
    text = raw_value.strip()
    if not text:
        raise FilterParseError("Missing filter value.")
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {"'", '"'}:
        return text[1:-1]
    return text
