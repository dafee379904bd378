from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN = "Unknown"


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DateRange(BaseModel):
    """Inclusive publish-date window. Naive datetimes are read as UTC."""

    model_config = ConfigDict(frozen=True)

    start: datetime | None = Field(default=None, description="Earliest publish date")
    end: datetime | None = Field(default=None, description="Latest publish date")

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)


class DurationRange(BaseModel):
    """Inclusive duration window in seconds."""

    model_config = ConfigDict(frozen=True)

    min: float | None = Field(default=None, description="Minimum duration in seconds")
    max: float | None = Field(default=None, description="Maximum duration in seconds")


class SearchOptions(BaseModel):
    """Facet constraints and result cap for a single search or browse request"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    date_range: DateRange | None = Field(default=None, description="Publish date window")
    channels: list[str] = Field(default_factory=list, description="Channel id/title allow-list")
    duration: DurationRange | None = Field(default=None, description="Duration window")
    level: list[str] = Field(default_factory=list, description="Level allow-list")
    session_type: list[str] = Field(default_factory=list, description="Session type allow-list")
    metadata_source: list[str] = Field(
        default_factory=list, description="Metadata source allow-list"
    )
    services: list[str] = Field(default_factory=list, description="Services allow-list")
    topics: list[str] = Field(default_factory=list, description="Topics allow-list")
    industry: list[str] = Field(default_factory=list, description="Industry allow-list")
    limit: int | None = Field(default=None, description="Maximum number of results")

    @property
    def effective_limit(self) -> int | None:
        """Positive limit, or None when the request is unlimited."""
        if self.limit is None or self.limit <= 0:
            return None
        return self.limit

    def merged(self, **overrides: Any) -> "SearchOptions":
        """Return a copy with the non-empty overrides applied."""
        update = {key: value for key, value in overrides.items() if value not in (None, [])}
        return self.model_copy(update=update)
