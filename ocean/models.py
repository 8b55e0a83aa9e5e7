import re
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# Tags of droplets, databases, volumes, ...
TAG_PATTERN = re.compile(r"^[a-zA-Z0-9_\-:]+$")
MAX_TAG_LENGTH = 255


def valid_text(v: str) -> str:
    if len(v) != len(v.strip()):
        raise ValueError("must not have leading or trailing whitespace")

    if len(v) == 0:
        raise ValueError("must be nonempty")
    return v


def valid_tag(v: str) -> str:
    if len(v) > MAX_TAG_LENGTH:
        raise ValueError(f"must not be longer than {MAX_TAG_LENGTH} characters")
    if TAG_PATTERN.match(v) is None:
        raise ValueError(f"must match {TAG_PATTERN.pattern} (got {v!r})")
    return v


class DayOfWeek(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    def shift(self, days: int) -> "DayOfWeek":
        members = list(DayOfWeek)
        return members[(members.index(self) + days) % 7]


def _this_monday() -> date:
    today = date.today()
    return today - timedelta(days=today.weekday())


def _convert(
    start: time, day: DayOfWeek | None, tz: tzinfo
) -> Tuple[time, DayOfWeek | None]:
    """Return `start` and `day` in time zone `tz`.

    The day changes if the conversion crosses midnight. Zones with daylight
    saving time, eg `ZoneInfo("Europe/Berlin")`, use the offset of the current
    week.
    """
    offset = list(DayOfWeek).index(day) if day else 0
    src = datetime.combine(_this_monday() + timedelta(days=offset), start)
    dst = src.astimezone(tz)
    if day is not None:
        day = day.shift((dst.date() - src.date()).days)
    return dst.timetz(), day


def _parse_clock(value: str) -> time:
    """Return the UTC time of a server value like `13:00` or `13:00:00`."""
    hour, minute = value.split(":")[:2]
    return time(int(hour), int(minute), tzinfo=UTC)


class _Schedule(BaseModel):
    """Recurring time slot that the server stores in UTC."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    start_time: time
    day: DayOfWeek | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data):
        if not isinstance(data, dict):
            return data
        start, day = data.get("start_time"), data.get("day")
        if isinstance(start, time) and start.tzinfo is not None:
            day = DayOfWeek(day) if day is not None else None
            start, day = _convert(start, day, UTC)
            data = data | {"start_time": start, "day": day}
        return data

    @field_validator("start_time")
    @classmethod
    def valid_time(cls, v: time) -> time:
        if v.utcoffset() is None:
            raise ValueError("must have a time zone")
        if v.second != 0 or v.microsecond != 0:
            raise ValueError("seconds and sub-seconds must be zero")
        return v

    def local(self, tz: tzinfo) -> Tuple[time, DayOfWeek | None]:
        """Return start time and day in time zone `tz`."""
        return _convert(self.start_time, self.day, tz)


class MaintenanceSchedule(_Schedule):
    """Maintenance window of a Kubernetes cluster; `day=None` means any day."""

    def to_server(self) -> dict:
        return {
            "start_time": self.start_time.strftime("%H:%M"),
            "day": self.day.value if self.day else "any",
        }

    @classmethod
    def from_server(cls, data: dict) -> "MaintenanceSchedule":
        day = data.get("day") or "any"
        return cls(
            start_time=_parse_clock(data["start_time"]),
            day=None if day == "any" else DayOfWeek(day),
        )


class DatabaseMaintenanceSchedule(_Schedule):
    day: DayOfWeek

    def to_server(self) -> dict:
        return {"day": self.day.value, "hour": self.start_time.strftime("%H:%M")}

    @classmethod
    def from_server(cls, data: dict) -> "DatabaseMaintenanceSchedule":
        return cls(start_time=_parse_clock(data["hour"]), day=DayOfWeek(data["day"]))


class BackupPlan(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class BackupSchedule(_Schedule):
    """Backup window of a droplet; the window always starts on the hour."""

    plan: BackupPlan = BackupPlan.DAILY

    @field_validator("start_time")
    @classmethod
    def on_the_hour(cls, v: time) -> time:
        if v.minute != 0:
            raise ValueError("minutes must be zero")
        return v

    @model_validator(mode="after")
    def weekly_needs_day(self):
        if self.plan == BackupPlan.WEEKLY and self.day is None:
            raise ValueError("weekly backups need a day")
        return self

    def to_server(self) -> dict:
        ret = {"plan": self.plan.value, "hour": self.start_time.hour}
        if self.day is not None:
            ret["weekday"] = self.day.value[:3].upper()
        return ret
