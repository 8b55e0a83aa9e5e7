from datetime import time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from ocean.models import (
    BackupPlan,
    BackupSchedule,
    DatabaseMaintenanceSchedule,
    DayOfWeek,
    MaintenanceSchedule,
    valid_tag,
    valid_text,
)

UTC = timezone.utc
CEST = timezone(timedelta(hours=2))
EST = timezone(timedelta(hours=-5))


class TestValidators:
    @pytest.mark.parametrize("value", ["", " a", "a ", "\ta"])
    def test_valid_text(self, value):
        with pytest.raises(ValueError):
            valid_text(value)
        assert valid_text("a b") == "a b"

    @pytest.mark.parametrize("tag", ["web", "env:prod", "a_b-c", "x" * 255])
    def test_valid_tag(self, tag):
        assert valid_tag(tag) == tag

    @pytest.mark.parametrize("tag", ["", "a b", "a/b", "x" * 256])
    def test_invalid_tag(self, tag):
        with pytest.raises(ValueError):
            valid_tag(tag)


class TestSchedules:
    def test_day_of_week_shift(self):
        assert DayOfWeek.MONDAY.shift(1) == DayOfWeek.TUESDAY
        assert DayOfWeek.MONDAY.shift(-1) == DayOfWeek.SUNDAY
        assert DayOfWeek.SUNDAY.shift(1) == DayOfWeek.MONDAY

    def test_normalize_to_utc(self):
        sched = MaintenanceSchedule(
            start_time=time(1, 30, tzinfo=CEST), day=DayOfWeek.MONDAY
        )

        # The server stores UTC, ie the window moves to the previous day.
        assert sched.start_time == time(23, 30, tzinfo=UTC)
        assert sched.start_time.utcoffset() == timedelta(0)
        assert sched.day == DayOfWeek.SUNDAY
        assert sched.local(CEST) == (time(1, 30, tzinfo=CEST), DayOfWeek.MONDAY)

        sched = MaintenanceSchedule(start_time=time(22, 0, tzinfo=EST), day="friday")
        assert sched.day == DayOfWeek.SATURDAY
        assert sched.to_server() == {"start_time": "03:00", "day": "saturday"}

    def test_zoneinfo(self):
        tokyo = ZoneInfo("Asia/Tokyo")
        sched = MaintenanceSchedule(
            start_time=time(8, 0, tzinfo=tokyo), day=DayOfWeek.MONDAY
        )
        assert sched.start_time == time(23, 0, tzinfo=UTC)
        assert sched.day == DayOfWeek.SUNDAY

        start, day = sched.local(tokyo)
        assert (start.hour, start.minute, day) == (8, 0, DayOfWeek.MONDAY)

        sched = DatabaseMaintenanceSchedule(
            start_time=time(10, 30, tzinfo=ZoneInfo("Asia/Kolkata")),
            day=DayOfWeek.FRIDAY,
        )
        assert sched.to_server() == {"day": "friday", "hour": "05:00"}

        # Daylight saving time decides between UTC+1 and UTC+2.
        berlin = time(8, 0, tzinfo=ZoneInfo("Europe/Berlin"))
        sched = MaintenanceSchedule(start_time=berlin)
        assert sched.start_time.utcoffset() == timedelta(0)
        assert sched.start_time.hour in (6, 7)

    def test_any_day(self):
        sched = MaintenanceSchedule(start_time=time(1, 0, tzinfo=CEST))
        assert sched.day is None
        assert sched.to_server() == {"start_time": "23:00", "day": "any"}

        data = {"start_time": "13:00", "day": "any", "duration": "4h0m0s"}
        assert MaintenanceSchedule.from_server(data) == MaintenanceSchedule(
            start_time=time(13, 0, tzinfo=UTC)
        )

    @pytest.mark.parametrize(
        "start", [time(1, 0), time(1, 0, 30, tzinfo=UTC), time(1, 0, 0, 5, tzinfo=UTC)]
    )
    def test_invalid_start_time(self, start):
        with pytest.raises(ValueError):
            MaintenanceSchedule(start_time=start)

    def test_database_schedule(self):
        with pytest.raises(ValueError):
            DatabaseMaintenanceSchedule(start_time=time(1, 0, tzinfo=UTC))

        data = {"day": "saturday", "hour": "08:45:12", "pending": True}
        sched = DatabaseMaintenanceSchedule.from_server(data)
        assert sched.to_server() == {"day": "saturday", "hour": "08:45"}

    def test_backup_schedule(self):
        sched = BackupSchedule(start_time=time(5, 0, tzinfo=UTC))
        assert sched.plan == BackupPlan.DAILY
        assert sched.to_server() == {"plan": "daily", "hour": 5}

        with pytest.raises(ValueError):
            BackupSchedule(start_time=time(5, 30, tzinfo=UTC))
        with pytest.raises(ValueError):
            BackupSchedule(start_time=time(5, 0, tzinfo=UTC), plan=BackupPlan.WEEKLY)

    def test_immutable(self):
        sched = MaintenanceSchedule(start_time=time(1, 0, tzinfo=UTC))
        with pytest.raises(ValueError):
            sched.day = DayOfWeek.MONDAY
