"""Tests for cron triggers: 5/6-field cron, descriptors, @every."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from cronmutex.scheduling.triggers import (
    CronTrigger,
    IntervalTrigger,
    parse_duration,
    parse_trigger,
)

BASE = datetime(2024, 3, 15, 10, 7, 30)


class TestCronTrigger:
    def test_five_fields(self):
        trigger = parse_trigger("*/15 * * * *")
        assert isinstance(trigger, CronTrigger)
        assert trigger.next_fire(BASE) == datetime(2024, 3, 15, 10, 15, 0)

    def test_six_fields_leading_seconds(self):
        trigger = parse_trigger("45 7 10 * * *")
        assert trigger.next_fire(BASE) == datetime(2024, 3, 15, 10, 7, 45)

    def test_six_fields_every_ten_seconds(self):
        trigger = parse_trigger("*/10 * * * * *")
        assert trigger.next_fire(BASE) == datetime(2024, 3, 15, 10, 7, 40)

    def test_next_fire_is_strictly_after(self):
        trigger = parse_trigger("0 * * * *")
        at = datetime(2024, 3, 15, 11, 0, 0)
        assert trigger.next_fire(at) == datetime(2024, 3, 15, 12, 0, 0)

    @pytest.mark.parametrize(
        "descriptor, expected",
        [
            ("@hourly", datetime(2024, 3, 15, 11, 0)),
            ("@daily", datetime(2024, 3, 16, 0, 0)),
            ("@midnight", datetime(2024, 3, 16, 0, 0)),
            ("@weekly", datetime(2024, 3, 17, 0, 0)),
            ("@monthly", datetime(2024, 4, 1, 0, 0)),
            ("@yearly", datetime(2025, 1, 1, 0, 0)),
            ("@annually", datetime(2025, 1, 1, 0, 0)),
        ],
    )
    def test_descriptors(self, descriptor, expected):
        assert parse_trigger(descriptor).next_fire(BASE) == expected

    @pytest.mark.parametrize(
        "expression",
        ["", "* * * *", "* * * * * * *", "61 * * * *", "* * * * mon-xyz", "@fortnightly", "not a cron"],
    )
    def test_invalid_expressions(self, expression):
        with pytest.raises(ValueError):
            parse_trigger(expression)

    @pytest.mark.parametrize("expression", ["0 0 30 2 *", "0 0 31 4 *", "0 0 0 30 2 *"])
    def test_dates_that_never_occur(self, expression):
        with pytest.raises(ValueError, match="invalid cron expression"):
            parse_trigger(expression)

    def test_leap_day_is_accepted(self):
        assert parse_trigger("0 0 29 2 *").next_fire(BASE).day == 29


class TestIntervalTrigger:
    def test_every(self):
        trigger = parse_trigger("@every 90s")
        assert isinstance(trigger, IntervalTrigger)
        assert trigger.interval == timedelta(seconds=90)
        assert trigger.next_fire(BASE) == BASE + timedelta(seconds=90)

    def test_every_compound(self):
        assert parse_trigger("@every 1h30m").interval == timedelta(hours=1, minutes=30)

    def test_sub_second_rounds_up_to_one_second(self):
        assert parse_trigger("@every 500ms").interval == timedelta(seconds=1)

    def test_fractional_seconds_truncated(self):
        assert parse_trigger("@every 2.7s").interval == timedelta(seconds=2)

    def test_next_fire_drops_microseconds(self):
        trigger = IntervalTrigger(timedelta(seconds=5))
        assert trigger.next_fire(BASE.replace(microsecond=999)) == BASE + timedelta(seconds=5)

    @pytest.mark.parametrize("expression", ["@every", "@every ", "@every 10", "@every 5x", "@every 0s"])
    def test_invalid(self, expression):
        with pytest.raises(ValueError):
            parse_trigger(expression)


class TestParseDuration:
    @pytest.mark.parametrize(
        "text, seconds",
        [
            ("90s", 90),
            ("1m", 60),
            ("1h30m", 5400),
            ("1h2m3s", 3723),
            ("500ms", 0.5),
            ("1.5h", 5400),
            ("250us", 0.00025),
        ],
    )
    def test_valid(self, text, seconds):
        assert parse_duration(text).total_seconds() == pytest.approx(seconds)

    @pytest.mark.parametrize("text", ["", "10", "s", "1h 30m", "-5s", "1d"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)
