"""Tests for src.core.recurrence — RRULE generation, parsing and projection."""

from datetime import date, datetime, timezone

import pytest

from src.core.recurrence import (
    CUSTOM_TEXT,
    ONE_TIME_TEXT,
    RecurrenceConfig,
    generate_rrule,
    get_next_occurrence,
    get_next_occurrences,
    is_valid_rrule,
    parse_rrule_to_config,
    parse_rrule_to_text,
    rrule_to_sunday_first_weekday,
    sunday_first_to_rrule_weekday,
)

MONDAY = date(2026, 1, 5)


class TestWeekdayConversion:
    @pytest.mark.parametrize("weekday", range(7))
    def test_round_trip(self, weekday):
        assert rrule_to_sunday_first_weekday(sunday_first_to_rrule_weekday(weekday)) == weekday

    def test_sunday(self):
        assert sunday_first_to_rrule_weekday(0) == 6
        assert rrule_to_sunday_first_weekday(6) == 0

    def test_monday(self):
        assert sunday_first_to_rrule_weekday(1) == 0

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            sunday_first_to_rrule_weekday(7)


class TestGenerateRrule:
    def test_none_type(self):
        assert generate_rrule(RecurrenceConfig(), MONDAY) is None

    def test_daily(self):
        text = generate_rrule(RecurrenceConfig(type="daily"), MONDAY)
        assert text.startswith("DTSTART:20260105T000000Z\n")
        assert "FREQ=DAILY" in text

    def test_biweekly(self):
        text = generate_rrule(RecurrenceConfig(type="biweekly", weekday=0), MONDAY)
        assert "FREQ=WEEKLY" in text
        assert "INTERVAL=2" in text
        assert "BYDAY=MO" in text

    def test_monthly(self):
        text = generate_rrule(RecurrenceConfig(type="monthly", monthday=15), MONDAY)
        assert "FREQ=MONTHLY" in text
        assert "BYMONTHDAY=15" in text

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            generate_rrule(RecurrenceConfig(type="hourly"), MONDAY)


class TestParseRruleToConfig:
    @pytest.mark.parametrize(
        "config",
        [
            RecurrenceConfig(type="daily"),
            RecurrenceConfig(type="weekly", weekday=3),
            RecurrenceConfig(type="biweekly", weekday=0),
            RecurrenceConfig(type="monthly", monthday=15),
        ],
    )
    def test_inverse_of_generate(self, config):
        assert parse_rrule_to_config(generate_rrule(config, MONDAY)) == config

    def test_bare_rrule_line(self):
        config = parse_rrule_to_config("RRULE:FREQ=WEEKLY;BYDAY=FR")
        assert config == RecurrenceConfig(type="weekly", weekday=4)

    @pytest.mark.parametrize("text", [None, "", "not a rule", "RRULE:FREQ=SOMETIMES"])
    def test_invalid_is_none(self, text):
        assert parse_rrule_to_config(text).type == "none"

    def test_yearly_is_none(self):
        assert parse_rrule_to_config("RRULE:FREQ=YEARLY").type == "none"


class TestIsValidRrule:
    @pytest.mark.parametrize(
        "text", ["RRULE:FREQ=DAILY", "DTSTART:20260105T000000Z\nRRULE:FREQ=WEEKLY;BYDAY=MO"],
    )
    def test_valid(self, text):
        assert is_valid_rrule(text)

    @pytest.mark.parametrize("text", ["garbage", "RRULE:FREQ=SOMETIMES", "RRULE:FREQ=DAILY;BYDAY=XX"])
    def test_invalid(self, text):
        assert not is_valid_rrule(text)


class TestParseRruleToText:
    def test_one_time(self):
        assert parse_rrule_to_text(None) == ONE_TIME_TEXT

    def test_every_day(self):
        assert parse_rrule_to_text("RRULE:FREQ=DAILY") == "Every day"

    def test_every_two_weeks(self):
        text = generate_rrule(RecurrenceConfig(type="biweekly", weekday=0), MONDAY)
        assert parse_rrule_to_text(text) == "Every 2 weeks on Monday"

    def test_monthly_ordinal(self):
        assert parse_rrule_to_text("RRULE:FREQ=MONTHLY;BYMONTHDAY=22") == "Every month on the 22nd"

    def test_count(self):
        assert parse_rrule_to_text("RRULE:FREQ=DAILY;COUNT=3") == "Every day for 3 times"

    def test_several_weekdays(self):
        text = parse_rrule_to_text("RRULE:FREQ=WEEKLY;BYDAY=MO,WE,FR")
        assert text == "Every week on Monday, Wednesday, Friday"

    def test_until(self):
        rule = "DTSTART:20260105T000000Z\nRRULE:FREQ=DAILY;UNTIL=20260301T000000Z"
        assert parse_rrule_to_text(rule) == "Every day until March 1, 2026"

    def test_garbage(self):
        assert parse_rrule_to_text("garbage") == CUSTOM_TEXT


class TestNextOccurrence:
    def test_weekly_monday_after_monday(self):
        completed = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)
        nxt = get_next_occurrence("RRULE:FREQ=WEEKLY;BYDAY=MO", completed)
        assert nxt.date() == date(2026, 1, 12)
        assert nxt.tzinfo is not None

    def test_strictly_after(self):
        rule = "DTSTART:20260101T000000Z\nRRULE:FREQ=DAILY"
        after = datetime(2026, 1, 3, tzinfo=timezone.utc)
        assert get_next_occurrence(rule, after) == datetime(2026, 1, 4, tzinfo=timezone.utc)

    def test_exhausted_rule(self):
        rule = "DTSTART:20260101T000000Z\nRRULE:FREQ=DAILY;COUNT=2"
        assert get_next_occurrence(rule, datetime(2026, 2, 1, tzinfo=timezone.utc)) is None

    def test_invalid_rule(self):
        assert get_next_occurrence("nonsense", MONDAY) is None
        assert get_next_occurrence(None, MONDAY) is None


class TestNextOccurrences:
    def test_daily_five(self):
        after = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)
        rule = "DTSTART:20260101T000000Z\nRRULE:FREQ=DAILY"
        occurrences = get_next_occurrences(rule, after, count=5)

        assert len(occurrences) == 5
        assert all(occ > after for occ in occurrences)
        assert occurrences == sorted(occurrences)
        assert len(set(occurrences)) == 5
        assert occurrences[0] == datetime(2026, 1, 6, tzinfo=timezone.utc)

    def test_lookahead_caps_sparse_rules(self):
        rule = "DTSTART:20260101T000000Z\nRRULE:FREQ=YEARLY"
        after = datetime(2026, 1, 2, tzinfo=timezone.utc)
        assert len(get_next_occurrences(rule, after, count=5)) == 1

    def test_invalid_rule_is_empty(self):
        assert get_next_occurrences("nonsense", MONDAY) == []

    def test_zero_count(self):
        assert get_next_occurrences("RRULE:FREQ=DAILY", MONDAY, count=0) == []
