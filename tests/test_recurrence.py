"""Unit tests for recurrence expansion."""
from datetime import date, datetime, timedelta, timezone

import pytest

from engine.models import Frequency, RecurrenceRule
from engine.recurrence import add_months, expand, span_days


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestExpand:
    """Test cases for expand()."""

    @pytest.mark.parametrize('end_at', [None, utc(2024, 5, 10, 20, 0)])
    def test_none_frequency_returns_anchor_only(self, end_at):
        """Test that a single event yields exactly its start."""
        start = utc(2024, 5, 10, 18, 0)
        rule = RecurrenceRule(frequency=Frequency.NONE)

        assert expand(start, rule, end_at) == [start]

    def test_no_rule_returns_anchor_only(self):
        """Test that an event without a rule yields its start."""
        start = utc(2024, 5, 10, 18, 0)

        assert expand(start, None) == [start]

    def test_weekly_with_until_ten_weeks(self):
        """Test weekly rule bounded ten weeks out yields eleven occurrences."""
        start = utc(2024, 1, 6, 9, 30)
        rule = RecurrenceRule(Frequency.WEEKLY, until=start + timedelta(weeks=10))

        occurrences = expand(start, rule)

        assert len(occurrences) == 11
        assert occurrences[0] == start
        for earlier, later in zip(occurrences, occurrences[1:]):
            assert later - earlier == timedelta(days=7)

    def test_daily_until_is_inclusive(self):
        """Test that an occurrence landing exactly on until is kept."""
        start = utc(2024, 3, 1, 8, 0)
        rule = RecurrenceRule(Frequency.DAILY, until=utc(2024, 3, 4, 8, 0))

        occurrences = expand(start, rule)

        assert occurrences == [
            utc(2024, 3, 1, 8, 0),
            utc(2024, 3, 2, 8, 0),
            utc(2024, 3, 3, 8, 0),
            utc(2024, 3, 4, 8, 0),
        ]

    def test_monthly_clamps_to_month_end(self):
        """Test monthly expansion from Jan 31 does not skip February."""
        start = utc(2024, 1, 31, 12, 0)
        rule = RecurrenceRule(Frequency.MONTHLY, until=utc(2024, 4, 30, 23, 59))

        occurrences = expand(start, rule)

        assert [o.date().isoformat() for o in occurrences] == [
            '2024-01-31', '2024-02-29', '2024-03-31', '2024-04-30'
        ]

    def test_monthly_clamps_on_non_leap_year(self):
        """Test February clamping to the 28th in a non-leap year."""
        start = utc(2023, 1, 31)
        rule = RecurrenceRule(Frequency.MONTHLY, until=utc(2023, 3, 31))

        occurrences = expand(start, rule)

        assert [o.day for o in occurrences] == [31, 28, 31]

    def test_yearly_leap_day(self):
        """Test Feb 29 anchor lands on Feb 28 in non-leap years."""
        start = utc(2024, 2, 29, 10, 0)
        rule = RecurrenceRule(Frequency.YEARLY, until=utc(2028, 12, 31))

        occurrences = expand(start, rule, horizon_months=60)

        assert [o.date().isoformat() for o in occurrences] == [
            '2024-02-29', '2025-02-28', '2026-02-28', '2027-02-28', '2028-02-29'
        ]

    def test_open_ended_rule_stops_at_horizon(self):
        """Test that a rule without until is bounded by the horizon."""
        start = utc(2024, 1, 15)
        rule = RecurrenceRule(Frequency.MONTHLY)

        occurrences = expand(start, rule)

        assert len(occurrences) == 25
        assert occurrences[-1] == utc(2026, 1, 15)

    def test_custom_horizon(self):
        """Test a shorter horizon limits daily expansion."""
        start = utc(2024, 1, 1)
        rule = RecurrenceRule(Frequency.DAILY)

        occurrences = expand(start, rule, horizon_months=1)

        assert occurrences[-1] == utc(2024, 2, 1)
        assert len(occurrences) == 32

    def test_start_after_until_returns_anchor(self):
        """Test that an until before the start leaves only the anchor."""
        start = utc(2024, 6, 1)
        rule = RecurrenceRule(Frequency.WEEKLY, until=utc(2024, 5, 1))

        assert expand(start, rule) == [start]

    def test_unknown_frequency_degrades_to_single(self, caplog):
        """Test malformed stored frequency is treated as none and logged."""
        rule = RecurrenceRule.from_item({'frequency': 'fortnightly'})
        start = utc(2024, 6, 1)

        assert rule.frequency is Frequency.NONE
        assert expand(start, rule) == [start]
        assert 'fortnightly' in caplog.text

    def test_malformed_rule_object(self):
        """Test that a non-rule value does not raise."""
        start = utc(2024, 6, 1)

        assert expand(start, {'frequency': 'weekly'}) == [start]

    def test_multi_day_span(self):
        """Test that each occurrence covers every day of a multi-day event."""
        start = utc(2024, 7, 5, 19, 0)
        end = utc(2024, 7, 7, 2, 0)
        rule = RecurrenceRule(Frequency.WEEKLY, until=utc(2024, 7, 12, 19, 0))

        occurrences = expand(start, rule, end)

        assert [o.day for o in occurrences] == [5, 6, 7, 12]
        assert all(o.hour == 19 for o in occurrences)

    def test_span_tail_clamped_to_until(self):
        """Test span days after the last step stop at until."""
        start = utc(2024, 7, 5, 19, 0)
        rule = RecurrenceRule(Frequency.WEEKLY, until=utc(2024, 7, 20, 0, 0))

        occurrences = expand(start, rule, utc(2024, 7, 7, 2, 0))

        assert [o.day for o in occurrences] == [5, 6, 7, 12, 13, 14, 19]

    def test_long_single_event_stops_at_horizon(self):
        """Test a ten-year end does not emit days past the horizon."""
        start = utc(2024, 1, 1, 9, 0)

        occurrences = expand(start, None, utc(2034, 1, 1, 9, 0))

        assert occurrences[0] == start
        assert occurrences[-1] == utc(2026, 1, 1, 9, 0)
        assert len(occurrences) == 732

    def test_long_daily_event_is_bounded(self):
        """Test a daily rule with a ten-year span yields one timestamp per day up to the horizon."""
        start = utc(2024, 1, 1, 9, 0)
        rule = RecurrenceRule(Frequency.DAILY)

        occurrences = expand(start, rule, utc(2034, 1, 1, 9, 0))

        assert len(occurrences) == 732
        assert occurrences[-1] == utc(2026, 1, 1, 9, 0)
        assert all(b - a == timedelta(days=1) for a, b in zip(occurrences, occurrences[1:]))

    def test_span_clamped_to_until_on_single_event(self):
        """Test until also bounds the days of a one-off multi-day event."""
        start = utc(2024, 3, 1, 8, 0)
        rule = RecurrenceRule(Frequency.NONE, until=utc(2024, 3, 2, 23, 0))

        occurrences = expand(start, rule, utc(2024, 3, 10, 8, 0))

        assert occurrences == [start, utc(2024, 3, 2, 8, 0)]

    def test_span_after_expired_until_keeps_anchor_only(self):
        """Test an until before the start leaves only the anchor even for spans."""
        start = utc(2024, 6, 1)
        rule = RecurrenceRule(Frequency.DAILY, until=utc(2024, 5, 1))

        assert expand(start, rule, utc(2024, 6, 5)) == [start]

    def test_overlapping_spans_are_deduplicated(self):
        """Test daily recurrence of a two-day event does not duplicate days."""
        start = utc(2024, 7, 1, 10, 0)
        rule = RecurrenceRule(Frequency.DAILY, until=utc(2024, 7, 3, 10, 0))

        occurrences = expand(start, rule, utc(2024, 7, 2, 12, 0))

        assert [o.day for o in occurrences] == [1, 2, 3]

    def test_naive_start_is_treated_as_utc(self):
        """Test naive datetimes are interpreted as UTC."""
        occurrences = expand(datetime(2024, 1, 1, 9, 0), None)

        assert occurrences == [utc(2024, 1, 1, 9, 0)]

    def test_expansion_is_repeatable(self):
        """Test identical calls return identical results."""
        start = utc(2024, 1, 31)
        rule = RecurrenceRule(Frequency.MONTHLY, until=utc(2024, 12, 31))

        assert expand(start, rule) == expand(start, rule)


class TestRuleVariants:
    """Test cases for specific dates, nth-weekday rules and occurrence counts."""

    def test_specific_dates_sorted_and_deduplicated(self):
        """Test explicit dates are parsed, ordered and de-duplicated after the anchor."""
        start = utc(2024, 3, 2, 18, 30)
        rule = RecurrenceRule.from_item({
            'type': 'specific',
            'dates': ['2024-05-04', '2024-04-06 20:00', '2024-05-04', 'not a date', '']
        })

        occurrences = expand(start, rule)

        assert occurrences == [
            start,
            utc(2024, 4, 6, 20, 0),
            utc(2024, 5, 4, 18, 30),
        ]

    def test_specific_dates_clamped_to_until_and_start(self):
        """Test dates before the start or after until are dropped."""
        start = utc(2024, 3, 2, 18, 30)
        rule = RecurrenceRule(
            Frequency.SPECIFIC,
            until=utc(2024, 6, 1),
            dates=(utc(2024, 1, 1), utc(2024, 4, 1), utc(2024, 7, 1))
        )

        assert expand(start, rule) == [start, utc(2024, 4, 1)]

    def test_specific_dates_beyond_horizon_are_dropped(self):
        """Test open-ended specific rules respect the horizon."""
        start = utc(2024, 1, 1)
        rule = RecurrenceRule(Frequency.SPECIFIC, dates=(utc(2025, 6, 1), utc(2030, 1, 1)))

        assert expand(start, rule) == [start, utc(2025, 6, 1)]

    def test_specific_dates_with_span(self):
        """Test each explicit date covers every day of a multi-day event."""
        start = utc(2024, 3, 2, 10, 0)
        rule = RecurrenceRule(Frequency.SPECIFIC, dates=(utc(2024, 3, 9, 10, 0),))

        occurrences = expand(start, rule, utc(2024, 3, 3, 18, 0))

        assert [o.day for o in occurrences] == [2, 3, 9, 10]

    def test_monthly_weekday(self):
        """Test the second Saturday of each month."""
        start = utc(2024, 1, 13, 9, 0)
        rule = RecurrenceRule.from_item({
            'type': 'monthly_weekday', 'weekday': 6, 'nth': 2, 'until': '2024-04-30T00:00:00Z'
        })

        occurrences = expand(start, rule)

        assert [o.date().isoformat() for o in occurrences] == [
            '2024-01-13', '2024-02-10', '2024-03-09', '2024-04-13'
        ]
        assert all(o.hour == 9 for o in occurrences)

    def test_monthly_weekday_skips_months_without_fifth(self):
        """Test a fifth-weekday rule skips months that have only four."""
        start = utc(2024, 3, 29, 20, 0)
        rule = RecurrenceRule(
            Frequency.MONTHLY_WEEKDAY, until=utc(2024, 6, 30), weekday=5, nth=5
        )

        occurrences = expand(start, rule)

        assert [o.date().isoformat() for o in occurrences] == ['2024-03-29', '2024-05-31']

    def test_monthly_weekday_defaults_from_anchor(self):
        """Test weekday and nth default to the anchor's position in its month."""
        start = utc(2024, 1, 13, 9, 0)
        rule = RecurrenceRule(Frequency.MONTHLY_WEEKDAY, until=utc(2024, 2, 29))

        assert expand(start, rule)[-1] == utc(2024, 2, 10, 9, 0)

    def test_count_caps_occurrences(self):
        """Test a stored generate count limits the expansion."""
        start = utc(2024, 1, 1, 19, 0)
        rule = RecurrenceRule.from_item({'type': 'weekly', 'generateWeeks': 4})

        occurrences = expand(start, rule)

        assert rule.count == 4
        assert occurrences[-1] == utc(2024, 1, 22, 19, 0)
        assert len(occurrences) == 4

    def test_count_caps_specific_dates(self):
        """Test count applies to explicit dates too."""
        start = utc(2024, 1, 1)
        rule = RecurrenceRule(
            Frequency.SPECIFIC, count=2, dates=(utc(2024, 2, 1), utc(2024, 3, 1))
        )

        assert expand(start, rule) == [start, utc(2024, 2, 1)]

    def test_rule_item_round_trip(self):
        """Test extended rule fields survive to_item and from_item."""
        rule = RecurrenceRule(
            Frequency.SPECIFIC,
            until=utc(2024, 12, 31),
            count=3,
            dates=(date(2024, 5, 4), utc(2024, 6, 1, 20, 0))
        )

        assert RecurrenceRule.from_item(rule.to_item()) == rule


class TestHelpers:
    """Test cases for calendar helpers."""

    def test_add_months_backwards_clamps(self):
        """Test subtracting months clamps to month end."""
        assert add_months(utc(2024, 7, 31), -4) == utc(2024, 3, 31)
        assert add_months(utc(2024, 6, 30), -4) == utc(2024, 2, 29)

    def test_span_days(self):
        """Test calendar-day span computation."""
        start = utc(2024, 1, 1, 22, 0)
        assert span_days(start, None) == 1
        assert span_days(start, utc(2024, 1, 1, 23, 0)) == 1
        assert span_days(start, utc(2024, 1, 2, 1, 0)) == 2
        assert span_days(start, utc(2023, 12, 31)) == 1


class TestFrequencyParse:
    """Test cases for Frequency.parse."""

    @pytest.mark.parametrize('raw,expected', [
        ('weekly', Frequency.WEEKLY),
        ('MONTHLY', Frequency.MONTHLY),
        ('annual', Frequency.YEARLY),
        ('single', Frequency.NONE),
        (None, Frequency.NONE),
        ('specific', Frequency.SPECIFIC),
        ('monthly_weekday', Frequency.MONTHLY_WEEKDAY),
        ('biweekly', Frequency.NONE),
    ])
    def test_parse(self, raw, expected):
        """Test legacy aliases and unknown values."""
        assert Frequency.parse(raw) is expected
