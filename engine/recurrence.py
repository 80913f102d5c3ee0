"""Expansion of recurrence rules into concrete occurrence timestamps."""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

from engine.models import Frequency, RecurrenceRule, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_MONTHS = 24

ONE_DAY = timedelta(days=1)

# Indexed by stored weekday number, 0 = Sunday.
_WEEKDAYS = (SU, MO, TU, WE, TH, FR, SA)


def add_months(value: datetime, months: int) -> datetime:
    """
    Shift a datetime by whole calendar months.

    The day of month is clamped to the last valid day of the target month,
    so Jan 31 + 1 month is Feb 28 (or 29).
    """
    return value + relativedelta(months=months)


def _nth_step(start_at: datetime, frequency: Frequency, n: int) -> datetime:
    # Steps are always taken from the anchor so month-end clamping never
    # accumulates (Jan 31 -> Feb 29 -> Mar 31, not Mar 29).
    if frequency is Frequency.DAILY:
        return start_at + timedelta(days=n)
    if frequency is Frequency.WEEKLY:
        return start_at + timedelta(weeks=n)
    if frequency is Frequency.MONTHLY:
        return add_months(start_at, n)
    if frequency is Frequency.YEARLY:
        return start_at + relativedelta(years=n)
    raise ValueError(f"Frequency {frequency} has no step")


def nth_weekday_of_month(start_at: datetime, months: int, weekday: int, nth: int) -> Optional[datetime]:
    """
    The ``nth`` ``weekday`` (0 = Sunday) of the month ``months`` after the
    anchor, at the anchor's clock time. None when that month has no such day.
    """
    first = start_at + relativedelta(months=months, day=1)
    candidate = first + relativedelta(weekday=_WEEKDAYS[weekday](+nth))
    if candidate.month != first.month:
        return None
    return candidate


def span_days(start_at: datetime, end_at: Optional[datetime]) -> int:
    """Number of calendar days covered by an event, at least 1."""
    if end_at is None or end_at <= start_at:
        return 1
    return (end_at.date() - start_at.date()).days + 1


def expansion_limit(
    start_at: datetime,
    until: Optional[datetime],
    horizon_months: int = DEFAULT_HORIZON_MONTHS
) -> datetime:
    """Last instant an occurrence may fall on: ``until`` or the horizon, whichever is first."""
    limit = add_months(start_at, max(horizon_months, 0))
    if until is not None and until < limit:
        limit = until
    return limit


def _stepped_bases(start_at: datetime, rule: RecurrenceRule, frequency: Frequency, limit: datetime) -> List[datetime]:
    bases = [start_at]
    count = rule.count

    if frequency is Frequency.MONTHLY_WEEKDAY:
        weekday = rule.weekday
        if weekday is None:
            weekday = (start_at.weekday() + 1) % 7
        nth = rule.nth or (start_at.day - 1) // 7 + 1
        n = 0
        while count is None or len(bases) < count:
            if start_at + relativedelta(months=n, day=1) > limit:
                break
            candidate = nth_weekday_of_month(start_at, n, weekday, nth)
            n += 1
            if candidate is None or candidate <= start_at or candidate > limit:
                continue
            bases.append(candidate)
        return bases

    n = 1
    while count is None or len(bases) < count:
        candidate = _nth_step(start_at, frequency, n)
        if candidate > limit:
            break
        bases.append(candidate)
        n += 1
    return bases


def _specific_bases(start_at: datetime, rule: RecurrenceRule, limit: datetime) -> List[datetime]:
    resolved = set()
    for value in rule.dates:
        if isinstance(value, datetime):
            resolved.add(parse_timestamp(value))
        elif isinstance(value, date):
            resolved.add(datetime.combine(value, start_at.timetz()))

    dropped = [d for d in resolved if d < start_at]
    if dropped:
        logger.debug(f"Ignoring {len(dropped)} specific dates before the event start")

    bases = [start_at] + sorted(d for d in resolved if start_at < d <= limit)
    if rule.count is not None:
        bases = bases[:rule.count]
    return bases


def _spread(bases: List[datetime], days: int, limit: datetime) -> List[datetime]:
    """
    Expand each base over ``days`` consecutive days, never past ``limit``.

    ``bases`` must be sorted. Days already covered by an earlier base are
    skipped instead of regenerated, so the work is linear in the output.
    """
    occurrences = [bases[0]]
    for base in bases:
        offset = 0
        last = occurrences[-1]
        if base <= last:
            offset = (last - base) // ONE_DAY + 1
        while offset < days:
            value = base + offset * ONE_DAY
            if value > limit:
                break
            occurrences.append(value)
            offset += 1
    return occurrences


def expand(
    start_at: datetime,
    rule: Optional[RecurrenceRule],
    end_at: Optional[datetime] = None,
    horizon_months: int = DEFAULT_HORIZON_MONTHS
) -> List[datetime]:
    """
    Expand an event's recurrence rule into occurrence timestamps.

    The anchor ``start_at`` is always the first occurrence. Every other
    occurrence, including the extra days of a multi-day event, falls on or
    before ``rule.until`` and on or before ``horizon_months`` after the
    anchor, so the result is finite whatever the inputs.

    Args:
        start_at: Event start (anchor occurrence)
        rule: Recurrence rule, or None for a single occurrence
        end_at: Optional event end, used for multi-day spans
        horizon_months: Forward bound when the rule has no ``until``

    Returns:
        Strictly increasing list of aware UTC datetimes
    """
    start_at = parse_timestamp(start_at)
    end_at = parse_timestamp(end_at)

    frequency = Frequency.NONE
    until = None
    if rule is not None and not isinstance(rule, RecurrenceRule):
        logger.warning(f"Malformed recurrence rule {rule!r}, using single occurrence")
        rule = None
    if rule is not None:
        frequency = Frequency.parse(rule.frequency)
        until = parse_timestamp(rule.until)

    limit = expansion_limit(start_at, until, horizon_months)

    if frequency is Frequency.NONE:
        bases = [start_at]
    elif frequency is Frequency.SPECIFIC:
        bases = _specific_bases(start_at, rule, limit)
    else:
        bases = _stepped_bases(start_at, rule, frequency, limit)

    days = span_days(start_at, end_at)
    if days == 1:
        return bases
    return _spread(bases, days, limit)
