"""Calendar aggregation of approved events and their occurrences."""
import logging
from typing import Dict, Iterable, Optional

from engine.errors import ValidationError
from engine.models import CalendarEntry, Event, EventStatus
from engine.recurrence import DEFAULT_HORIZON_MONTHS, expand

logger = logging.getLogger(__name__)


def validate_filters(year: Optional[int], month: Optional[int]) -> None:
    """
    Check a year/month filter pair.

    Month is 1-based (1 = January). A month without a year is rejected.
    """
    if year is not None:
        if isinstance(year, bool) or not isinstance(year, int) or not 1000 <= year <= 9999:
            raise ValidationError(f"Invalid year: {year!r}")
    if month is not None:
        if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
            raise ValidationError(f"Invalid month: {month!r}")
        if year is None:
            raise ValidationError("Month filter requires a year")


def aggregate(
    events: Iterable[Event],
    year: Optional[int] = None,
    month: Optional[int] = None,
    horizon_months: int = DEFAULT_HORIZON_MONTHS
) -> Dict[str, CalendarEntry]:
    """
    Expand approved events and filter their occurrences to a year/month.

    Events that are not approved are skipped. Approved events with no
    occurrence inside the filter window are kept with an empty list.

    Args:
        events: Events to consider
        year: Optional 4-digit year filter
        month: Optional 1-based month filter (requires year)
        horizon_months: Forward expansion bound for open-ended rules

    Returns:
        Dictionary mapping event_id to CalendarEntry, in input order
    """
    validate_filters(year, month)

    entries = {}
    skipped = 0
    for event in events:
        if event.status is not EventStatus.APPROVED:
            skipped += 1
            continue

        occurrences = expand(
            event.start_at,
            event.recurrence,
            event.end_at,
            horizon_months=horizon_months
        )
        if year is not None:
            occurrences = [o for o in occurrences if o.year == year]
        if month is not None:
            occurrences = [o for o in occurrences if o.month == month]

        entries[event.event_id] = CalendarEntry(event=event, occurrences=occurrences)

    logger.debug(
        f"Aggregated {len(entries)} approved events "
        f"(skipped {skipped}, year={year}, month={month})"
    )
    return entries


class CalendarService:
    """Calendar read path over the events table."""

    def __init__(self, event_store, horizon_months: int = DEFAULT_HORIZON_MONTHS):
        self.event_store = event_store
        self.horizon_months = horizon_months

    def get_calendar(self, year: Optional[int] = None, month: Optional[int] = None) -> list:
        """
        Build the calendar response for a year/month.

        Returns:
            List of serialisable event dictionaries with their occurrences
        """
        validate_filters(year, month)
        events = self.event_store.get_all()
        entries = aggregate(events, year, month, horizon_months=self.horizon_months)
        return [entry.to_dict() for entry in entries.values()]
