"""Data models for events, listings and lifecycle results."""
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_AUTO_INACTIVE_MONTHS = 4
DEFAULT_HIGHLIGHT_OPTIONS = (7, 14, 21, 30)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Naive values are taken as UTC. Returns None for empty or unparseable input.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            logger.warning(f"Unparseable timestamp: {value!r}")
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as ISO-8601 in UTC."""
    if value is None:
        return None
    return parse_timestamp(value).isoformat()


def _to_bool(value: Any) -> bool:
    """Read a stored flag; only true booleans, non-zero numbers and "true"/"1" count."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, Decimal)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1')
    return False


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, Decimal)):
        return int(value)
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return default


class Frequency(Enum):
    """Recurrence frequency."""
    NONE = 'none'
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    MONTHLY_WEEKDAY = 'monthly_weekday'
    YEARLY = 'yearly'
    SPECIFIC = 'specific'

    @classmethod
    def parse(cls, raw: Any) -> 'Frequency':
        """
        Map a stored frequency value onto a Frequency.

        Unknown values degrade to NONE rather than raising, since they come
        from stored records.
        """
        if isinstance(raw, cls):
            return raw
        if raw is None:
            return cls.NONE
        text = str(raw).strip().lower()
        text = _FREQUENCY_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            logger.warning(
                f"Unknown recurrence frequency {raw!r}, treating as single occurrence"
            )
            return cls.NONE


_FREQUENCY_ALIASES = {
    'single': 'none',
    '': 'none',
    'annual': 'yearly',
}


class EventStatus(Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class ListingStatus(Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    REJECTED = 'rejected'
    INACTIVE = 'inactive'


_COUNT_KEYS = ('count', 'generateDays', 'generateWeeks', 'generateMonths', 'generateYears')
_DATE_ONLY = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_DATE_SPACE_TIME = re.compile(r'^(\d{4}-\d{2}-\d{2})\s+(\d{2}:\d{2}(:\d{2})?)$')


def parse_specific_date(value: Any) -> Union[date, datetime, None]:
    """
    Parse one entry of a specific-dates rule.

    A bare ``YYYY-MM-DD`` stays a date (it takes the event's start time at
    expansion); ``YYYY-MM-DD HH:MM`` and ISO-8601 become UTC datetimes.
    """
    if isinstance(value, datetime):
        return parse_timestamp(value)
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if _DATE_ONLY.match(text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            logger.warning(f"Invalid specific date: {value!r}")
            return None
    match = _DATE_SPACE_TIME.match(text)
    if match:
        text = f"{match.group(1)}T{match.group(2)}"
    return parse_timestamp(text)


@dataclass(frozen=True)
class RecurrenceRule:
    """
    Recurrence rule attached to an event. Interval is always one unit.

    ``count`` caps the number of occurrences (anchor included). ``weekday``
    (0 = Sunday, as stored) and ``nth`` drive MONTHLY_WEEKDAY; ``dates``
    holds the explicit dates of a SPECIFIC rule.
    """
    frequency: Frequency = Frequency.NONE
    until: Optional[datetime] = None
    count: Optional[int] = None
    weekday: Optional[int] = None
    nth: Optional[int] = None
    dates: Tuple[Union[date, datetime], ...] = ()

    @classmethod
    def from_item(cls, item: Any) -> 'RecurrenceRule':
        if not isinstance(item, dict):
            return cls()
        raw = item.get('frequency', item.get('type'))
        frequency = Frequency.parse(raw)

        count = None
        for key in _COUNT_KEYS:
            if item.get(key) is not None:
                count = _to_int(item.get(key), 0) or None
                break
        if count is not None and count < 1:
            count = None

        weekday = None
        raw_weekday = item.get('weekday', item.get('dayOfWeek'))
        if raw_weekday is not None:
            weekday = _to_int(raw_weekday, -1)
            if not 0 <= weekday <= 6:
                logger.warning(f"Ignoring invalid recurrence weekday {raw_weekday!r}")
                weekday = None

        nth = None
        if item.get('nth') is not None:
            nth = min(max(_to_int(item.get('nth'), 1), 1), 5)

        dates = ()
        raw_dates = item.get('dates')
        if isinstance(raw_dates, str):
            raw_dates = [raw_dates]
        if isinstance(raw_dates, (list, tuple)):
            parsed = [parse_specific_date(value) for value in raw_dates]
            dates = tuple(value for value in parsed if value is not None)

        return cls(
            frequency=frequency,
            until=parse_timestamp(item.get('until')),
            count=count,
            weekday=weekday,
            nth=nth,
            dates=dates
        )

    def to_item(self) -> Dict[str, Any]:
        item = {'frequency': self.frequency.value}
        if self.until:
            item['until'] = format_timestamp(self.until)
        if self.count is not None:
            item['count'] = self.count
        if self.weekday is not None:
            item['weekday'] = self.weekday
        if self.nth is not None:
            item['nth'] = self.nth
        if self.dates:
            item['dates'] = [
                format_timestamp(d) if isinstance(d, datetime) else d.isoformat()
                for d in self.dates
            ]
        return item


@dataclass
class Event:
    """Calendar event as stored in the events table."""
    event_id: str
    title: str
    start_at: datetime
    end_at: Optional[datetime] = None
    recurrence: Optional[RecurrenceRule] = None
    status: EventStatus = EventStatus.PENDING
    created_by: Optional[str] = None

    @classmethod
    def from_item(cls, item: dict) -> 'Event':
        start_at = parse_timestamp(item.get('start_at'))
        if start_at is None:
            raise ValueError(f"Event {item.get('event_id')!r} has no valid start_at")
        recurrence = item.get('recurrence')
        return cls(
            event_id=item['event_id'],
            title=item.get('title', ''),
            start_at=start_at,
            end_at=parse_timestamp(item.get('end_at')),
            recurrence=RecurrenceRule.from_item(recurrence) if recurrence else None,
            status=EventStatus(item.get('status', 'pending')),
            created_by=item.get('created_by')
        )

    def to_item(self) -> dict:
        item = {
            'event_id': self.event_id,
            'title': self.title,
            'start_at': format_timestamp(self.start_at),
            'status': self.status.value
        }
        if self.end_at:
            item['end_at'] = format_timestamp(self.end_at)
        if self.recurrence:
            item['recurrence'] = self.recurrence.to_item()
        if self.created_by:
            item['created_by'] = self.created_by
        return item


@dataclass
class Listing:
    """Classified listing as stored in the listings table."""
    listing_id: str
    status: ListingStatus
    created_at: datetime
    created_by: str
    featured: bool = False
    featured_until: Optional[datetime] = None
    title: str = ''

    @classmethod
    def from_item(cls, item: dict) -> 'Listing':
        created_at = parse_timestamp(item.get('created_at'))
        if created_at is None:
            raise ValueError(
                f"Listing {item.get('listing_id')!r} has no valid created_at"
            )
        return cls(
            listing_id=item['listing_id'],
            status=ListingStatus(item.get('status', 'pending')),
            created_at=created_at,
            created_by=item.get('created_by', ''),
            featured=_to_bool(item.get('featured')),
            featured_until=parse_timestamp(item.get('featured_until')),
            title=item.get('title', '')
        )

    def to_item(self) -> dict:
        item = {
            'listing_id': self.listing_id,
            'status': self.status.value,
            'created_at': format_timestamp(self.created_at),
            'created_by': self.created_by,
            'featured': self.featured,
            'title': self.title
        }
        if self.featured_until:
            item['featured_until'] = format_timestamp(self.featured_until)
        return item


@dataclass(frozen=True)
class Settings:
    """Site-wide listing settings, read fresh for every operation."""
    auto_inactive_months: int = DEFAULT_AUTO_INACTIVE_MONTHS
    highlight_options: Tuple[int, ...] = DEFAULT_HIGHLIGHT_OPTIONS

    @classmethod
    def from_item(cls, item: Optional[dict]) -> 'Settings':
        listings = (item or {}).get('listings') or {}
        months = _to_int(
            listings.get('autoInactiveMonths'), DEFAULT_AUTO_INACTIVE_MONTHS
        )
        if months <= 0:
            months = DEFAULT_AUTO_INACTIVE_MONTHS

        raw_options = listings.get('highlightOptions')
        options = []
        if isinstance(raw_options, (list, tuple, set)):
            for value in raw_options:
                days = _to_int(value, 0)
                if days > 0 and days not in options:
                    options.append(days)
        if not options:
            options = list(DEFAULT_HIGHLIGHT_OPTIONS)

        return cls(
            auto_inactive_months=months,
            highlight_options=tuple(sorted(options))
        )

    def to_item(self) -> dict:
        return {
            'listings': {
                'autoInactiveMonths': self.auto_inactive_months,
                'highlightOptions': list(self.highlight_options)
            }
        }


@dataclass
class CalendarEntry:
    """An approved event together with its occurrences in the requested window."""
    event: Event
    occurrences: List[datetime]

    def to_dict(self) -> dict:
        return {
            'id': self.event.event_id,
            'title': self.event.title,
            'start_at': format_timestamp(self.event.start_at),
            'end_at': format_timestamp(self.event.end_at),
            'recurrence': (
                self.event.recurrence.to_item() if self.event.recurrence else None
            ),
            'occurrences': [format_timestamp(o) for o in self.occurrences]
        }


@dataclass
class Transition:
    """Outcome of applying the lifecycle rules to one listing."""
    listing: Listing
    changes: Dict[str, Any] = field(default_factory=dict)
    featured_cleared: bool = False
    inactivated: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.changes)


@dataclass
class SweepReport:
    """Result of a lifecycle sweep."""
    featured_cleared: int
    inactivated: int
    cutoff_date: str
    examined: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'featured_cleared': self.featured_cleared,
            'inactivated': self.inactivated,
            'cutoff_date': self.cutoff_date,
            'examined': self.examined,
            'errors': self.errors
        }
