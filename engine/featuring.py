"""Featured ("highlight for N days") windows on listings."""
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from engine.errors import AuthorizationError, NotFound, ValidationError
from engine.models import Listing, Settings, format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


def validate_days(days, settings: Settings) -> int:
    """Check a requested duration against the configured highlight options."""
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise ValidationError(f"Invalid number of days: {days!r}")
    if days not in settings.highlight_options:
        allowed = ', '.join(str(d) for d in settings.highlight_options)
        raise ValidationError(
            f"Invalid number of days: {days}. Allowed options: {allowed}"
        )
    return days


def request_feature(
    listing: Listing,
    requester_id: str,
    days,
    settings: Settings,
    now: datetime
) -> Listing:
    """
    Feature a listing for ``days`` days starting at ``now``.

    Any existing window is replaced, not extended.

    Raises:
        ValidationError: days is not one of settings.highlight_options
        AuthorizationError: requester does not own the listing
    """
    days = validate_days(days, settings)
    if requester_id is None or requester_id != listing.created_by:
        raise AuthorizationError(
            f"User {requester_id} does not own listing {listing.listing_id}"
        )
    return replace(
        listing,
        featured=True,
        featured_until=parse_timestamp(now) + timedelta(days=days)
    )


class FeatureService:
    """Applies feature requests against the record store."""

    def __init__(self, listing_store, settings_store):
        self.listing_store = listing_store
        self.settings_store = settings_store

    def feature_listing(
        self,
        listing_id: str,
        requester_id: str,
        days,
        now: Optional[datetime] = None
    ) -> Listing:
        now = now or utcnow()
        settings = self.settings_store.get()
        validate_days(days, settings)

        listing = self.listing_store.find_by_id(listing_id)
        if listing is None:
            raise NotFound(f"Listing {listing_id} not found")

        featured = request_feature(listing, requester_id, days, settings, now)
        updated = self.listing_store.update(listing_id, {
            'featured': True,
            'featured_until': featured.featured_until
        })
        if updated is None:
            raise NotFound(f"Listing {listing_id} not found")

        logger.info(
            f"Listing {listing_id} featured for {days} days "
            f"until {format_timestamp(featured.featured_until)}"
        )
        return updated
