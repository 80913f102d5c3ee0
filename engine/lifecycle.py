"""Listing and event lifecycle rules."""
import logging
from dataclasses import replace
from datetime import datetime

from engine.errors import NotFound, ValidationError
from engine.models import (
    Event,
    EventStatus,
    Listing,
    ListingStatus,
    Settings,
    Transition,
    parse_timestamp,
)
from engine.recurrence import add_months

logger = logging.getLogger(__name__)


def inactivation_cutoff(now: datetime, settings: Settings) -> datetime:
    """Active listings created before this instant are inactivated."""
    return add_months(parse_timestamp(now), -settings.auto_inactive_months)


def featured_expired(listing: Listing, now: datetime) -> bool:
    """True when a featured window has ended. Open-ended features never expire."""
    if not listing.featured or listing.featured_until is None:
        return False
    return listing.featured_until <= now


def next_state(listing: Listing, now: datetime, settings: Settings) -> Transition:
    """
    Apply the time-driven lifecycle rules to a listing.

    Expired featured windows are cleared regardless of status. Active
    listings older than ``settings.auto_inactive_months`` become inactive.
    Pending, rejected and inactive listings are never changed by status.

    Args:
        listing: Listing as currently stored
        now: Current time
        settings: Settings snapshot for this run

    Returns:
        Transition holding the next listing state and the changed fields
    """
    now = parse_timestamp(now)
    changes = {}
    featured_cleared = False
    inactivated = False

    if featured_expired(listing, now):
        changes['featured'] = False
        changes['featured_until'] = None
        featured_cleared = True

    status = listing.status
    if status is ListingStatus.ACTIVE:
        if listing.created_at < inactivation_cutoff(now, settings):
            changes['status'] = ListingStatus.INACTIVE
            inactivated = True
    elif status in (ListingStatus.PENDING, ListingStatus.REJECTED, ListingStatus.INACTIVE):
        pass
    else:
        raise ValueError(f"Unhandled listing status: {status}")

    if not changes:
        return Transition(listing=listing)

    return Transition(
        listing=replace(listing, **changes),
        changes=changes,
        featured_cleared=featured_cleared,
        inactivated=inactivated
    )


def review_listing(listing: Listing, approve: bool) -> Listing:
    """Admin decision on a pending listing: approve to active, or reject."""
    if listing.status is not ListingStatus.PENDING:
        raise ValidationError(
            f"Listing {listing.listing_id} is {listing.status.value}, not pending"
        )
    status = ListingStatus.ACTIVE if approve else ListingStatus.REJECTED
    return replace(listing, status=status)


def review_event(event: Event, approve: bool) -> Event:
    """Admin decision on a pending event: approve, or reject."""
    if event.status is not EventStatus.PENDING:
        raise ValidationError(
            f"Event {event.event_id} is {event.status.value}, not pending"
        )
    status = EventStatus.APPROVED if approve else EventStatus.REJECTED
    return replace(event, status=status)


class ReviewService:
    """Admin approval workflow for listings and events."""

    ACTIONS = {'approve': True, 'reject': False}

    def __init__(self, listing_store, event_store):
        self.listing_store = listing_store
        self.event_store = event_store

    def _parse_action(self, action: str) -> bool:
        if action not in self.ACTIONS:
            raise ValidationError(
                f"Invalid action {action!r}. Use 'approve' or 'reject'"
            )
        return self.ACTIONS[action]

    def review_listing(self, listing_id: str, action: str) -> Listing:
        approve = self._parse_action(action)
        listing = self.listing_store.find_by_id(listing_id)
        if listing is None:
            raise NotFound(f"Listing {listing_id} not found")

        reviewed = review_listing(listing, approve)
        updated = self.listing_store.update(listing_id, {'status': reviewed.status})
        if updated is None:
            raise NotFound(f"Listing {listing_id} not found")
        logger.info(f"Listing {listing_id} {action}d: status={updated.status.value}")
        return updated

    def review_event(self, event_id: str, action: str) -> Event:
        approve = self._parse_action(action)
        event = self.event_store.find_by_id(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found")

        reviewed = review_event(event, approve)
        updated = self.event_store.update(event_id, {'status': reviewed.status})
        if updated is None:
            raise NotFound(f"Event {event_id} not found")
        logger.info(f"Event {event_id} {action}d: status={updated.status.value}")
        return updated
