"""Periodic lifecycle sweep over all listings."""
import logging
from datetime import datetime
from typing import Callable, Optional

from engine.errors import StoreUnavailable
from engine.lifecycle import inactivation_cutoff, next_state
from engine.models import SweepReport, format_timestamp, utcnow

logger = logging.getLogger(__name__)


class LifecycleSweeper:
    """
    Advances every listing through its time-driven lifecycle.

    The sweep is not transactional across listings. Each write is derived
    from absolute timestamps, so an interrupted sweep is completed by the
    next one and a repeated sweep finds nothing to do.
    """

    def __init__(self, listing_store, settings_store, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            listing_store: Store exposing get_all, find_by_id and update
            settings_store: Store exposing get
            clock: Callable returning the current time (defaults to UTC now)
        """
        self.listing_store = listing_store
        self.settings_store = settings_store
        self.clock = clock or utcnow

    def run_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Run one sweep.

        Settings and the listing scan are loaded once; failures there
        propagate as StoreUnavailable. A failed update of a single listing is
        logged and reported, and the sweep continues.

        Returns:
            SweepReport with counts, the cutoff used and any per-listing errors
        """
        now = now or self.clock()
        settings = self.settings_store.get()
        cutoff = inactivation_cutoff(now, settings)
        listings = self.listing_store.get_all()

        logger.info(
            f"Starting lifecycle sweep over {len(listings)} listings "
            f"(cutoff {format_timestamp(cutoff)}, "
            f"auto_inactive_months={settings.auto_inactive_months})"
        )

        report = SweepReport(
            featured_cleared=0,
            inactivated=0,
            cutoff_date=format_timestamp(cutoff),
            examined=len(listings)
        )

        for listing in listings:
            if not next_state(listing, now, settings).changed:
                continue

            try:
                self._apply(listing.listing_id, now, settings, report)
            except StoreUnavailable as e:
                error_msg = f"Failed to update listing {listing.listing_id}: {e}"
                logger.error(error_msg)
                report.errors.append(error_msg)
                continue

        logger.info(
            f"Sweep complete: {report.featured_cleared} featured windows cleared, "
            f"{report.inactivated} listings inactivated, "
            f"{len(report.errors)} errors"
        )
        return report

    def _apply(self, listing_id: str, now: datetime, settings, report: SweepReport) -> None:
        # Re-read so the write is derived from the current record, not the scan.
        current = self.listing_store.find_by_id(listing_id)
        if current is None:
            logger.info(f"Listing {listing_id} disappeared during sweep, skipping")
            return

        transition = next_state(current, now, settings)
        if not transition.changed:
            return

        updated = self.listing_store.update(listing_id, transition.changes)
        if updated is None:
            logger.info(f"Listing {listing_id} deleted before update, skipping")
            return

        if transition.featured_cleared:
            report.featured_cleared += 1
        if transition.inactivated:
            report.inactivated += 1
        logger.debug(f"Listing {listing_id} updated: {sorted(transition.changes)}")
