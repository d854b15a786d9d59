"""
Time-driven trip lifecycle.

scheduled -> active -> completed, or -> cancelled. completed and cancelled are
terminal. The only automatic transition completes scheduled/active trips whose
end instant has passed.
"""
import logging
from datetime import datetime

from models import TRIP_ACTIVE, TRIP_COMPLETED, TRIP_SCHEDULED, combine, now_iso

logger = logging.getLogger(__name__)

AUTO_COMPLETABLE = (TRIP_SCHEDULED, TRIP_ACTIVE)


def end_instant(trip):
    return combine(trip.get('date'), trip.get('endTime'))


def is_overdue(trip, now):
    if trip.get('status') not in AUTO_COMPLETABLE:
        return False
    end = end_instant(trip)
    return end is not None and end < now


def complete_overdue(document, now):
    """Complete overdue trips in place; returns the ids that changed"""
    changed = []
    timestamp = now_iso()
    for trip in document.get('trips', []):
        if is_overdue(trip, now):
            trip['status'] = TRIP_COMPLETED
            trip['updatedAt'] = timestamp
            changed.append(trip.get('id'))
    return changed


def sweep(store, now=None):
    """Read the store, completing overdue trips in a single write if needed.

    Returns (document, changed). The document is the committed state after
    the sweep, so callers need not read again.
    """
    now = now or datetime.now()
    document = store.read()
    if not any(is_overdue(trip, now) for trip in document['trips']):
        return document, False

    completed = []

    def apply(fresh):
        completed.extend(complete_overdue(fresh, now))
        return fresh

    document = store.mutate(apply)
    logger.info(f"Lifecycle sweep completed {len(completed)} trip(s): {completed}")
    return document, bool(completed)
