"""
Notifications emitted as a side effect of trip creation.

Emission runs inside the same store mutation as the trip insert but never
fails it: the notifications are built first and appended only if building
all of them succeeded.
"""
import logging
from collections import namedtuple

from data_store import find_record
from models import Notification, generate_id, now_iso

logger = logging.getLogger(__name__)

Emission = namedtuple('Emission', ['notifications', 'error'])

ASSIGNMENTS = (
    # (trip field, role shown in the message, dashboard link)
    ('supervisorId', 'supervisor', '/dashboard/supervisor/trips'),
    ('driverId', 'driver', '/dashboard/driver/trips'),
)


def build_trip_notifications(document, trip):
    """One notification per party assigned to the trip"""
    bus = find_record(document.get('buses', []), trip.get('busId')) or {}
    route = find_record(document.get('routes', []), trip.get('routeId')) or {}
    start = route.get('startLocation') or route.get('startPoint') or ''
    end = route.get('endLocation') or route.get('endPoint') or ''
    when = f"{trip.get('date', '')} {trip.get('startTime', '')}".strip()

    notifications = []
    for field, role, action_url in ASSIGNMENTS:
        user_id = trip.get(field)
        if not user_id:
            continue
        timestamp = now_iso()
        notifications.append({
            'id': generate_id(Notification.id_prefix),
            'userId': user_id,
            'senderId': 'system',
            'type': 'trip_created',
            'priority': 'medium',
            'status': 'unread',
            'read': False,
            'title': 'New trip assigned',
            'message': (f"You have been assigned as {role} for trip {trip['id']} - "
                        f"bus {bus.get('number', '')} - {start} -> {end} - {when}."),
            'busId': trip.get('busId'),
            'routeId': trip.get('routeId'),
            'tripId': trip['id'],
            'actionUrl': action_url,
            'createdAt': timestamp,
            'updatedAt': timestamp,
        })
    return notifications


def emit_trip_created(document, trip, builder=None):
    """Append trip-created notifications to the document, best effort"""
    try:
        notifications = (builder or build_trip_notifications)(document, trip)
    except Exception as e:
        logger.exception(f"Failed to create notifications for new trip {trip.get('id')}")
        return Emission([], e)
    document.setdefault('notifications', []).extend(notifications)
    return Emission(notifications, None)
