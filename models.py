"""
Entity schema for the bus transport back office.

Records are plain dicts as they sit in the document store. Each entity class
documents its collection, statuses and defaults so that consumers read
normalized records instead of patching missing fields at every call site.
"""
import copy
import uuid
from datetime import date, datetime, time, timedelta

COLLECTIONS = ('trips', 'routes', 'buses', 'users', 'bookings', 'payments',
               'attendance', 'maintenance', 'notifications')

# Trip status constants
TRIP_SCHEDULED = 'scheduled'
TRIP_ACTIVE = 'active'
TRIP_COMPLETED = 'completed'
TRIP_CANCELLED = 'cancelled'
TRIP_TERMINAL_STATUSES = (TRIP_COMPLETED, TRIP_CANCELLED)

ROLE_ADMIN = 'admin'
ROLE_SUPERVISOR = 'supervisor'
ROLE_MOVEMENT_MANAGER = 'movement-manager'
ROLE_DRIVER = 'driver'
ROLE_STUDENT = 'student'


def generate_id(prefix):
    """Generate a unique identifier"""
    return f'{prefix}-{uuid.uuid4()}'


def now_iso():
    return datetime.now().isoformat()


def parse_date(value):
    """Parse a YYYY-MM-DD date or ISO datetime into a naive local datetime.

    Returns None for anything that does not parse.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def parse_time(value):
    """Parse HH:MM or HH:MM:SS"""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return time.fromisoformat(value.strip())
    except ValueError:
        return None


def combine(date_value, time_value):
    """Instant of a trip-style (date, time) pair, or None"""
    day = parse_date(date_value)
    moment = parse_time(time_value)
    if day is None or moment is None:
        return None
    return datetime.combine(day.date(), moment)


def minutes_between(start, end):
    """Minutes from start to end on a common reference date"""
    start_time = parse_time(start)
    end_time = parse_time(end)
    if start_time is None or end_time is None:
        return None
    reference = date(2000, 1, 1)
    delta = datetime.combine(reference, end_time) - datetime.combine(reference, start_time)
    return delta / timedelta(minutes=1)


def to_number(value):
    """Coerce a stored numeric field; anything unusable counts as 0"""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return 0
        return int(number) if number.is_integer() else number
    return 0


def fill_defaults(record, defaults):
    for key, default in defaults.items():
        if record.get(key) is None:
            record[key] = default() if callable(default) else copy.deepcopy(default)


class Entity:
    collection = None
    id_prefix = None
    label = None
    statuses = ()
    defaults = {}
    # Filled only when a record is created, never when an existing one is read
    creation_defaults = {}
    numeric_fields = ()
    # foreign key field -> target collection
    references = {}

    @classmethod
    def normalize(cls, record):
        """Copy of the record with defaults filled and numbers coerced"""
        normalized = dict(record)
        fill_defaults(normalized, cls.defaults)
        for key in cls.numeric_fields:
            normalized[key] = to_number(normalized.get(key))
        return normalized

    @classmethod
    def new(cls, payload):
        """Build a fresh record with generated id and timestamps"""
        record = cls.normalize({k: v for k, v in payload.items() if k != 'id'})
        fill_defaults(record, cls.creation_defaults)
        timestamp = now_iso()
        record.update({
            'id': generate_id(cls.id_prefix),
            'createdAt': timestamp,
            'updatedAt': timestamp,
        })
        return record

    @classmethod
    def apply_update(cls, record, updates):
        """Partial update; id is immutable and updatedAt is refreshed"""
        updated = dict(record)
        updated.update({k: v for k, v in updates.items() if k not in ('id', 'createdAt')})
        updated['id'] = record['id']
        updated['updatedAt'] = now_iso()
        return updated


class Trip(Entity):
    collection = 'trips'
    id_prefix = 'trip'
    label = 'Trip'
    statuses = (TRIP_SCHEDULED, TRIP_ACTIVE, TRIP_COMPLETED, TRIP_CANCELLED)
    defaults = {
        'status': TRIP_SCHEDULED,
        'passengers': 0,
        'operationalCost': 0,
    }
    numeric_fields = ('passengers', 'operationalCost')
    references = {
        'routeId': 'routes',
        'busId': 'buses',
        'driverId': 'users',
        'supervisorId': 'users',
    }


class Route(Entity):
    collection = 'routes'
    id_prefix = 'route'
    label = 'Route'
    defaults = {
        'distance': 0,
        'estimatedDuration': 0,
        'stops': [],
    }
    numeric_fields = ('distance', 'estimatedDuration')


class Bus(Entity):
    collection = 'buses'
    id_prefix = 'bus'
    label = 'Bus'
    statuses = ('active', 'inactive', 'maintenance')
    defaults = {
        'status': 'active',
        'capacity': 0,
    }
    numeric_fields = ('capacity',)


class User(Entity):
    collection = 'users'
    id_prefix = 'user'
    label = 'User'
    statuses = ('active', 'inactive', 'suspended')
    roles = (ROLE_ADMIN, ROLE_SUPERVISOR, ROLE_MOVEMENT_MANAGER, ROLE_DRIVER, ROLE_STUDENT)
    defaults = {
        'status': 'active',
    }


class Booking(Entity):
    collection = 'bookings'
    id_prefix = 'booking'
    label = 'Booking'
    statuses = ('pending', 'confirmed', 'cancelled', 'completed')
    defaults = {
        'status': 'pending',
    }
    creation_defaults = {
        'date': lambda: date.today().isoformat(),
    }
    references = {
        'tripId': 'trips',
        'studentId': 'users',
    }


class Payment(Entity):
    collection = 'payments'
    id_prefix = 'payment'
    label = 'Payment'
    statuses = ('pending', 'completed', 'failed')
    defaults = {
        'status': 'pending',
        'amount': 0,
    }
    creation_defaults = {
        'date': lambda: date.today().isoformat(),
    }
    numeric_fields = ('amount',)
    references = {
        'tripId': 'trips',
        'bookingId': 'bookings',
        'studentId': 'users',
    }


class AttendanceRecord(Entity):
    collection = 'attendance'
    id_prefix = 'attendance'
    label = 'Attendance record'
    statuses = ('present', 'absent', 'late')
    defaults = {
        'status': 'present',
    }
    creation_defaults = {
        'date': lambda: date.today().isoformat(),
    }
    references = {
        'tripId': 'trips',
        'studentId': 'users',
    }


class MaintenanceRecord(Entity):
    collection = 'maintenance'
    id_prefix = 'maintenance'
    label = 'Maintenance record'
    statuses = ('open', 'in_progress', 'completed')
    priorities = ('low', 'medium', 'high', 'critical')
    defaults = {
        'status': 'open',
        'priority': 'medium',
        'estimatedCost': 0,
        'actualCost': 0,
    }
    numeric_fields = ('estimatedCost', 'actualCost')
    references = {
        'busId': 'buses',
    }


class Notification(Entity):
    collection = 'notifications'
    id_prefix = 'notification'
    label = 'Notification'
    statuses = ('unread', 'read')
    priorities = ('low', 'medium', 'high', 'critical')
    defaults = {
        'status': 'unread',
        'priority': 'medium',
        'type': 'general',
    }
    references = {
        'tripId': 'trips',
        'userId': 'users',
    }


ENTITIES = {entity.collection: entity for entity in (
    Trip, Route, Bus, User, Booking, Payment, AttendanceRecord, MaintenanceRecord, Notification,
)}


def empty_document():
    return {name: [] for name in COLLECTIONS}
