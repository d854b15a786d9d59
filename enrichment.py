"""
Join/enrichment engine.

Resolves foreign keys into nested views and attaches per-record metrics.
A key that points at a missing record resolves to None and metrics over
empty dependent sets are 0; nothing here raises on dangling references.
"""
from datetime import date

from models import COLLECTIONS, ENTITIES, minutes_between, parse_date, parse_time
from query import (average, count_status, filter_equal, group_by, index_by, matches_search,
                   percent, round2, same_day, sum_amount)

DEFAULT_ON_TIME_TOLERANCE = 5


class Snapshot:
    """Normalized collections of one document read, with id maps built once"""

    def __init__(self, document):
        self.collections = {}
        for name in COLLECTIONS:
            entity = ENTITIES[name]
            records = document.get(name) or []
            self.collections[name] = [entity.normalize(r) for r in records if isinstance(r, dict)]
        self.by_id = {name: index_by(records) for name, records in self.collections.items()}
        self.bookings_by_trip = group_by(self.bookings, 'tripId')
        self.payments_by_trip = group_by(self.payments, 'tripId')
        self.attendance_by_trip = group_by(self.attendance, 'tripId')
        self.payments_by_booking = group_by(self.payments, 'bookingId')
        self.trips_by_route = group_by(self.trips, 'routeId')
        self.trips_by_bus = group_by(self.trips, 'busId')
        self.maintenance_by_bus = group_by(self.maintenance, 'busId')

    def __getattr__(self, name):
        collections = self.__dict__.get('collections', {})
        if name in collections:
            return collections[name]
        raise AttributeError(name)

    def get(self, collection, record_id):
        if record_id is None:
            return None
        return self.by_id[collection].get(record_id)


# Nested views

def route_view(route):
    if route is None:
        return None
    return {
        'id': route.get('id'),
        'name': route.get('name'),
        'startPoint': route.get('startPoint'),
        'endPoint': route.get('endPoint'),
        'distance': route.get('distance'),
        'estimatedDuration': route.get('estimatedDuration'),
    }


def bus_view(bus):
    if bus is None:
        return None
    return {
        'id': bus.get('id'),
        'number': bus.get('number'),
        'model': bus.get('model'),
        'capacity': bus.get('capacity'),
        'status': bus.get('status'),
    }


def driver_view(user):
    if user is None:
        return None
    return {
        'id': user.get('id'),
        'name': user.get('name'),
        'phone': user.get('phone'),
        'licenseNumber': user.get('licenseNumber'),
    }


def supervisor_view(user):
    if user is None:
        return None
    return {'id': user.get('id'), 'name': user.get('name'), 'phone': user.get('phone')}


def student_view(user):
    if user is None:
        return None
    return {
        'id': user.get('id'),
        'name': user.get('name'),
        'email': user.get('email'),
        'phone': user.get('phone'),
        'studentId': user.get('studentId'),
    }


def user_view(user):
    if user is None:
        return None
    return {'id': user.get('id'), 'name': user.get('name'), 'role': user.get('role')}


def trip_brief(trip):
    if trip is None:
        return None
    return {
        'id': trip.get('id'),
        'date': trip.get('date'),
        'startTime': trip.get('startTime'),
        'endTime': trip.get('endTime'),
        'status': trip.get('status'),
        'routeId': trip.get('routeId'),
    }


# Trip metrics

def punctuality(trip, tolerance=DEFAULT_ON_TIME_TOLERANCE):
    """(is_on_time, delay_minutes) for a trip.

    On time means an actual start was recorded within `tolerance` minutes of
    the scheduled start (scheduledTime, else startTime).
    """
    scheduled = trip.get('scheduledTime') or trip.get('startTime')
    actual = trip.get('actualStartTime')
    if parse_time(scheduled) is None or parse_time(actual) is None:
        return False, 0
    delay = abs(minutes_between(scheduled, actual))
    return delay <= tolerance, delay


def trip_duration(trip):
    return minutes_between(trip.get('startTime'), trip.get('endTime')) or 0


def utilization(trip, bus):
    if bus is None or not bus.get('capacity'):
        return 0
    return percent(trip.get('passengers') or 0, bus['capacity'])


def enrich_trip(trip, snapshot, tolerance=DEFAULT_ON_TIME_TOLERANCE):
    route = snapshot.get('routes', trip.get('routeId'))
    bus = snapshot.get('buses', trip.get('busId'))
    driver = snapshot.get('users', trip.get('driverId'))
    supervisor = snapshot.get('users', trip.get('supervisorId'))

    trip_bookings = snapshot.bookings_by_trip.get(trip.get('id'), [])
    trip_payments = snapshot.payments_by_trip.get(trip.get('id'), [])
    trip_attendance = snapshot.attendance_by_trip.get(trip.get('id'), [])

    confirmed = count_status(trip_bookings, 'confirmed')
    total_revenue = sum_amount(trip_payments, 'completed')
    pending_revenue = sum_amount(trip_payments, 'pending')
    total_cost = trip.get('operationalCost') or 0
    profit = total_revenue - total_cost
    present = count_status(trip_attendance, 'present')
    passengers = trip.get('passengers') or 0
    on_time, delay = punctuality(trip, tolerance)

    enriched = dict(trip)
    enriched.update({
        'route': route_view(route),
        'bus': bus_view(bus),
        'driver': driver_view(driver),
        'supervisor': supervisor_view(supervisor),
        'bookings': {
            'total': len(trip_bookings),
            'confirmed': confirmed,
            'pending': count_status(trip_bookings, 'pending'),
            'cancelled': count_status(trip_bookings, 'cancelled'),
            'confirmationRate': round2(percent(confirmed, len(trip_bookings))),
            'list': [{
                'id': booking.get('id'),
                'status': booking.get('status'),
                'date': booking.get('date'),
                'student': student_view(snapshot.get('users', booking.get('studentId'))),
            } for booking in trip_bookings],
        },
        'payments': {
            'total': len(trip_payments),
            'completed': count_status(trip_payments, 'completed'),
            'pending': count_status(trip_payments, 'pending'),
            'failed': count_status(trip_payments, 'failed'),
            'totalRevenue': total_revenue,
            'pendingRevenue': pending_revenue,
            'totalCost': total_cost,
            'profit': profit,
            'profitMargin': round2(percent(profit, total_revenue)),
        },
        'attendance': {
            'total': len(trip_attendance),
            'present': present,
            'absent': count_status(trip_attendance, 'absent'),
            'late': count_status(trip_attendance, 'late'),
            'rate': round2(percent(present, len(trip_attendance))),
        },
        'performance': {
            'tripDuration': round2(trip_duration(trip)),
            'utilizationRate': round2(utilization(trip, bus)),
            'revenuePerPassenger': total_revenue / passengers if passengers > 0 else 0,
            'isOnTime': on_time,
            'delayMinutes': round2(delay),
        },
    })
    return enriched


def filter_trips(snapshot, status=None, date=None, routeId=None, busId=None,
                 driverId=None, supervisorId=None, search=None):
    trips = filter_equal(snapshot.trips, status=status, routeId=routeId, busId=busId,
                         driverId=driverId, supervisorId=supervisorId)
    if date:
        trips = [trip for trip in trips if same_day(trip.get('date'), date)]
    if search:
        def searchable(trip):
            route = snapshot.get('routes', trip.get('routeId')) or {}
            bus = snapshot.get('buses', trip.get('busId')) or {}
            driver = snapshot.get('users', trip.get('driverId')) or {}
            supervisor = snapshot.get('users', trip.get('supervisorId')) or {}
            return matches_search(search, trip.get('id'), route.get('name'), bus.get('number'),
                                  driver.get('name'), supervisor.get('name'))
        trips = [trip for trip in trips if searchable(trip)]
    return trips


def newest_first(records, field='date'):
    return sorted(records, key=lambda r: parse_date(r.get(field)) or parse_date('0001-01-01'),
                  reverse=True)


def trips_summary(enriched_trips):
    total = len(enriched_trips)
    completed = count_status(enriched_trips, 'completed')
    total_revenue = sum(t['payments']['totalRevenue'] for t in enriched_trips)
    total_cost = sum(t['payments']['totalCost'] for t in enriched_trips)
    on_time = sum(1 for t in enriched_trips if t['performance']['isOnTime'])
    return {
        'totalTrips': total,
        'completedTrips': completed,
        'activeTrips': count_status(enriched_trips, 'active'),
        'scheduledTrips': count_status(enriched_trips, 'scheduled'),
        'cancelledTrips': count_status(enriched_trips, 'cancelled'),
        'completionRate': round2(percent(completed, total)),
        'totalBookings': sum(t['bookings']['total'] for t in enriched_trips),
        'totalRevenue': total_revenue,
        'totalCost': total_cost,
        'totalProfit': total_revenue - total_cost,
        'totalPassengers': sum(t.get('passengers') or 0 for t in enriched_trips),
        'averageUtilization': round2(average(t['performance']['utilizationRate'] for t in enriched_trips)),
        'averageAttendanceRate': round2(average(t['attendance']['rate'] for t in enriched_trips)),
        'averageProfitMargin': round2(average(t['payments']['profitMargin'] for t in enriched_trips)),
        'onTimeRate': round2(percent(on_time, total)),
    }


def list_trips(snapshot, filters=None, tolerance=DEFAULT_ON_TIME_TOLERANCE):
    """Filter first, then enrich only the surviving trips"""
    trips = filter_trips(snapshot, **(filters or {}))
    enriched = [enrich_trip(trip, snapshot, tolerance) for trip in newest_first(trips)]
    return {'trips': enriched, 'summary': trips_summary(enriched)}


# Bookings

def filter_bookings(snapshot, status=None, date=None, tripId=None, studentId=None,
                    routeId=None, search=None):
    bookings = filter_equal(snapshot.bookings, status=status, tripId=tripId, studentId=studentId)
    if date:
        bookings = [b for b in bookings if same_day(b.get('date'), date)]
    if routeId:
        route_trip_ids = {t.get('id') for t in snapshot.trips_by_route.get(routeId, [])}
        bookings = [b for b in bookings if b.get('tripId') in route_trip_ids]
    if search:
        def searchable(booking):
            trip = snapshot.get('trips', booking.get('tripId')) or {}
            route = snapshot.get('routes', trip.get('routeId')) or {}
            student = snapshot.get('users', booking.get('studentId')) or {}
            return matches_search(search, booking.get('id'), trip.get('id'), route.get('name'),
                                  student.get('name'), student.get('studentId'))
        bookings = [b for b in bookings if searchable(b)]
    return bookings


def enrich_booking(booking, snapshot, today=None):
    today = today or date.today()
    trip = snapshot.get('trips', booking.get('tripId'))
    route = snapshot.get('routes', trip.get('routeId')) if trip else None
    student = snapshot.get('users', booking.get('studentId'))
    payments = snapshot.payments_by_booking.get(booking.get('id'), [])
    payment = payments[0] if payments else None

    trip_details = None
    timing = {'isUpcoming': False, 'isToday': False, 'isPast': False}
    if trip is not None:
        trip_details = trip_brief(trip)
        trip_details['passengers'] = trip.get('passengers') or 0
        trip_day = parse_date(trip.get('date'))
        if trip_day is not None:
            timing = {
                'isUpcoming': trip_day.date() > today,
                'isToday': trip_day.date() == today,
                'isPast': trip_day.date() < today,
            }
        trip_details.update(timing)

    booked_on = parse_date(booking.get('date'))
    enriched = dict(booking)
    enriched.update({
        'trip': trip_details,
        'route': route_view(route),
        'student': student_view(student),
        'payment': {
            'id': payment.get('id') if payment else None,
            'status': payment.get('status') if payment else 'unpaid',
            'amount': payment.get('amount') if payment else 0,
            'date': payment.get('date') if payment else None,
        },
        'metadata': dict(timing, **{
            'ageInDays': (today - booked_on.date()).days if booked_on else None,
            'isConfirmed': booking.get('status') == 'confirmed',
            'isPending': booking.get('status') == 'pending',
            'isCancelled': booking.get('status') == 'cancelled',
        }),
    })
    return enriched


def bookings_summary(enriched_bookings):
    total = len(enriched_bookings)
    paid = [b for b in enriched_bookings if b['payment']['status'] == 'completed']
    cancelled = count_status(enriched_bookings, 'cancelled')
    confirmed = count_status(enriched_bookings, 'confirmed')
    return {
        'totalBookings': total,
        'confirmedBookings': confirmed,
        'pendingBookings': count_status(enriched_bookings, 'pending'),
        'cancelledBookings': cancelled,
        'completedBookings': count_status(enriched_bookings, 'completed'),
        'confirmationRate': round2(percent(confirmed, total)),
        'paymentRate': round2(percent(len(paid), total)),
        'cancellationRate': round2(percent(cancelled, total)),
        'totalRevenue': sum(b['payment']['amount'] for b in paid),
        'pendingRevenue': sum(b['payment']['amount'] for b in enriched_bookings
                              if b['payment']['status'] == 'pending'),
        'paidBookings': len(paid),
        'unpaidBookings': sum(1 for b in enriched_bookings if b['payment']['status'] == 'unpaid'),
        'upcomingBookings': sum(1 for b in enriched_bookings if b['metadata']['isUpcoming']),
        'todayBookings': sum(1 for b in enriched_bookings if b['metadata']['isToday']),
        'pastBookings': sum(1 for b in enriched_bookings if b['metadata']['isPast']),
    }


def list_bookings(snapshot, filters=None):
    bookings = filter_bookings(snapshot, **(filters or {}))
    enriched = [enrich_booking(b, snapshot) for b in newest_first(bookings)]
    return {'bookings': enriched, 'summary': bookings_summary(enriched)}


# Remaining collections: equality filters, text search and generic joins

LIST_FILTERS = {
    'routes': {'fields': (), 'search': ('name', 'startPoint', 'endPoint')},
    'buses': {'fields': ('status',), 'search': ('number', 'model')},
    'users': {'fields': ('role', 'status'), 'search': ('name', 'email', 'studentId')},
    'payments': {'fields': ('status', 'tripId', 'studentId', 'bookingId'), 'search': ('id',)},
    'attendance': {'fields': ('status', 'tripId', 'studentId'), 'search': ('id',)},
    'maintenance': {'fields': ('status', 'priority', 'busId'), 'search': ('id', 'description')},
    'notifications': {'fields': ('userId', 'status', 'type', 'tripId'), 'search': ('title', 'message')},
}

REFERENCE_VIEWS = {
    'tripId': ('trip', 'trips', trip_brief),
    'bookingId': ('booking', 'bookings', lambda b: b and {'id': b.get('id'), 'status': b.get('status')}),
    'studentId': ('student', 'users', student_view),
    'busId': ('bus', 'buses', bus_view),
    'userId': ('user', 'users', user_view),
}


def enrich_record(collection, record, snapshot):
    enriched = dict(record)
    for key in ENTITIES[collection].references:
        if key in REFERENCE_VIEWS:
            name, target, view = REFERENCE_VIEWS[key]
            enriched[name] = view(snapshot.get(target, record.get(key)))
    if collection == 'buses':
        maintenance = snapshot.maintenance_by_bus.get(record.get('id'), [])
        enriched['tripCount'] = len(snapshot.trips_by_bus.get(record.get('id'), []))
        enriched['maintenanceCount'] = len(maintenance)
        enriched['openMaintenance'] = count_status(maintenance, 'open')
    elif collection == 'routes':
        enriched['tripCount'] = len(snapshot.trips_by_route.get(record.get('id'), []))
    return enriched


def filter_records(collection, snapshot, args):
    options = LIST_FILTERS[collection]
    records = filter_equal(snapshot.collections[collection],
                           **{field: args.get(field) for field in options['fields']})
    if args.get('date'):
        records = [r for r in records if same_day(r.get('date'), args['date'])]
    if collection == 'notifications' and str(args.get('unread', '')).lower() == 'true':
        records = [r for r in records if r.get('status') == 'unread' or r.get('read') is False]
    search = args.get('search')
    if search:
        records = [r for r in records
                   if matches_search(search, *(r.get(field) for field in options['search']))]
    return records


def list_records(collection, snapshot, args):
    records = filter_records(collection, snapshot, args)
    return {
        collection: [enrich_record(collection, r, snapshot) for r in records],
        'total': len(records),
    }
