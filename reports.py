"""
Aggregation/reporting engine.

Each report is a pure function of the filtered collections and returns
{type, filters, summary, breakdown}. Trips are filtered by the date range and
the entity filters; bookings, payments, attendance and maintenance only by
the date range. Every grouping carries an "Unassigned" row for records that
cannot be attributed to a known group, so summary counts and amounts always
equal the breakdown sums.
"""
import logging
from collections import defaultdict

from enrichment import DEFAULT_ON_TIME_TOLERANCE, Snapshot, punctuality
from exceptions import ValidationError
from models import (ROLE_ADMIN, ROLE_DRIVER, ROLE_MOVEMENT_MANAGER, ROLE_STUDENT, ROLE_SUPERVISOR,
                    MaintenanceRecord, Trip, User)
from query import DateRange, count_by, count_status, filter_equal, percent, round2, sum_amount

logger = logging.getLogger(__name__)

REPORT_TYPES = ('overview', 'financial', 'operational', 'performance', 'maintenance', 'user')
ENTITY_FILTERS = ('routeId', 'busId', 'driverId', 'supervisorId')
UNASSIGNED = 'Unassigned'


class ReportInput:
    """The date/entity-filtered slices a report is computed from"""

    def __init__(self, snapshot, date_range, entity_filters):
        self.snapshot = snapshot
        self.trips = filter_equal(date_range.filter(snapshot.trips, 'date'), **entity_filters)
        self.bookings = date_range.filter(snapshot.bookings, 'date')
        self.payments = date_range.filter(snapshot.payments, 'date')
        self.attendance = date_range.filter(snapshot.attendance, 'date')
        self.maintenance = date_range.filter(snapshot.maintenance, 'date', 'createdAt')
        self.trip_index = {trip['id']: trip for trip in self.trips if trip.get('id') is not None}

    def trip_field(self, record, field):
        """Field of the filtered trip a dependent record belongs to, else None"""
        trip = self.trip_index.get(record.get('tripId'))
        return trip.get(field) if trip else None


# Grouping

def partition(records, key_fn, known_ids):
    groups = defaultdict(list)
    for record in records:
        key = key_fn(record)
        groups[key if key in known_ids else None].append(record)
    return groups


def grouped_rows(owners, id_field, name_field, name_of, partitions, build, extra=None):
    """One row per owner, plus an Unassigned row when anything is unattributed"""
    rows = []
    for owner in owners:
        parts = [p.get(owner['id'], []) for p in partitions]
        row = {id_field: owner['id'], name_field: name_of(owner)}
        row.update(build(*parts))
        if extra:
            row.update(extra(owner))
        rows.append(row)
    leftovers = [p.get(None, []) for p in partitions]
    if any(leftovers):
        row = {id_field: None, name_field: UNASSIGNED}
        row.update(build(*leftovers))
        if extra:
            row.update(extra(None))
        rows.append(row)
    return rows


def count_rows(counts, field, order=()):
    keys = list(order) + sorted((k for k in counts if k not in order), key=str)
    return [{field: key, 'count': counts.get(key, 0)} for key in keys]


def on_time_count(trips, tolerance):
    return sum(1 for trip in trips if punctuality(trip, tolerance)[0])


# Reports

def overview_report(data, tolerance):
    snapshot = data.snapshot
    trips, bookings, payments = data.trips, data.bookings, data.payments
    attendance, maintenance = data.attendance, data.maintenance
    total_trips = len(trips)
    completed_trips = count_status(trips, 'completed')
    confirmed = count_status(bookings, 'confirmed')
    present = count_status(attendance, 'present')
    completed_maintenance = count_status(maintenance, 'completed')
    total_revenue = sum_amount(payments, 'completed')
    total_buses = len(snapshot.buses)
    active_buses = count_status(snapshot.buses, 'active')
    role_counts = count_by(snapshot.users, 'role')

    return {
        'summary': {
            'trips': {
                'total': total_trips,
                'completed': completed_trips,
                'active': count_status(trips, 'active'),
                'scheduled': count_status(trips, 'scheduled'),
                'cancelled': count_status(trips, 'cancelled'),
                'completionRate': percent(completed_trips, total_trips),
            },
            'bookings': {
                'total': len(bookings),
                'confirmed': confirmed,
                'pending': count_status(bookings, 'pending'),
                'confirmationRate': percent(confirmed, len(bookings)),
            },
            'financial': {
                'totalRevenue': total_revenue,
                'averageRevenuePerTrip': total_revenue / total_trips if total_trips else 0,
            },
            'attendance': {
                'total': len(attendance),
                'present': present,
                'rate': round2(percent(present, len(attendance))),
            },
            'maintenance': {
                'total': len(maintenance),
                'open': count_status(maintenance, 'open'),
                'completed': completed_maintenance,
                'completionRate': percent(completed_maintenance, len(maintenance)),
            },
            'fleet': {
                'totalRoutes': len(snapshot.routes),
                'totalBuses': total_buses,
                'activeBuses': active_buses,
                'utilizationRate': percent(active_buses, total_buses),
            },
            'users': {
                'total': len(snapshot.users),
                'students': role_counts.get(ROLE_STUDENT, 0),
                'drivers': role_counts.get(ROLE_DRIVER, 0),
                'supervisors': role_counts.get(ROLE_SUPERVISOR, 0),
                'movementManagers': role_counts.get(ROLE_MOVEMENT_MANAGER, 0),
                'admins': role_counts.get(ROLE_ADMIN, 0),
            },
        },
        'breakdown': {
            'tripsByStatus': count_rows(count_by(trips, 'status'), 'status', Trip.statuses),
            'usersByRole': count_rows(role_counts, 'role', User.roles),
        },
    }


def financial_report(data, tolerance):
    snapshot = data.snapshot
    trips, payments = data.trips, data.payments
    total_revenue = sum_amount(payments, 'completed')
    pending_revenue = sum_amount(payments, 'pending')
    failed_revenue = sum_amount(payments, 'failed')
    all_revenue = total_revenue + pending_revenue + failed_revenue

    def build(group_trips, group_payments):
        revenue = sum_amount(group_payments, 'completed')
        return {
            'trips': len(group_trips),
            'revenue': revenue,
            'pendingRevenue': sum_amount(group_payments, 'pending'),
            'failedRevenue': sum_amount(group_payments, 'failed'),
            'averageRevenue': revenue / len(group_trips) if group_trips else 0,
        }

    routes = snapshot.by_id['routes']
    buses = snapshot.by_id['buses']
    return {
        'summary': {
            'totalRevenue': total_revenue,
            'pendingRevenue': pending_revenue,
            'failedRevenue': failed_revenue,
            'totalTrips': len(trips),
            'revenuePerTrip': round2(total_revenue / len(trips)) if trips else 0,
            'successRate': percent(total_revenue, all_revenue),
        },
        'breakdown': {
            'byRoute': grouped_rows(
                routes.values(), 'routeId', 'routeName', lambda r: r.get('name'),
                [partition(trips, lambda t: t.get('routeId'), routes),
                 partition(payments, lambda p: data.trip_field(p, 'routeId'), routes)],
                build),
            'byBus': grouped_rows(
                buses.values(), 'busId', 'busNumber', lambda b: b.get('number'),
                [partition(trips, lambda t: t.get('busId'), buses),
                 partition(payments, lambda p: data.trip_field(p, 'busId'), buses)],
                build),
        },
    }


def operational_report(data, tolerance):
    trips, bookings, attendance = data.trips, data.bookings, data.attendance

    def metrics(group_trips, group_bookings, group_attendance):
        completed = count_status(group_trips, 'completed')
        confirmed = count_status(group_bookings, 'confirmed')
        present = count_status(group_attendance, 'present')
        return {
            'trips': len(group_trips),
            'completedTrips': completed,
            'cancelledTrips': count_status(group_trips, 'cancelled'),
            'completionRate': percent(completed, len(group_trips)),
            'bookings': len(group_bookings),
            'confirmedBookings': confirmed,
            'cancelledBookings': count_status(group_bookings, 'cancelled'),
            'confirmationRate': percent(confirmed, len(group_bookings)),
            'attendance': len(group_attendance),
            'presentAttendance': present,
            'absentAttendance': count_status(group_attendance, 'absent'),
            'attendanceRate': percent(present, len(group_attendance)),
        }

    totals = metrics(trips, bookings, attendance)
    routes = data.snapshot.by_id['routes']
    return {
        'summary': {
            'trips': {
                'total': totals['trips'],
                'completed': totals['completedTrips'],
                'cancelled': totals['cancelledTrips'],
                'completionRate': totals['completionRate'],
            },
            'bookings': {
                'total': totals['bookings'],
                'confirmed': totals['confirmedBookings'],
                'cancelled': totals['cancelledBookings'],
                'confirmationRate': totals['confirmationRate'],
            },
            'attendance': {
                'total': totals['attendance'],
                'present': totals['presentAttendance'],
                'absent': totals['absentAttendance'],
                'rate': totals['attendanceRate'],
            },
        },
        'breakdown': {
            'byRoute': grouped_rows(
                routes.values(), 'routeId', 'routeName', lambda r: r.get('name'),
                [partition(trips, lambda t: t.get('routeId'), routes),
                 partition(bookings, lambda b: data.trip_field(b, 'routeId'), routes),
                 partition(attendance, lambda a: data.trip_field(a, 'routeId'), routes)],
                metrics),
        },
    }


def performance_report(data, tolerance):
    trips, attendance, maintenance = data.trips, data.attendance, data.maintenance
    on_time = on_time_count(trips, tolerance)
    present = count_status(attendance, 'present')
    completed_maintenance = count_status(maintenance, 'completed')

    def by_driver(driver_trips, driver_attendance):
        completed = count_status(driver_trips, 'completed')
        punctual = on_time_count(driver_trips, tolerance)
        driver_present = count_status(driver_attendance, 'present')
        return {
            'totalTrips': len(driver_trips),
            'completedTrips': completed,
            'onTimeTrips': punctual,
            'completionRate': percent(completed, len(driver_trips)),
            'onTimeRate': percent(punctual, len(driver_trips)),
            'attendance': len(driver_attendance),
            'presentAttendance': driver_present,
            'attendanceRate': percent(driver_present, len(driver_attendance)),
        }

    drivers = {u['id']: u for u in data.snapshot.by_id['users'].values()
               if u.get('role') == ROLE_DRIVER}
    return {
        'summary': {
            'trips': {
                'total': len(trips),
                'completed': count_status(trips, 'completed'),
                'onTime': on_time,
                'onTimeRate': percent(on_time, len(trips)),
                'onTimeToleranceMinutes': tolerance,
            },
            'attendance': {
                'total': len(attendance),
                'present': present,
                'rate': percent(present, len(attendance)),
            },
            'maintenance': {
                'total': len(maintenance),
                'completed': completed_maintenance,
                'completionRate': percent(completed_maintenance, len(maintenance)),
            },
        },
        'breakdown': {
            'byDriver': grouped_rows(
                drivers.values(), 'driverId', 'driverName', lambda d: d.get('name'),
                [partition(trips, lambda t: t.get('driverId'), drivers),
                 partition(attendance, lambda a: data.trip_field(a, 'driverId'), drivers)],
                by_driver),
        },
    }


def maintenance_counts(records, trips):
    estimated = sum_amount(records, field='estimatedCost')
    actual = sum_amount(records, field='actualCost')
    counts = {
        'total': len(records),
        'open': count_status(records, 'open'),
        'inProgress': count_status(records, 'in_progress'),
        'completed': count_status(records, 'completed'),
    }
    for priority in MaintenanceRecord.priorities:
        counts[priority] = sum(1 for r in records if r.get('priority') == priority)
    counts.update({
        'estimatedCost': estimated,
        'actualCost': actual,
        'costVariance': actual - estimated,
        'trips': len(trips),
    })
    return counts


def maintenance_report(data, tolerance):
    buses = data.snapshot.by_id['buses']
    summary = maintenance_counts(data.maintenance, data.trips)

    def last_and_next(bus):
        return {
            'lastMaintenance': bus.get('lastMaintenance') if bus else None,
            'nextMaintenance': bus.get('nextMaintenance') if bus else None,
        }

    return {
        'summary': summary,
        'breakdown': {
            'byBus': grouped_rows(
                buses.values(), 'busId', 'busNumber', lambda b: b.get('number'),
                [partition(data.maintenance, lambda m: m.get('busId'), buses),
                 partition(data.trips, lambda t: t.get('busId'), buses)],
                maintenance_counts, extra=last_and_next),
        },
    }


def user_report(data, tolerance):
    snapshot = data.snapshot
    users = snapshot.by_id['users']
    students = {uid: u for uid, u in users.items() if u.get('role') == ROLE_STUDENT}
    drivers = {uid: u for uid, u in users.items() if u.get('role') == ROLE_DRIVER}
    role_counts = count_by(snapshot.users, 'role')

    def payment_student(payment):
        if payment.get('studentId'):
            return payment['studentId']
        booking = snapshot.get('bookings', payment.get('bookingId'))
        return booking.get('studentId') if booking else None

    def student_activity(bookings, payments, attendance):
        return {
            'bookings': len(bookings),
            'confirmedBookings': count_status(bookings, 'confirmed'),
            'payments': len(payments),
            'completedPayments': count_status(payments, 'completed'),
            'attendance': len(attendance),
            'presentAttendance': count_status(attendance, 'present'),
        }

    def driver_activity(trips):
        completed = count_status(trips, 'completed')
        return {
            'totalTrips': len(trips),
            'completedTrips': completed,
            'completionRate': percent(completed, len(trips)),
        }

    return {
        'summary': {
            'totalUsers': len(snapshot.users),
            'students': role_counts.get(ROLE_STUDENT, 0),
            'drivers': role_counts.get(ROLE_DRIVER, 0),
            'supervisors': role_counts.get(ROLE_SUPERVISOR, 0),
            'movementManagers': role_counts.get(ROLE_MOVEMENT_MANAGER, 0),
            'admins': role_counts.get(ROLE_ADMIN, 0),
            'totalBookings': len(data.bookings),
            'totalPayments': len(data.payments),
            'totalAttendance': len(data.attendance),
            'totalTrips': len(data.trips),
            'completedTrips': count_status(data.trips, 'completed'),
        },
        'breakdown': {
            'studentActivity': grouped_rows(
                students.values(), 'studentId', 'studentName', lambda s: s.get('name'),
                [partition(data.bookings, lambda b: b.get('studentId'), students),
                 partition(data.payments, payment_student, students),
                 partition(data.attendance, lambda a: a.get('studentId'), students)],
                student_activity),
            'driverActivity': grouped_rows(
                drivers.values(), 'driverId', 'driverName', lambda d: d.get('name'),
                [partition(data.trips, lambda t: t.get('driverId'), drivers)],
                driver_activity),
        },
    }


REPORTS = {
    'overview': overview_report,
    'financial': financial_report,
    'operational': operational_report,
    'performance': performance_report,
    'maintenance': maintenance_report,
    'user': user_report,
}


def generate_report(document, report_type=None, filters=None, now=None,
                    tolerance=DEFAULT_ON_TIME_TOLERANCE):
    """Compute one report over a document snapshot"""
    report_type = report_type or 'overview'
    if report_type not in REPORTS:
        raise ValidationError(f'Unknown report type {report_type!r}',
                              fields={'type': [f'Must be one of: {", ".join(REPORT_TYPES)}']})
    filters = {k: v for k, v in (filters or {}).items() if v}
    date_range = DateRange(filters.get('dateFrom'), filters.get('dateTo'), now=now)
    if not date_range.valid:
        raise ValidationError('Invalid date range',
                              fields={'dateFrom/dateTo': ['Dates must be ISO formatted']})

    data = ReportInput(Snapshot(document), date_range,
                       {k: filters.get(k) for k in ENTITY_FILTERS})
    report = REPORTS[report_type](data, tolerance)
    logger.info(f"Generated {report_type} report over {len(data.trips)} trip(s)")
    return {'type': report_type, 'filters': filters, **report}
