from datetime import datetime

import pytest

from exceptions import ValidationError
from reports import REPORT_TYPES, UNASSIGNED, generate_report

NOW = datetime(2024, 2, 1, 12, 0)


@pytest.fixture
def document(sample_refs):
    return dict(sample_refs, **{
        'trips': [
            {'id': 't10', 'routeId': 'route-1', 'busId': 'bus-1', 'driverId': 'driver-1',
             'date': '2024-01-10', 'startTime': '08:00', 'endTime': '09:00',
             'actualStartTime': '08:02', 'status': 'completed'},
            {'id': 't11', 'routeId': 'route-2', 'busId': 'bus-2', 'driverId': 'driver-2',
             'date': '2024-01-11', 'startTime': '08:00', 'endTime': '09:00',
             'actualStartTime': '08:20', 'status': 'completed'},
            {'id': 't12', 'routeId': 'route-1', 'busId': 'bus-1', 'driverId': 'driver-1',
             'date': '2024-01-12', 'startTime': '08:00', 'endTime': '09:00',
             'status': 'cancelled'},
            {'id': 't-orphan', 'routeId': 'route-gone', 'busId': 'bus-gone', 'driverId': 'nobody',
             'date': '2024-01-11', 'startTime': '10:00', 'endTime': '11:00',
             'status': 'completed'},
        ],
        'bookings': [
            {'id': 'b1', 'tripId': 't10', 'studentId': 'student-1', 'status': 'confirmed',
             'date': '2024-01-10'},
            {'id': 'b2', 'tripId': 't11', 'studentId': 'student-2', 'status': 'confirmed',
             'date': '2024-01-11'},
            {'id': 'b3', 'tripId': 'missing-trip', 'studentId': 'student-1', 'status': 'pending',
             'date': '2024-01-11'},
        ],
        'payments': [
            {'id': 'p1', 'tripId': 't10', 'bookingId': 'b1', 'amount': 100,
             'status': 'completed', 'date': '2024-01-10'},
            {'id': 'p2', 'tripId': 't11', 'bookingId': 'b2', 'amount': 40,
             'status': 'pending', 'date': '2024-01-11'},
            {'id': 'p3', 'tripId': 'missing-trip', 'studentId': 'student-1', 'amount': 15,
             'status': 'completed', 'date': '2024-01-11'},
            {'id': 'p4', 'tripId': 't11', 'bookingId': 'b2', 'amount': 5,
             'status': 'failed', 'date': '2024-01-11'},
        ],
        'attendance': [
            {'id': 'a1', 'tripId': 't10', 'studentId': 'student-1', 'status': 'present',
             'date': '2024-01-10'},
            {'id': 'a2', 'tripId': 't11', 'studentId': 'student-2', 'status': 'absent',
             'date': '2024-01-11'},
        ],
        'maintenance': [
            {'id': 'm1', 'busId': 'bus-1', 'status': 'completed', 'priority': 'high',
             'estimatedCost': 200, 'actualCost': 260, 'date': '2024-01-05'},
            {'id': 'm2', 'busId': 'bus-2', 'status': 'open', 'priority': 'low',
             'estimatedCost': 80, 'actualCost': 0, 'createdAt': '2024-01-20T09:00:00'},
            {'id': 'm3', 'busId': 'bus-gone', 'status': 'in_progress', 'priority': 'critical',
             'estimatedCost': 10, 'actualCost': 12, 'date': '2024-01-06'},
        ],
    })


def report(document, report_type, **filters):
    return generate_report(document, report_type, filters, now=NOW)


def column_sum(rows, field):
    return sum(row[field] for row in rows)


def test_date_range_is_inclusive(document):
    document['trips'] = document['trips'][:3]

    result = report(document, 'overview', dateFrom='2024-01-10', dateTo='2024-01-11')

    trips = result['summary']['trips']
    assert trips['total'] == 2
    assert trips['completed'] == 2
    assert trips['cancelled'] == 0
    assert result['filters'] == {'dateFrom': '2024-01-10', 'dateTo': '2024-01-11'}


def test_open_upper_bound_means_now(document):
    document['trips'].append({'id': 'future', 'date': '2024-06-01', 'status': 'scheduled'})

    result = report(document, 'overview', dateFrom='2024-01-01')

    assert result['summary']['trips']['total'] == 4


def test_records_without_dates_drop_out_of_ranges(document):
    document['trips'].append({'id': 'undated', 'status': 'scheduled'})

    assert report(document, 'overview')['summary']['trips']['total'] == 5
    assert report(document, 'overview', dateFrom='2024-01-01')['summary']['trips']['total'] == 4


def test_financial_totals_and_moves(document):
    result = report(document, 'financial')
    summary = result['summary']
    assert summary['totalRevenue'] == 115
    assert summary['pendingRevenue'] == 40
    assert summary['failedRevenue'] == 5

    document['payments'][1]['status'] = 'completed'
    moved = report(document, 'financial')['summary']
    assert moved['totalRevenue'] == 155
    assert moved['pendingRevenue'] == 0
    assert moved['totalRevenue'] + moved['pendingRevenue'] == \
        summary['totalRevenue'] + summary['pendingRevenue']


@pytest.mark.parametrize('filters', [{}, {'dateFrom': '2024-01-11'}, {'dateTo': '2024-01-10'}])
def test_revenue_split_covers_every_payment_in_range(document, filters):
    summary = report(document, 'financial', **filters)['summary']
    in_range = [p for p in document['payments']
                if (filters.get('dateFrom') or '0000') <= p['date'] <= (filters.get('dateTo') or '9999')]

    assert summary['totalRevenue'] + summary['pendingRevenue'] + summary['failedRevenue'] == \
        sum(p['amount'] for p in in_range)


@pytest.mark.parametrize('group', ['byRoute', 'byBus'])
def test_financial_breakdown_conserves_totals(document, group):
    result = report(document, 'financial')
    rows = result['breakdown'][group]
    summary = result['summary']

    assert column_sum(rows, 'revenue') == summary['totalRevenue']
    assert column_sum(rows, 'pendingRevenue') == summary['pendingRevenue']
    assert column_sum(rows, 'failedRevenue') == summary['failedRevenue']
    assert column_sum(rows, 'trips') == summary['totalTrips']

    unassigned = rows[-1]
    assert unassigned['routeName' if group == 'byRoute' else 'busNumber'] == UNASSIGNED
    assert unassigned['trips'] == 1
    assert unassigned['revenue'] == 15


def test_financial_breakdown_by_route(document):
    rows = {row['routeId']: row for row in report(document, 'financial')['breakdown']['byRoute']}

    assert rows['route-1']['trips'] == 2
    assert rows['route-1']['revenue'] == 100
    assert rows['route-1']['averageRevenue'] == 50
    assert rows['route-2']['pendingRevenue'] == 40


def test_operational_breakdown_conserves_totals(document):
    result = report(document, 'operational')
    rows = result['breakdown']['byRoute']
    summary = result['summary']

    assert column_sum(rows, 'trips') == summary['trips']['total']
    assert column_sum(rows, 'completedTrips') == summary['trips']['completed']
    assert column_sum(rows, 'bookings') == summary['bookings']['total']
    assert column_sum(rows, 'attendance') == summary['attendance']['total']
    assert column_sum(rows, 'presentAttendance') == summary['attendance']['present']


def test_performance_report(document):
    result = report(document, 'performance')
    summary = result['summary']
    rows = {row['driverId']: row for row in result['breakdown']['byDriver']}

    assert summary['trips']['onTime'] == 1
    assert summary['trips']['onTimeRate'] == 25
    assert summary['trips']['onTimeToleranceMinutes'] == 5
    assert rows['driver-1']['onTimeTrips'] == 1
    assert rows['driver-2']['onTimeTrips'] == 0
    assert rows[None]['totalTrips'] == 1
    assert column_sum(rows.values(), 'totalTrips') == summary['trips']['total']
    assert column_sum(rows.values(), 'attendance') == summary['attendance']['total']


def test_performance_tolerance_is_configurable(document):
    result = generate_report(document, 'performance', now=NOW, tolerance=30)
    assert result['summary']['trips']['onTime'] == 2


def test_maintenance_report(document):
    result = report(document, 'maintenance')
    summary = result['summary']
    rows = {row['busId']: row for row in result['breakdown']['byBus']}

    assert summary['total'] == 3
    assert summary['open'] == 1
    assert summary['inProgress'] == 1
    assert summary['completed'] == 1
    assert summary['estimatedCost'] == 290
    assert summary['actualCost'] == 272
    assert summary['costVariance'] == -18
    assert rows['bus-1']['costVariance'] == 60
    assert rows['bus-1']['high'] == 1
    assert rows[None]['critical'] == 1
    assert rows[None]['lastMaintenance'] is None
    for field in ('total', 'estimatedCost', 'actualCost', 'trips'):
        assert column_sum(rows.values(), field) == summary[field]


def test_maintenance_falls_back_to_created_at(document):
    result = report(document, 'maintenance', dateFrom='2024-01-15', dateTo='2024-01-31')
    assert result['summary']['total'] == 1
    assert result['summary']['open'] == 1


def test_user_report(document):
    result = report(document, 'user')
    summary = result['summary']
    students = {row['studentId']: row for row in result['breakdown']['studentActivity']}
    drivers = {row['driverId']: row for row in result['breakdown']['driverActivity']}

    assert summary['totalUsers'] == 6
    assert summary['students'] == 2
    assert summary['drivers'] == 2
    assert summary['totalTrips'] == 4
    assert students['student-1']['bookings'] == 2
    assert students['student-1']['payments'] == 2
    assert students['student-2']['payments'] == 2
    assert column_sum(students.values(), 'bookings') == summary['totalBookings']
    assert column_sum(students.values(), 'payments') == summary['totalPayments']
    assert column_sum(students.values(), 'attendance') == summary['totalAttendance']
    assert column_sum(drivers.values(), 'totalTrips') == summary['totalTrips']


def test_entity_filters_do_not_scope_dependents(document):
    result = report(document, 'overview', routeId='route-1')

    assert result['summary']['trips']['total'] == 2
    assert result['summary']['bookings']['total'] == 3
    assert result['summary']['financial']['totalRevenue'] == 115


def test_filtered_out_trip_moves_dependents_to_unassigned(document):
    result = report(document, 'financial', routeId='route-1')
    rows = {row['routeId']: row for row in result['breakdown']['byRoute']}

    assert rows['route-2']['trips'] == 0
    assert rows['route-2']['pendingRevenue'] == 0
    assert rows[None]['pendingRevenue'] == 40
    assert column_sum(rows.values(), 'revenue') == result['summary']['totalRevenue']


@pytest.mark.parametrize('report_type', REPORT_TYPES)
def test_every_report_has_the_same_shape(document, report_type):
    result = report(document, report_type)
    assert result['type'] == report_type
    assert set(result) == {'type', 'filters', 'summary', 'breakdown'}


def test_empty_document_reports_zeroes():
    result = generate_report({}, 'financial', now=NOW)
    assert result['summary']['totalRevenue'] == 0
    assert result['summary']['successRate'] == 0
    assert result['breakdown'] == {'byRoute': [], 'byBus': []}


def test_missing_type_defaults_to_overview(document):
    assert report(document, None)['type'] == 'overview'


def test_unknown_type_is_rejected(document):
    with pytest.raises(ValidationError) as excinfo:
        report(document, 'weekly')
    assert excinfo.value.status_code == 400


def test_invalid_dates_are_rejected(document):
    with pytest.raises(ValidationError):
        report(document, 'overview', dateFrom='last tuesday')


def test_overview_breakdown_conserves_totals(document):
    result = report(document, 'overview')
    summary = result['summary']
    by_status = {row['status']: row['count'] for row in result['breakdown']['tripsByStatus']}
    by_role = {row['role']: row['count'] for row in result['breakdown']['usersByRole']}

    assert sum(by_status.values()) == summary['trips']['total']
    for status in ('completed', 'active', 'scheduled', 'cancelled'):
        assert by_status[status] == summary['trips'][status]
    assert sum(by_role.values()) == summary['users']['total']
    assert by_role['student'] == summary['users']['students']
    assert by_role['driver'] == summary['users']['drivers']


def test_undated_records_drop_out_of_date_ranges():
    document = {
        'payments': [{'id': 'p', 'amount': 50, 'status': 'completed'}],
        'bookings': [{'id': 'b', 'tripId': 't', 'studentId': 's', 'status': 'confirmed'}],
        'attendance': [{'id': 'a', 'tripId': 't', 'studentId': 's', 'status': 'present'}],
    }
    now = datetime.now()

    ranged = generate_report(document, 'overview', {'dateFrom': '2000-01-01'}, now=now)
    assert ranged['summary']['financial']['totalRevenue'] == 0
    assert ranged['summary']['bookings']['total'] == 0
    assert ranged['summary']['attendance']['total'] == 0

    unbounded = generate_report(document, 'overview', now=now)
    assert unbounded['summary']['financial']['totalRevenue'] == 50
    assert unbounded['summary']['bookings']['total'] == 1
