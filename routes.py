from flask import jsonify, request
import logging

from app import app, get_store
from data_store import find_index
from enrichment import Snapshot, enrich_booking, enrich_record, enrich_trip, list_bookings, list_records, list_trips
from exceptions import ConflictError, NotFoundError, ValidationError
from forms import validate_payload
from models import COLLECTIONS, ENTITIES, TRIP_TERMINAL_STATUSES, Booking, Trip
import notifications
import reports
import trip_lifecycle

logger = logging.getLogger(__name__)

TRIP_FILTERS = ('status', 'date', 'routeId', 'busId', 'driverId', 'supervisorId', 'search')
BOOKING_FILTERS = ('status', 'date', 'tripId', 'studentId', 'routeId', 'search')
REPORT_FILTERS = ('dateFrom', 'dateTo', 'routeId', 'busId', 'driverId', 'supervisorId')
# Collections served by the generic CRUD views below
CRUD_COLLECTIONS = ('routes', 'buses', 'users', 'bookings', 'payments', 'attendance', 'maintenance')


def request_json():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return payload


def query_filters(names):
    return {name: request.args.get(name) for name in names if request.args.get(name)}


def on_time_tolerance():
    return app.config['ON_TIME_TOLERANCE_MINUTES']


def resolve_id(collection, record_id, payload=None):
    """Id from the URL path, the ?id= query, or the body, in that order"""
    record_id = record_id or request.args.get('id') or (payload or {}).get('id')
    if not record_id:
        raise ValidationError(f'{ENTITIES[collection].label} ID is required')
    return record_id


# Shared write paths

def create_record(collection, payload):
    entity = ENTITIES[collection]
    cleaned = validate_payload(collection, payload)

    def insert(document):
        record = entity.new(cleaned)
        document[collection].append(record)
        return document, record

    record = get_store().transaction(insert)
    logger.info(f"Created {collection} record {record['id']}")
    return record


def update_record(collection, record_id, payload):
    entity = ENTITIES[collection]
    cleaned = validate_payload(collection, payload, partial=True)

    def apply(document):
        records = document[collection]
        index = find_index(records, record_id)
        if index < 0:
            raise NotFoundError(entity.label, record_id)
        previous = records[index]
        records[index] = entity.apply_update(previous, cleaned)
        return document, (previous, records[index])

    previous, updated = get_store().transaction(apply)
    if collection == 'trips':
        warn_on_terminal_move(previous, updated)
    logger.info(f"Updated {collection} record {record_id}")
    return updated


def delete_record(collection, record_id):
    entity = ENTITIES[collection]

    def remove(document):
        records = document[collection]
        index = find_index(records, record_id)
        if index < 0:
            raise NotFoundError(entity.label, record_id)
        return document, records.pop(index)

    deleted = get_store().transaction(remove)
    logger.info(f"Deleted {collection} record {record_id}")
    return deleted


def warn_on_terminal_move(previous, updated):
    """Manual status changes are allowed; leaving a terminal status is only logged"""
    old_status, new_status = previous.get('status'), updated.get('status')
    if old_status in TRIP_TERMINAL_STATUSES and new_status != old_status:
        logger.warning(f"Trip {updated['id']} manually moved from terminal status "
                       f"{old_status} to {new_status}")


# Trips

@app.route('/api/trips', methods=['GET'])
def trips_list():
    """Enriched trips plus summary, after completing overdue trips"""
    document, _ = trip_lifecycle.sweep(get_store())
    return jsonify(list_trips(Snapshot(document), query_filters(TRIP_FILTERS), on_time_tolerance()))


@app.route('/api/trips/<trip_id>', methods=['GET'])
def trip_detail(trip_id):
    document, _ = trip_lifecycle.sweep(get_store())
    snapshot = Snapshot(document)
    trip = snapshot.get('trips', trip_id)
    if trip is None:
        raise NotFoundError(Trip.label, trip_id)
    return jsonify(enrich_trip(trip, snapshot, on_time_tolerance()))


@app.route('/api/trips', methods=['POST'])
def trip_create():
    """Create a trip and notify its driver and supervisor in the same write"""
    cleaned = validate_payload('trips', request_json())

    def insert(document):
        trip = Trip.new(cleaned)
        document['trips'].append(trip)
        emission = notifications.emit_trip_created(document, trip)
        return document, (trip, emission)

    trip, emission = get_store().transaction(insert)
    if emission.error is not None:
        logger.warning(f"Trip {trip['id']} created without notifications")
    logger.info(f"Created trip {trip['id']} with {len(emission.notifications)} notification(s)")
    return jsonify(trip), 201


@app.route('/api/trips', methods=['PUT', 'PATCH'])
@app.route('/api/trips/<trip_id>', methods=['PUT', 'PATCH'])
def trip_update(trip_id=None):
    payload = request_json()
    return jsonify(update_record('trips', resolve_id('trips', trip_id, payload), payload))


@app.route('/api/trips', methods=['DELETE'])
@app.route('/api/trips/<trip_id>', methods=['DELETE'])
def trip_delete(trip_id=None):
    trip = delete_record('trips', resolve_id('trips', trip_id))
    return jsonify({'message': 'Trip deleted', 'trip': trip})


# Bookings

def create_booking(payload):
    """Insert a booking, rejecting duplicates and full buses in the same write"""
    cleaned = validate_payload('bookings', payload)

    def insert(document):
        trip_id, student_id = cleaned['tripId'], cleaned['studentId']
        active = [b for b in document['bookings']
                  if b.get('tripId') == trip_id and b.get('status') != 'cancelled']
        if any(b.get('studentId') == student_id for b in active):
            raise ConflictError('Student already has a booking for this trip')

        trip_index = find_index(document['trips'], trip_id)
        trip = document['trips'][trip_index] if trip_index >= 0 else None
        if trip is not None:
            bus_index = find_index(document['buses'], trip.get('busId'))
            if bus_index >= 0:
                capacity = ENTITIES['buses'].normalize(document['buses'][bus_index])['capacity']
                if capacity and len(active) >= capacity:
                    raise ConflictError('No seats available on this trip')

        booking = Booking.new(cleaned)
        document['bookings'].append(booking)
        if trip is not None and booking['status'] != 'cancelled':
            passengers = Trip.normalize(trip)['passengers']
            document['trips'][trip_index] = dict(trip, passengers=passengers + 1)
        return document, booking

    booking = get_store().transaction(insert)
    logger.info(f"Created booking {booking['id']} for trip {booking.get('tripId')}")
    return booking


# Generic collections

def collection_list(collection):
    snapshot = Snapshot(get_store().read())
    if collection == 'bookings':
        return jsonify(list_bookings(snapshot, query_filters(BOOKING_FILTERS)))
    return jsonify(list_records(collection, snapshot, request.args))


def collection_detail(collection, record_id):
    snapshot = Snapshot(get_store().read())
    record = snapshot.get(collection, record_id)
    if record is None:
        raise NotFoundError(ENTITIES[collection].label, record_id)
    if collection == 'bookings':
        return jsonify(enrich_booking(record, snapshot))
    return jsonify(enrich_record(collection, record, snapshot))


def collection_create(collection):
    payload = request_json()
    if collection == 'bookings':
        return jsonify(create_booking(payload)), 201
    return jsonify(create_record(collection, payload)), 201


def collection_update(collection, record_id=None):
    payload = request_json()
    return jsonify(update_record(collection, resolve_id(collection, record_id, payload), payload))


def collection_delete(collection, record_id=None):
    record = delete_record(collection, resolve_id(collection, record_id))
    label = ENTITIES[collection].label
    return jsonify({'message': f'{label} deleted', 'record': record})


def register_collection(collection):
    base = f'/api/{collection}'
    item = f'{base}/<record_id>'
    defaults = {'collection': collection}
    app.add_url_rule(base, f'{collection}_list', collection_list,
                     methods=['GET'], defaults=defaults)
    app.add_url_rule(item, f'{collection}_detail', collection_detail,
                     methods=['GET'], defaults=defaults)
    app.add_url_rule(base, f'{collection}_create', collection_create,
                     methods=['POST'], defaults=defaults)
    app.add_url_rule(base, f'{collection}_update', collection_update,
                     methods=['PUT', 'PATCH'], defaults=defaults)
    app.add_url_rule(item, f'{collection}_update_item', collection_update,
                     methods=['PUT', 'PATCH'], defaults=defaults)
    app.add_url_rule(base, f'{collection}_delete', collection_delete,
                     methods=['DELETE'], defaults=defaults)
    app.add_url_rule(item, f'{collection}_delete_item', collection_delete,
                     methods=['DELETE'], defaults=defaults)


for _collection in CRUD_COLLECTIONS:
    register_collection(_collection)


# Notifications are only created alongside trips, so they are read-only here
app.add_url_rule('/api/notifications', 'notifications_list', collection_list,
                 methods=['GET'], defaults={'collection': 'notifications'})
app.add_url_rule('/api/notifications/<record_id>', 'notifications_detail', collection_detail,
                 methods=['GET'], defaults={'collection': 'notifications'})


# Reports

@app.route('/api/reports', methods=['GET'])
def report():
    document, _ = trip_lifecycle.sweep(get_store())
    return jsonify(reports.generate_report(
        document,
        request.args.get('type'),
        query_filters(REPORT_FILTERS),
        tolerance=on_time_tolerance(),
    ))


@app.route('/api/health', methods=['GET'])
def health_check():
    document = get_store().read()
    return jsonify({
        'status': 'OK',
        'collections': {name: len(document[name]) for name in COLLECTIONS},
    })
