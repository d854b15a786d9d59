#!/usr/bin/env python3
"""
Script to load sample data into the transport document store
Run with: python seed_data.py [--force]
"""
import argparse
from datetime import date, timedelta

from app import app
from models import (AttendanceRecord, Booking, Bus, MaintenanceRecord, Payment, Route, Trip, User,
                    empty_document)


def build_sample_document(today=None):
    """A small, internally consistent data set"""
    today = today or date.today()
    yesterday = (today - timedelta(days=1)).isoformat()
    tomorrow = (today + timedelta(days=1)).isoformat()
    document = empty_document()

    users = [
        User.new({'name': 'Admin User', 'role': 'admin', 'email': 'admin@uni.example'}),
        User.new({'name': 'Sara Supervisor', 'role': 'supervisor', 'phone': '0500000001'}),
        User.new({'name': 'Omar Manager', 'role': 'movement-manager'}),
        User.new({'name': 'Khaled Driver', 'role': 'driver', 'licenseNumber': 'DL-1001'}),
        User.new({'name': 'Yusuf Driver', 'role': 'driver', 'licenseNumber': 'DL-1002'}),
        User.new({'name': 'Lina Student', 'role': 'student', 'studentId': 'S-2024-001'}),
        User.new({'name': 'Maha Student', 'role': 'student', 'studentId': 'S-2024-002'}),
    ]
    _, supervisor, _, driver1, driver2, student1, student2 = users

    routes = [
        Route.new({'name': 'North Campus Loop', 'startPoint': 'Main Gate', 'endPoint': 'North Campus',
                   'distance': 12.5, 'estimatedDuration': 35, 'stops': ['Library', 'Dorms']}),
        Route.new({'name': 'City Center Express', 'startPoint': 'Main Gate', 'endPoint': 'City Center',
                   'distance': 24, 'estimatedDuration': 50, 'stops': []}),
    ]
    buses = [
        Bus.new({'number': 'BUS-101', 'model': 'Coaster', 'capacity': 30, 'status': 'active',
                 'lastMaintenance': (today - timedelta(days=40)).isoformat(),
                 'nextMaintenance': (today + timedelta(days=50)).isoformat()}),
        Bus.new({'number': 'BUS-202', 'model': 'Citaro', 'capacity': 45, 'status': 'maintenance'}),
    ]

    trips = [
        Trip.new({'routeId': routes[0]['id'], 'busId': buses[0]['id'], 'driverId': driver1['id'],
                  'supervisorId': supervisor['id'], 'date': yesterday, 'startTime': '07:30',
                  'endTime': '08:05', 'scheduledTime': '07:30', 'actualStartTime': '07:33',
                  'status': 'completed', 'passengers': 2, 'operationalCost': 40}),
        Trip.new({'routeId': routes[1]['id'], 'busId': buses[1]['id'], 'driverId': driver2['id'],
                  'supervisorId': supervisor['id'], 'date': tomorrow, 'startTime': '16:00',
                  'endTime': '16:50', 'passengers': 1, 'operationalCost': 65}),
    ]

    bookings = [
        Booking.new({'studentId': student1['id'], 'tripId': trips[0]['id'], 'status': 'confirmed',
                     'date': yesterday}),
        Booking.new({'studentId': student2['id'], 'tripId': trips[0]['id'], 'status': 'confirmed',
                     'date': yesterday}),
        Booking.new({'studentId': student1['id'], 'tripId': trips[1]['id'], 'status': 'pending',
                     'date': today.isoformat()}),
    ]
    payments = [
        Payment.new({'bookingId': bookings[0]['id'], 'tripId': trips[0]['id'],
                     'studentId': student1['id'], 'amount': 25, 'status': 'completed',
                     'date': yesterday}),
        Payment.new({'bookingId': bookings[1]['id'], 'tripId': trips[0]['id'],
                     'studentId': student2['id'], 'amount': 25, 'status': 'pending',
                     'date': yesterday}),
    ]
    attendance = [
        AttendanceRecord.new({'studentId': student1['id'], 'tripId': trips[0]['id'],
                              'status': 'present', 'date': yesterday}),
        AttendanceRecord.new({'studentId': student2['id'], 'tripId': trips[0]['id'],
                              'status': 'late', 'date': yesterday}),
    ]
    maintenance = [
        MaintenanceRecord.new({'busId': buses[1]['id'], 'status': 'in_progress', 'priority': 'high',
                               'description': 'Brake pads replacement', 'estimatedCost': 300,
                               'actualCost': 0}),
    ]

    document.update({
        'users': users, 'routes': routes, 'buses': buses, 'trips': trips, 'bookings': bookings,
        'payments': payments, 'attendance': attendance, 'maintenance': maintenance,
    })
    return document


def seed(store, force=False):
    """Write the sample data unless trips already exist"""
    seeded = {}

    def apply(document):
        if document['trips'] and not force:
            return document
        sample = build_sample_document()
        document.update(sample)
        seeded.update({name: len(records) for name, records in sample.items()})
        return document

    store.mutate(apply)
    return seeded


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Load sample transport data')
    parser.add_argument('--force', action='store_true', help='replace existing data')
    args = parser.parse_args()

    store = app.extensions['document_store']
    counts = seed(store, force=args.force)
    if counts:
        print(f"Sample data written to {store.path}")
        for name, count in counts.items():
            print(f"  {name}: {count}")
    else:
        print("Skipping sample data - existing trips found (use --force to replace)")
