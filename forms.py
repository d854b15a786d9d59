"""
Input validation for JSON request bodies.

Bodies are fed to WTForms as form data; declared fields are validated and
coerced, undeclared keys pass through untouched.
"""
import math

from werkzeug.datastructures import MultiDict
from wtforms import Form, FloatField, IntegerField, StringField
from wtforms.validators import AnyOf, InputRequired, NumberRange, Optional, Regexp, ValidationError

from exceptions import ValidationError as InvalidInput
from models import (AttendanceRecord, Booking, Bus, MaintenanceRecord, Payment, Trip, User,
                    parse_date)

TIME_FORMAT = Regexp(r'^\d{2}:\d{2}(:\d{2})?$', message='Time must be HH:MM')


class IsoDate:
    """Accept YYYY-MM-DD or a full ISO datetime"""

    def __init__(self, message='Date must be ISO formatted (YYYY-MM-DD)'):
        self.message = message

    def __call__(self, form, field):
        if field.data and parse_date(field.data) is None:
            raise ValidationError(self.message)


class Finite:
    """Reject inf and nan, which float() accepts"""

    def __init__(self, message='Must be a finite number'):
        self.message = message

    def __call__(self, form, field):
        if field.data is not None and not math.isfinite(field.data):
            raise ValidationError(self.message)


def choice(values):
    return AnyOf(values, message=f"Must be one of: {', '.join(values)}")


class TripForm(Form):
    routeId = StringField('Route', validators=[InputRequired()])
    busId = StringField('Bus', validators=[InputRequired()])
    driverId = StringField('Driver', validators=[Optional()])
    supervisorId = StringField('Supervisor', validators=[Optional()])
    date = StringField('Date', validators=[InputRequired(), IsoDate()])
    startTime = StringField('Start time', validators=[InputRequired(), TIME_FORMAT])
    endTime = StringField('End time', validators=[InputRequired(), TIME_FORMAT])
    scheduledTime = StringField('Scheduled time', validators=[Optional(), TIME_FORMAT])
    actualStartTime = StringField('Actual start time', validators=[Optional(), TIME_FORMAT])
    status = StringField('Status', validators=[Optional(), choice(Trip.statuses)])
    passengers = IntegerField('Passengers', validators=[Optional(), NumberRange(min=0)])
    operationalCost = FloatField('Operational cost', validators=[Optional(), Finite(), NumberRange(min=0)])


class RouteForm(Form):
    name = StringField('Name', validators=[InputRequired()])
    startPoint = StringField('Start point', validators=[Optional()])
    endPoint = StringField('End point', validators=[Optional()])
    distance = FloatField('Distance', validators=[Optional(), Finite(), NumberRange(min=0)])
    estimatedDuration = FloatField('Estimated duration', validators=[Optional(), Finite(), NumberRange(min=0)])


class BusForm(Form):
    number = StringField('Number', validators=[InputRequired()])
    capacity = IntegerField('Capacity', validators=[Optional(), NumberRange(min=0)])
    status = StringField('Status', validators=[Optional(), choice(Bus.statuses)])
    lastMaintenance = StringField('Last maintenance', validators=[Optional(), IsoDate()])
    nextMaintenance = StringField('Next maintenance', validators=[Optional(), IsoDate()])


class UserForm(Form):
    name = StringField('Name', validators=[InputRequired()])
    role = StringField('Role', validators=[InputRequired(), choice(User.roles)])
    status = StringField('Status', validators=[Optional(), choice(User.statuses)])


class BookingForm(Form):
    studentId = StringField('Student', validators=[InputRequired()])
    tripId = StringField('Trip', validators=[InputRequired()])
    status = StringField('Status', validators=[Optional(), choice(Booking.statuses)])
    date = StringField('Date', validators=[Optional(), IsoDate()])


class PaymentForm(Form):
    amount = FloatField('Amount', validators=[InputRequired(), Finite(), NumberRange(min=0)])
    status = StringField('Status', validators=[Optional(), choice(Payment.statuses)])
    tripId = StringField('Trip', validators=[Optional()])
    bookingId = StringField('Booking', validators=[Optional()])
    studentId = StringField('Student', validators=[Optional()])
    date = StringField('Date', validators=[Optional(), IsoDate()])


class AttendanceForm(Form):
    studentId = StringField('Student', validators=[InputRequired()])
    tripId = StringField('Trip', validators=[InputRequired()])
    status = StringField('Status', validators=[Optional(), choice(AttendanceRecord.statuses)])
    date = StringField('Date', validators=[Optional(), IsoDate()])


class MaintenanceForm(Form):
    busId = StringField('Bus', validators=[InputRequired()])
    status = StringField('Status', validators=[Optional(), choice(MaintenanceRecord.statuses)])
    priority = StringField('Priority', validators=[Optional(), choice(MaintenanceRecord.priorities)])
    estimatedCost = FloatField('Estimated cost', validators=[Optional(), Finite(), NumberRange(min=0)])
    actualCost = FloatField('Actual cost', validators=[Optional(), Finite(), NumberRange(min=0)])
    date = StringField('Date', validators=[Optional(), IsoDate()])


FORMS = {
    'trips': TripForm,
    'routes': RouteForm,
    'buses': BusForm,
    'users': UserForm,
    'bookings': BookingForm,
    'payments': PaymentForm,
    'attendance': AttendanceForm,
    'maintenance': MaintenanceForm,
}


def _form_value(value):
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def validate_payload(collection, payload, partial=False):
    """Validate a JSON body for a collection and return the cleaned payload.

    With partial=True only the keys present in the body are checked.
    """
    if not isinstance(payload, dict):
        raise InvalidInput('Request body must be a JSON object')

    form_class = FORMS[collection]
    form = form_class(formdata=MultiDict(
        [(key, _form_value(value)) for key, value in payload.items()
         if value is not None and not isinstance(value, (list, dict))]
    ))
    form.validate()

    errors = {name: messages for name, messages in form.errors.items()
              if not partial or name in payload}
    for name in form._fields:
        if isinstance(payload.get(name), (list, dict)):
            errors.setdefault(name, []).append('Must be a single value')
    if errors:
        raise InvalidInput(fields=errors)

    # Only numbers are coerced; ids and strings keep their JSON type
    cleaned = dict(payload)
    for name, field in form._fields.items():
        if isinstance(field, (IntegerField, FloatField)) and payload.get(name) not in (None, ''):
            cleaned[name] = field.data
    return cleaned
