"""
Filter and grouping helpers shared by the enrichment and reporting engines.
"""
from collections import defaultdict
from datetime import datetime, time

from models import parse_date


def index_by(records, key='id'):
    """Map key value -> record; first occurrence wins"""
    index = {}
    for record in records:
        value = record.get(key)
        if value is not None and value not in index:
            index[value] = record
    return index


def group_by(records, key):
    groups = defaultdict(list)
    for record in records:
        groups[record.get(key)].append(record)
    return groups


def count_by(records, key='status'):
    counts = defaultdict(int)
    for record in records:
        counts[record.get(key)] += 1
    return counts


def count_status(records, status):
    return sum(1 for record in records if record.get('status') == status)


def sum_amount(records, status=None, field='amount'):
    return sum(record.get(field) or 0 for record in records
               if status is None or record.get('status') == status)


def percent(part, whole):
    return (part / whole) * 100 if whole else 0


def round2(value):
    return round(value, 2)


def average(values):
    values = list(values)
    return sum(values) / len(values) if values else 0


def matches_search(needle, *haystacks):
    """Case-insensitive substring match against any non-empty value"""
    needle = needle.lower()
    return any(needle in str(value).lower() for value in haystacks if value)


class DateRange:
    """Inclusive dateFrom/dateTo window.

    A missing lower bound is open; a missing upper bound means now. A bare
    date as upper bound covers that whole day.
    """

    def __init__(self, date_from=None, date_to=None, now=None):
        self.raw_from = date_from or None
        self.raw_to = date_to or None
        self.start = None
        self.end = None
        if self.raw_from:
            self.start = parse_date(self.raw_from)
        if self.raw_to:
            self.end = parse_date(self.raw_to)
            if self.end is not None and 'T' not in self.raw_to and self.end.time() == time.min:
                self.end = datetime.combine(self.end.date(), time.max)
        elif self.raw_from:
            self.end = now or datetime.now()

    @property
    def active(self):
        return bool(self.raw_from or self.raw_to)

    @property
    def valid(self):
        return ((self.raw_from is None or self.start is not None) and
                (self.raw_to is None or self.end is not None))

    def contains(self, value):
        if not self.active:
            return True
        moment = parse_date(value)
        if moment is None:
            return False
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True

    def filter(self, records, *fields):
        """Records whose first present date-like field falls in the window"""
        if not self.active:
            return list(records)
        return [record for record in records
                if self.contains(next((record.get(f) for f in fields if record.get(f)), None))]


def filter_equal(records, **criteria):
    """Keep records whose fields equal every non-empty criterion"""
    criteria = {k: v for k, v in criteria.items() if v not in (None, '')}
    if not criteria:
        return list(records)
    return [record for record in records
            if all(record.get(k) == v for k, v in criteria.items())]


def same_day(value, day):
    left = parse_date(value)
    right = parse_date(day)
    return left is not None and right is not None and left.date() == right.date()
