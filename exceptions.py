"""
Error taxonomy for the bus transport back office.

Every error the engines raise carries its HTTP status and a stable,
client-safe message. Internal detail stays in the log.
"""


class ApiError(Exception):
    """Base class for all application errors"""

    status_code = 500
    message = 'Internal server error'

    def __init__(self, detail=None):
        super().__init__(detail or self.message)
        self.detail = detail

    def to_dict(self):
        return {'error': self.message}


class ValidationError(ApiError):
    status_code = 400
    message = 'Invalid input'

    def __init__(self, detail=None, fields=None):
        super().__init__(detail)
        self.fields = fields or {}

    def to_dict(self):
        payload = {'error': self.message}
        if self.detail:
            payload['detail'] = self.detail
        if self.fields:
            payload['fields'] = self.fields
        return payload


class NotFoundError(ApiError):
    status_code = 404
    message = 'Not found'

    def __init__(self, label, record_id):
        super().__init__(f'{label} {record_id} not found')
        self.label = label
        self.record_id = record_id

    def to_dict(self):
        return {'error': f'{self.label} not found'}


class ConflictError(ApiError):
    status_code = 409
    message = 'Conflict'

    def to_dict(self):
        return {'error': self.detail or self.message}


class StoreError(ApiError):
    status_code = 500
    retryable = False

    def to_dict(self):
        return {'error': self.message, 'retryable': self.retryable}


class StoreIOError(StoreError):
    """Persistence failed; the previously committed document is intact"""

    message = 'Storage temporarily unavailable, please retry'
    retryable = True


class StoreCorruptError(StoreError):
    """The persisted document could not be parsed"""

    message = 'Data store is unavailable'
