"""
Test configuration and fixtures
"""
import pytest

from app import app as flask_app
import routes  # noqa: F401  (registers the API views)
from data_store import DocumentStore


@pytest.fixture
def store(tmp_path):
    """A document store backed by a temporary file"""
    return DocumentStore(tmp_path / 'db.json')


@pytest.fixture
def app(store):
    previous = flask_app.extensions['document_store']
    flask_app.extensions['document_store'] = store
    flask_app.config['TESTING'] = True
    yield flask_app
    flask_app.extensions['document_store'] = previous


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seed(store):
    """Write the given collections into the store"""
    def write(**collections):
        def apply(document):
            document.update(collections)
            return document
        return store.mutate(apply)
    return write


@pytest.fixture
def sample_refs():
    """Routes, buses and users most tests join against"""
    return {
        'routes': [
            {'id': 'route-1', 'name': 'North Loop', 'startPoint': 'Gate', 'endPoint': 'North'},
            {'id': 'route-2', 'name': 'City Express', 'startPoint': 'Gate', 'endPoint': 'City'},
        ],
        'buses': [
            {'id': 'bus-1', 'number': 'BUS-101', 'capacity': 40, 'status': 'active'},
            {'id': 'bus-2', 'number': 'BUS-202', 'capacity': 2, 'status': 'maintenance'},
        ],
        'users': [
            {'id': 'driver-1', 'name': 'Khaled Driver', 'role': 'driver'},
            {'id': 'driver-2', 'name': 'Yusuf Driver', 'role': 'driver'},
            {'id': 'sup-1', 'name': 'Sara Supervisor', 'role': 'supervisor'},
            {'id': 'student-1', 'name': 'Lina', 'role': 'student', 'studentId': 'S-1'},
            {'id': 'student-2', 'name': 'Maha', 'role': 'student', 'studentId': 'S-2'},
            {'id': 'admin-1', 'name': 'Admin', 'role': 'admin'},
        ],
    }
