from flask import Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
import os
import logging

from data_store import DocumentStore
from exceptions import ApiError, StoreError

# Configure logging - use INFO level for production
logging.basicConfig(level=os.environ.get('LOG_LEVEL', 'INFO').upper())
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
app.secret_key = os.environ.get('SESSION_SECRET', 'dev-secret')
app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

# Document store configuration
app.config['DATA_PERSISTENCE_FILE'] = os.environ.get('DATA_PERSISTENCE_FILE', 'db.json')
app.config['ON_TIME_TOLERANCE_MINUTES'] = float(os.environ.get('ON_TIME_TOLERANCE_MINUTES', '5'))
app.json.sort_keys = False

app.extensions['document_store'] = DocumentStore(app.config['DATA_PERSISTENCE_FILE'])


def get_store():
    """The document store bound to the running app"""
    return current_app.extensions['document_store']


# API responses reflect live store state and must never be cached
@app.after_request
def add_cache_headers(response):
    if request.path.startswith('/api/'):
        response.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '0'
    return response


@app.errorhandler(ApiError)
def handle_api_error(e):
    if isinstance(e, StoreError):
        logger.error(f"{type(e).__name__} on {request.method} {request.path}: {e.detail}")
    else:
        logger.info(f"{type(e).__name__} on {request.method} {request.path}: {e.detail}")
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify({'error': e.name}), e.code


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    logger.exception(f"Unhandled error on {request.method} {request.path}")
    return jsonify({'error': 'Internal server error'}), 500
