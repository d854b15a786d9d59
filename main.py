import logging
import os

from app import app
import routes  # Import routes to register them with Flask

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.environ.get('PORT', 5000))
    logger.info(f"Transport API on port {port}, data file {app.config['DATA_PERSISTENCE_FILE']}")
    app.run(host="0.0.0.0", port=port, debug=debug_mode, threaded=True)
