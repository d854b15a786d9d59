"""
File-backed document store for the bus transport back office.
All collections live in one JSON document; every write goes through mutate(),
which serializes writers and replaces the file atomically.
"""
import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager

from exceptions import StoreCorruptError, StoreIOError
from models import COLLECTIONS, empty_document

logger = logging.getLogger(__name__)

# Writers in this process; the sidecar lock file covers other worker processes
_process_write_lock = threading.Lock()


class DocumentStore:
    """One persisted document holding a named array per entity collection"""

    def __init__(self, path):
        self.path = os.path.abspath(os.fspath(path))
        self.lock_path = self.path + '.lock'

    def read(self):
        """Load and parse the committed document"""
        return self._load()[1]

    def _load(self):
        """(raw text, parsed document); raw is None when no file exists yet"""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = f.read()
        except FileNotFoundError:
            return None, empty_document()
        except OSError as e:
            logger.exception(f"Error reading data store {self.path}")
            raise StoreIOError(str(e)) from e

        try:
            document = json.loads(raw)
        except ValueError as e:
            logger.error(f"Data store {self.path} is not valid JSON: {e}")
            raise StoreCorruptError(str(e)) from e
        if not isinstance(document, dict):
            logger.error(f"Data store {self.path} does not hold a JSON object")
            raise StoreCorruptError('document root is not an object')

        for name in COLLECTIONS:
            if not isinstance(document.get(name), list):
                document[name] = []
        return raw, document

    def mutate(self, fn):
        """Apply fn to a fresh document and commit the result atomically.

        fn may change the document in place; it must return the document to
        persist. If fn raises, nothing is written. A document that serializes
        to the committed text is not written again.
        """
        with self._write_lock():
            raw, document = self._load()
            document = fn(document)
            if document is None:
                raise TypeError('mutate callback must return the document')
            payload = json.dumps(document, indent=2, ensure_ascii=False)
            if payload == raw:
                logger.debug(f"No changes to commit to {self.path}")
            else:
                self._write(payload)
            return document

    def transaction(self, fn):
        """Like mutate(), for callbacks returning (document, result)"""
        outcome = {}

        def apply(document):
            document, outcome['result'] = fn(document)
            return document

        self.mutate(apply)
        return outcome['result']

    @contextmanager
    def _write_lock(self):
        with _process_write_lock:
            try:
                lock_file = open(self.lock_path, 'a')
            except OSError as e:
                logger.exception(f"Error opening lock file {self.lock_path}")
                raise StoreIOError(str(e)) from e
            with lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _write(self, payload):
        directory = os.path.dirname(self.path)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix='.db-', suffix='.tmp', dir=directory)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            logger.exception(f"Error saving data store {self.path}")
            raise StoreIOError(str(e)) from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.warning(f"Could not remove temporary file {tmp_path}")


def find_index(records, record_id):
    for index, record in enumerate(records):
        if record.get('id') == record_id:
            return index
    return -1


def find_record(records, record_id):
    index = find_index(records, record_id)
    return records[index] if index >= 0 else None
