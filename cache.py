"""Resilient local storage and the Cache Manager on top of it.

``LocalStorage`` is shared by every tab of one client: a JSON file (or a
plain dict when no file is configured) holding named values. Writing a key
notifies the listeners registered by *other* tabs, and only when the stored
value actually changed.
"""
import json
import logging
import os
import tempfile

from records import Tree

logger = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, path=None):
        self.path = path or None
        self._memory = {}
        self._listeners = []

    def _load(self):
        if self.path is None:
            return dict(self._memory)
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable cache file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data):
        if self.path is None:
            self._memory = data
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp = tempfile.mkstemp(dir=directory, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def get(self, key):
        return self._load().get(key)

    def set(self, key, value, origin=None):
        data = self._load()
        if key in data and data[key] == value:
            return False
        data[key] = value
        self._save(data)
        self._notify(key, origin)
        return True

    def remove(self, key, origin=None):
        data = self._load()
        if key not in data:
            return False
        del data[key]
        self._save(data)
        self._notify(key, origin)
        return True

    def add_listener(self, origin, callback):
        entry = (origin, callback)
        self._listeners.append(entry)
        return entry

    def remove_listener(self, entry):
        if entry in self._listeners:
            self._listeners.remove(entry)

    def _notify(self, key, origin):
        for listener_origin, callback in list(self._listeners):
            if listener_origin != origin:
                callback(key)


class CacheManager:
    """Last-known tree collections per scope, read and written whole."""

    def __init__(self, storage, origin=None):
        self.storage = storage
        self.origin = origin

    def get(self, scope):
        """Cached records for ``scope``, or None when nothing was ever cached."""
        raw = self.storage.get(scope.cache_key)
        if raw is None:
            return None
        if not isinstance(raw, list):
            logger.warning(f"Discarding malformed cache entry {scope.cache_key}")
            return None
        records = []
        for item in raw:
            try:
                records.append(Tree.from_payload(item))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping bad cached tree in {scope.cache_key}: {e}")
        return records

    def replace(self, scope, records):
        self.storage.set(scope.cache_key, [r.to_dict() for r in records], origin=self.origin)

    def append(self, scope, record):
        records = self.get(scope) or []
        records.append(record)
        self.replace(scope, records)

    def discard(self, scope, record_id):
        """Drop one record from the collection; returns whether it was present."""
        records = self.get(scope)
        if not records:
            return False
        remaining = [r for r in records if r.id != record_id]
        if len(remaining) == len(records):
            return False
        self.replace(scope, remaining)
        return True

    def find(self, scopes, record_id):
        for scope in scopes:
            for record in self.get(scope) or []:
                if record.id == record_id:
                    return record
        return None
