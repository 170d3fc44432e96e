"""Sync Broadcaster: tells dependent views that a tree collection changed.

Same-tab changes arrive through ``publish``; changes made by other tabs
arrive as storage notifications; ``focus`` lets a backgrounded tab catch up.
Subscribers are expected to re-read through the Reconciliation Engine.
"""
import logging

from records import Scope

logger = logging.getLogger(__name__)


class SyncBroadcaster:
    def __init__(self):
        self._subscribers = []
        self._dispatching = False
        self._storage = None
        self._storage_entry = None

    def subscribe(self, handler):
        self._subscribers.append(handler)
        return handler

    def unsubscribe(self, handler):
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def publish(self, scope):
        # Subscribers re-read while being notified, which publishes again.
        if self._dispatching:
            logger.debug(f"Coalesced change for {scope.value}")
            return
        self._dispatching = True
        try:
            for handler in list(self._subscribers):
                handler(scope)
        finally:
            self._dispatching = False

    def attach_storage(self, storage, origin):
        self.detach_storage()
        self._storage = storage
        self._storage_entry = storage.add_listener(origin, self._on_storage)

    def detach_storage(self):
        if self._storage is not None:
            self._storage.remove_listener(self._storage_entry)
        self._storage = None
        self._storage_entry = None

    def _on_storage(self, key):
        scope = Scope.from_cache_key(key)
        if scope is not None:
            self.publish(scope)

    def focus(self):
        for scope in Scope:
            self.publish(scope)
