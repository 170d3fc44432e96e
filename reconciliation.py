"""Reconciliation Engine: keeps the local cache aligned with the remote store.

Reads never raise; they fall back to the cached snapshot. Writes are
optimistic and deletes are gated on ownership before the server is asked.
Each scope is in one of three states:

    EMPTY   nothing cached and no successful remote read yet
    CACHED  serving a snapshot because the last remote call failed
    FRESH   cache mirrors the last successful remote read

There is no outbox. A write that cannot reach the server stays in the
cache as a tentative record until a successful read replaces the
collection, and only one such record is kept per scope.
"""
import enum
import logging
from dataclasses import dataclass

from ownership import session_owns
from records import Scope
from store_client import RemoteError, RemoteErrorKind

logger = logging.getLogger(__name__)

DEPENDENT_SCOPES = (Scope.ALL, Scope.MINE)


class ScopeState(enum.Enum):
    EMPTY = 'empty'
    CACHED = 'cached'
    FRESH = 'fresh'


class DeleteStatus(enum.Enum):
    DELETED = 'deleted'
    DELETED_LOCALLY = 'deleted_locally'
    UNAUTHORIZED = 'unauthorized'
    NOT_FOUND = 'not_found'


DELETE_NOTICES = {
    DeleteStatus.DELETED: 'Tree deleted successfully',
    DeleteStatus.DELETED_LOCALLY: 'Tree deleted locally',
    DeleteStatus.UNAUTHORIZED: 'You can only delete trees you uploaded',
    DeleteStatus.NOT_FOUND: 'Could not delete tree (not found)',
}


@dataclass(frozen=True)
class WriteOutcome:
    record: object
    synced: bool
    error: RemoteError = None
    superseded: str = None

    @property
    def notice(self):
        if self.synced:
            return 'Tree saved'
        return 'Could not reach the server; tree saved on this device only'


@dataclass(frozen=True)
class DeleteOutcome:
    status: DeleteStatus
    record: object = None
    error: RemoteError = None

    @property
    def ok(self):
        return self.status in (DeleteStatus.DELETED, DeleteStatus.DELETED_LOCALLY)

    @property
    def notice(self):
        return DELETE_NOTICES[self.status]


class ReconciliationEngine:
    def __init__(self, client, cache, session, broadcaster=None):
        self.client = client
        self.cache = cache
        self.session = session
        self.broadcaster = broadcaster
        self._states = {scope: ScopeState.EMPTY for scope in Scope}
        self._pending = {}

    def state(self, scope):
        return self._states[scope]

    def pending(self, scope):
        """Id of the unacknowledged local-only write for ``scope``, if any."""
        return self._pending.get(scope)

    def _publish(self, scope):
        if self.broadcaster is not None:
            self.broadcaster.publish(scope)

    def read(self, scope):
        try:
            records = self.client.list(scope)
        except RemoteError as e:
            cached = self.cache.get(scope)
            if cached is None:
                logger.warning(f"Remote read of {scope.value} failed with no cache: {e}")
                self._states[scope] = ScopeState.EMPTY
                records = []
            else:
                logger.warning(f"Remote read of {scope.value} failed, serving cache: {e}")
                self._states[scope] = ScopeState.CACHED
                records = cached
        else:
            self.cache.replace(scope, records)
            self._states[scope] = ScopeState.FRESH
            self._pending.pop(scope, None)
        self._publish(scope)
        return records

    def refresh(self, scopes=DEPENDENT_SCOPES):
        for scope in scopes:
            self.read(scope)

    def write(self, tree, scopes=DEPENDENT_SCOPES):
        """Persist a tentative ``tree``, showing it locally whatever happens.

        A failed create is not published: subscribers would re-read, and a
        healthy list call would replace the tentative record straight away.
        The caller shows it from the returned outcome instead.
        """
        try:
            created = self.client.create(tree)
        except RemoteError as e:
            logger.warning(f"Create failed, keeping tentative tree {tree.id}: {e}")
            superseded = None
            for scope in scopes:
                superseded = self._append_tentative(scope, tree) or superseded
            return WriteOutcome(tree, synced=False, error=e, superseded=superseded)
        for scope in scopes:
            self.cache.append(scope, tree)
        self.refresh(scopes)
        return WriteOutcome(created, synced=True)

    def _append_tentative(self, scope, tree):
        previous = self._pending.get(scope)
        superseded = None
        if previous is not None and self.cache.discard(scope, previous):
            logger.warning(f"Tentative tree {previous} superseded by {tree.id} in {scope.value}")
            superseded = previous
        self.cache.append(scope, tree)
        self._pending[scope] = tree.id
        return superseded

    def delete(self, tree_id, scopes=DEPENDENT_SCOPES):
        local = self.cache.find(scopes, tree_id)
        if local is not None and not session_owns(self.session, local):
            return DeleteOutcome(DeleteStatus.UNAUTHORIZED, local)
        try:
            self.client.delete(tree_id)
        except RemoteError as e:
            return self._delete_locally(tree_id, local, scopes, e)
        self.refresh(scopes)
        return DeleteOutcome(DeleteStatus.DELETED, local)

    def _delete_locally(self, tree_id, local, scopes, error):
        if local is None:
            status = DeleteStatus.UNAUTHORIZED if error.kind is RemoteErrorKind.UNAUTHORIZED else DeleteStatus.NOT_FOUND
            return DeleteOutcome(status, None, error)
        # ``local`` already passed the ownership gate in delete()
        logger.warning(f"Remote delete of {tree_id} failed, removing locally: {error}")
        for scope in scopes:
            self.cache.discard(scope, tree_id)
            if self._pending.get(scope) == tree_id:
                del self._pending[scope]
        for scope in scopes:
            self._publish(scope)
        return DeleteOutcome(DeleteStatus.DELETED_LOCALLY, local, error)
