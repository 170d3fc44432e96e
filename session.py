"""Session identity and the application state built around it.

``AppState`` replaces the loose globals a client would otherwise keep (the
loaded classifier, the caches, the views). One instance is one tab: several
tabs of the same client share a ``LocalStorage`` and hear about each other's
changes through it.
"""
import logging
import uuid

import config
from broadcaster import SyncBroadcaster
from cache import CacheManager, LocalStorage
from classifier import load_classifier
from geo import load_locations
from reconciliation import ReconciliationEngine
from store_client import RemoteTreeStoreClient
from submission import SubmissionWorkflow
from views import DashboardMap, DashboardStats, Leaderboard, MyTreesGallery, MyTreesMap

logger = logging.getLogger(__name__)


class Session:
    def __init__(self):
        self.user_id = None
        self.user_name = None
        self.token = None

    @property
    def logged_in(self):
        return bool(self.token and self.user_name)

    def login(self, user, token):
        user = user or {}
        name = user.get('username') or user.get('name') or user.get('displayName') or ''
        ident = user.get('id') or user.get('_id')
        self.token = token
        self.user_name = name or None
        self.user_id = str(ident) if ident is not None else None
        logger.info(f"Logged in as {self.user_name or 'anonymous'}")

    def logout(self):
        self.user_id = None
        self.user_name = None
        self.token = None


class AppState:
    def __init__(self, storage=None, classifier=None, session=None, client=None,
                 locations=None, tab_id=None):
        self.tab_id = tab_id or uuid.uuid4().hex
        self.storage = storage if storage is not None else LocalStorage(config.CACHE_FILE)
        self.session = session or Session()
        self.classifier = classifier if classifier is not None else load_classifier()
        logger.info(f"Using {self.classifier.name} classifier")
        self.client = client if client is not None else RemoteTreeStoreClient(self.session)
        self.cache = CacheManager(self.storage, origin=self.tab_id)
        self.broadcaster = SyncBroadcaster()
        self.broadcaster.attach_storage(self.storage, self.tab_id)
        self.engine = ReconciliationEngine(self.client, self.cache, self.session, self.broadcaster)
        self.dashboard_stats = DashboardStats(self.engine, self.broadcaster)
        self.dashboard_map = DashboardMap(self.engine, self.broadcaster)
        self.gallery = MyTreesGallery(self.engine, self.session, self.broadcaster)
        self.my_trees_map = MyTreesMap(self.engine, self.broadcaster)
        self.leaderboard = Leaderboard(self.engine, self.broadcaster)
        self.submissions = SubmissionWorkflow(
            self.classifier, self.engine, self.session,
            load_locations() if locations is None else locations,
        )

    @property
    def views(self):
        return (self.dashboard_stats, self.dashboard_map, self.gallery, self.my_trees_map, self.leaderboard)

    def start(self):
        for view in self.views:
            view.refresh()
        return self

    def submit(self, image, **fields):
        """Run a submission and show a locally-saved result in this tab's views."""
        result = self.submissions.submit(image, **fields)
        outcome = result.outcome
        if outcome is not None and not outcome.synced:
            for view in self.views:
                view.include(outcome.record, drop=outcome.superseded)
        return result

    def focus(self):
        self.broadcaster.focus()

    def close(self):
        for view in self.views:
            view.close()
        self.broadcaster.detach_storage()
        self.client.close()
