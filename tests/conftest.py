import io
import json
from dataclasses import replace

import pytest
import requests
from PIL import Image

from broadcaster import SyncBroadcaster
from cache import CacheManager, LocalStorage
from classifier import Classification, HeuristicClassifier
from ownership import is_owner
from reconciliation import ReconciliationEngine
from records import Scope, Tree, new_tentative_id
from session import Session
from store_client import RemoteError, RemoteErrorKind


def image_bytes(color, size=(100, 100), fmt='PNG'):
    buf = io.BytesIO()
    Image.new('RGB', size, color).save(buf, format=fmt)
    return buf.getvalue()


def make_tree(ident=None, species='Acacia', uploaded_by='alice', user_id='u1', verified=True,
              confidence=0.9, latitude=-1.2, longitude=36.8, planted_at='2024-01-01T00:00:00+00:00', **extra):
    return Tree(
        id=ident or new_tentative_id(),
        species=species,
        photo_ref='data:image/png;base64,AAAA',
        latitude=latitude,
        longitude=longitude,
        confidence=confidence,
        verified=verified,
        planted_at=planted_at,
        uploaded_by=uploaded_by,
        user_id=user_id,
        **extra,
    )


class FakeStore:
    """In-memory stand-in for RemoteTreeStoreClient."""

    def __init__(self, session, trees=None):
        self.session = session
        self.trees = trees if trees is not None else []
        self.online = True
        self.create_error = None
        self.calls = []
        self.closed = False

    def _check(self):
        if not self.online:
            raise RemoteError(RemoteErrorKind.NETWORK, 'offline')

    def _owns(self, tree):
        return is_owner(tree, self.session.user_id, self.session.user_name)

    def list(self, scope):
        self.calls.append(('list', scope))
        self._check()
        if scope is Scope.MINE:
            if not self.session.token:
                raise RemoteError(RemoteErrorKind.UNAUTHORIZED, status=401)
            return [t for t in self.trees if self._owns(t)]
        return list(self.trees)

    def create(self, tree):
        self.calls.append(('create', tree.id))
        self._check()
        if self.create_error is not None:
            raise self.create_error
        if not self.session.token:
            raise RemoteError(RemoteErrorKind.UNAUTHORIZED, status=401)
        created = replace(tree, id=f"srv-{len(self.trees) + 1}",
                          uploaded_by=self.session.user_name, user_id=self.session.user_id)
        self.trees.insert(0, created)
        return created

    def delete(self, tree_id):
        self.calls.append(('delete', tree_id))
        self._check()
        match = next((t for t in self.trees if t.id == tree_id), None)
        if match is None:
            raise RemoteError(RemoteErrorKind.NOT_FOUND, status=404)
        if not self._owns(match):
            raise RemoteError(RemoteErrorKind.UNAUTHORIZED, status=401)
        self.trees.remove(match)
        return True

    def close(self):
        self.closed = True


class FixedClassifier:
    name = 'fixed'

    def __init__(self, verified=True, confidence=0.9):
        self.result = Classification(verified, confidence, 'Tree detected' if verified else 'No tree detected')
        self.calls = 0

    def classify(self, image_bytes):
        self.calls += 1
        return self.result


class FlaskHTTP:
    """Routes RemoteTreeStoreClient requests into a Flask test client."""

    def __init__(self, test_client, base='http://testserver'):
        self.test_client = test_client
        self.base = base

    def request(self, method, url, headers=None, json=None):
        response = self.test_client.open(url[len(self.base):], method=method, headers=headers, json=json)
        return FlaskResponse(response)


class FlaskResponse:
    def __init__(self, response):
        self.status_code = response.status_code
        self.content = response.get_data()

    def json(self):
        return json.loads(self.content)


class DownHTTP:
    def request(self, method, url, headers=None, json=None):
        raise requests.ConnectionError('connection refused')


@pytest.fixture
def session():
    s = Session()
    s.login({'id': 'u1', 'username': 'alice'}, 'tok-alice')
    return s


@pytest.fixture
def store(session):
    return FakeStore(session)


@pytest.fixture
def storage():
    return LocalStorage()


@pytest.fixture
def cache(storage):
    return CacheManager(storage, origin='tab-1')


@pytest.fixture
def broadcaster():
    return SyncBroadcaster()


@pytest.fixture
def engine(store, cache, session, broadcaster):
    return ReconciliationEngine(store, cache, session, broadcaster)


@pytest.fixture
def heuristic():
    return HeuristicClassifier()


@pytest.fixture
def flask_app(tmp_path):
    import app as app_module

    flask_app = app_module.app
    flask_app.config.update(
        TESTING=True,
        TREES_FILE=str(tmp_path / 'trees.json'),
        USERS={
            'tok-alice': {'id': 'u1', 'name': 'alice'},
            'tok-bob': {'id': 'u2', 'name': 'bob'},
        },
    )
    flask_app.extensions['tree_classifier'] = HeuristicClassifier()
    yield flask_app
    flask_app.extensions.pop('tree_classifier', None)
    flask_app.config.pop('USERS', None)


@pytest.fixture
def http_client(flask_app):
    return flask_app.test_client()
