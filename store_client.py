"""HTTP client for the authoritative tree store.

Every call carries the session's bearer token when one is set. A missing
token is not an error on this side; the server answers 401 and that comes
back as an ``UNAUTHORIZED`` RemoteError.
"""
import enum
import logging
from urllib.parse import quote

import requests

import config
from records import Scope, normalize_collection, normalize_created

logger = logging.getLogger(__name__)


class RemoteErrorKind(enum.Enum):
    NETWORK = 'NetworkError'
    UNAUTHORIZED = 'Unauthorized'
    NOT_FOUND = 'NotFound'


class RemoteError(Exception):
    def __init__(self, kind, message=None, status=None):
        self.kind = kind
        self.status = status
        self.message = message or kind.value
        super().__init__(f"{kind.value}: {self.message}")


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get('error') or body.get('message')
        if message:
            return str(message)
    return f"HTTP {response.status_code}"


def _kind_for_status(status):
    if status in (401, 403):
        return RemoteErrorKind.UNAUTHORIZED
    if status == 404:
        return RemoteErrorKind.NOT_FOUND
    return RemoteErrorKind.NETWORK


class RemoteTreeStoreClient:
    def __init__(self, session, base_url=None, http=None):
        self.session = session
        self.base_url = (base_url or config.API_BASE).rstrip('/')
        self.http = http if http is not None else requests.Session()

    def _headers(self, with_body=False):
        headers = {'Accept': 'application/json'}
        if self.session.token:
            headers['Authorization'] = f"Bearer {self.session.token}"
        if with_body:
            headers['Content-Type'] = 'application/json'
        return headers

    def _request(self, method, path, body=None):
        url = self.base_url + path
        try:
            response = self.http.request(method, url, headers=self._headers(body is not None), json=body)
        except requests.RequestException as e:
            raise RemoteError(RemoteErrorKind.NETWORK, str(e)) from e
        if not 200 <= response.status_code < 300:
            raise RemoteError(_kind_for_status(response.status_code), _error_message(response),
                              status=response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(RemoteErrorKind.NETWORK, f"invalid JSON from {path}",
                              status=response.status_code) from e

    def list(self, scope):
        path = '/trees/mine' if scope is Scope.MINE else '/trees'
        payload = self._request('GET', path)
        try:
            return normalize_collection(payload)
        except ValueError as e:
            raise RemoteError(RemoteErrorKind.NETWORK, f"malformed tree list: {e}") from e

    def create(self, tree):
        payload = self._request('POST', '/trees', body=tree.create_body())
        try:
            return normalize_created(payload)
        except ValueError as e:
            raise RemoteError(RemoteErrorKind.NETWORK, f"malformed created tree: {e}") from e

    def delete(self, tree_id):
        self._request('DELETE', f"/trees/{quote(str(tree_id), safe='')}")
        return True

    def close(self):
        close = getattr(self.http, 'close', None)
        if close is not None:
            close()
