"""Canonical tree record and the normalization applied at the store boundary.

Everything past the Remote Tree Store Client and the Cache Manager only sees
``Tree`` instances; the loose field names used by older payloads are folded
into the canonical shape here, once.
"""
import base64
import binascii
import enum
import math
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

import config

TENTATIVE_PREFIX = 'local-'


class Scope(enum.Enum):
    ALL = 'all'
    MINE = 'mine'

    @property
    def cache_key(self):
        return config.CACHE_KEY_ALL if self is Scope.ALL else config.CACHE_KEY_MINE

    @classmethod
    def from_cache_key(cls, key):
        for scope in cls:
            if scope.cache_key == key:
                return scope
        return None


def _first(payload, *names, default=None):
    for name in names:
        value = payload.get(name)
        if value is not None and value != '':
            return value
    return default


def _as_float(value):
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) else result


def _as_text(value):
    return None if value is None else str(value)


def parse_bool(value):
    """JSON booleans pass through; the strings "true"/"false" are read literally."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return False


def utc_now():
    return datetime.now(timezone.utc).isoformat()


def new_tentative_id():
    return TENTATIVE_PREFIX + uuid.uuid4().hex


@dataclass(frozen=True)
class Tree:
    id: str
    species: str
    photo_ref: str = ''
    latitude: float = None
    longitude: float = None
    description: str = ''
    confidence: float = 0.0
    verified: bool = False
    planted_at: str = None
    uploaded_by: str = None
    planter_name: str = None
    user_id: str = None
    location: str = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @property
    def is_tentative(self):
        return self.id.startswith(TENTATIVE_PREFIX)

    @property
    def has_coords(self):
        return self.latitude is not None and self.longitude is not None

    @property
    def display_planter(self):
        return self.planter_name or self.uploaded_by or 'Unknown'

    @classmethod
    def from_payload(cls, payload):
        """Build a Tree from any of the field spellings the store has used."""
        ident = _first(payload, 'id', '_id', 'tree_id', 'treeId')
        if ident is None:
            raise ValueError('tree payload without an id')
        confidence = _as_float(_first(payload, 'confidence', default=0.0)) or 0.0
        return cls(
            id=str(ident),
            species=str(_first(payload, 'species', 'treeName', 'name', default='Unknown')),
            photo_ref=str(_first(payload, 'photoRef', 'photo_url', 'photo', 'image', default='')),
            latitude=_as_float(_first(payload, 'latitude', 'lat', 'latitudes')),
            longitude=_as_float(_first(payload, 'longitude', 'lon', 'lng')),
            description=str(_first(payload, 'description', default='')),
            confidence=min(max(confidence, 0.0), 1.0),
            verified=parse_bool(payload.get('verified')),
            planted_at=_as_text(_first(payload, 'plantedAt', 'planted_at', 'created_at', 'createdAt')),
            uploaded_by=_as_text(_first(payload, 'uploadedBy', 'uploader', 'user_name')),
            planter_name=_as_text(_first(payload, 'planterName', 'planter_name')),
            user_id=_as_text(_first(payload, 'userId', 'user_id')),
            location=_as_text(_first(payload, 'location', 'place')),
        )

    def to_dict(self):
        data = asdict(self)
        return {
            'id': data['id'],
            'species': data['species'],
            'photoRef': data['photo_ref'],
            'latitude': data['latitude'],
            'longitude': data['longitude'],
            'description': data['description'],
            'confidence': data['confidence'],
            'verified': data['verified'],
            'plantedAt': data['planted_at'],
            'uploadedBy': data['uploaded_by'],
            'planterName': data['planter_name'],
            'userId': data['user_id'],
            'location': data['location'],
        }

    def create_body(self):
        """Request body for ``POST /trees``; the server assigns id and owner."""
        return {
            'species': self.species,
            'photoRef': self.photo_ref,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'description': self.description,
            'confidence': self.confidence,
            'verified': self.verified,
            'planterName': self.planter_name,
            'location': self.location,
        }


def normalize_collection(payload):
    """Accept a bare array or an object wrapping one under ``trees``/``data``."""
    if isinstance(payload, dict):
        payload = payload.get('trees', payload.get('data'))
    if not isinstance(payload, list):
        raise ValueError('tree collection is not a list')
    return [Tree.from_payload(item) for item in payload if isinstance(item, dict)]


def normalize_created(payload):
    if isinstance(payload, dict) and isinstance(payload.get('tree'), dict):
        payload = payload['tree']
    if not isinstance(payload, dict):
        raise ValueError('created tree is not an object')
    return Tree.from_payload(payload)


def to_data_url(image_bytes, mime='image/jpeg'):
    return f"data:{mime};base64,{base64.b64encode(image_bytes).decode('ascii')}"


def from_data_url(data_url):
    """Return the raw bytes of a base64 data URL (the prefix is optional)."""
    raw = data_url.split(',', 1)[1] if 'base64,' in data_url else data_url
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"not base64 image data: {e}") from e
