import io
import json
import logging
import os
import random

from PIL import ExifTags, Image

import config

logger = logging.getLogger(__name__)

GPS_INFO_TAG = 0x8825


def get_decimal_from_dms(dms, ref):
    """Convert DMS (Degrees, Minutes, Seconds) to decimal degrees"""
    try:
        degrees, minutes, seconds = dms[0], dms[1], dms[2]
        decimal = float(degrees) + (float(minutes) / 60.0) + (float(seconds) / 3600.0)
    except (TypeError, ValueError, IndexError, ZeroDivisionError) as e:
        logger.warning(f"Error converting DMS to decimal: {e}")
        return None
    if ref in ('S', 'W'):
        decimal = -decimal
    return decimal


def get_exif_location(image_bytes):
    """Extract GPS coordinates from image EXIF data"""
    try:
        image = Image.open(io.BytesIO(image_bytes))
        gps_raw = image.getexif().get_ifd(GPS_INFO_TAG)
    except (OSError, ValueError, AttributeError) as e:
        logger.warning(f"Error extracting GPS: {e}")
        return None
    if not gps_raw:
        return None
    gps_data = {ExifTags.GPSTAGS.get(tag, tag): value for tag, value in gps_raw.items()}
    if 'GPSLatitude' not in gps_data or 'GPSLongitude' not in gps_data:
        return None
    lat = get_decimal_from_dms(gps_data['GPSLatitude'], gps_data.get('GPSLatitudeRef'))
    lng = get_decimal_from_dms(gps_data['GPSLongitude'], gps_data.get('GPSLongitudeRef'))
    if lat is None or lng is None:
        return None
    return {'lat': lat, 'lng': lng}


def load_locations(path=None):
    """Named planting locations: a list of {name, lat, lng}"""
    path = path or config.LOCATIONS_FILE
    if not os.path.exists(path):
        return []
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read locations from {path}: {e}")
        return []
    return [x for x in data if isinstance(x, dict) and x.get('name')] if isinstance(data, list) else []


def resolve_location(image_bytes=None, location_name=None, locations=(), lat=None, lng=None, rng=random):
    """Pick coordinates for a submission.

    Order: explicit coordinates, photo EXIF GPS, the named location, then
    the default map centre with a small random offset.
    Returns (lat, lng, source).
    """
    if lat is not None and lng is not None:
        return float(lat), float(lng), 'manual'
    if image_bytes:
        coords = get_exif_location(image_bytes)
        if coords:
            logger.info(f"Extracted GPS coordinates: {coords}")
            return coords['lat'], coords['lng'], 'exif'
    for loc in locations:
        if loc.get('name') == location_name and loc.get('lat') is not None and loc.get('lng') is not None:
            return float(loc['lat']), float(loc['lng']), 'named'
    base_lat, base_lng = config.DEFAULT_MAP_VIEW
    return (base_lat + rng.random() * config.LOCATION_JITTER,
            base_lng + rng.random() * config.LOCATION_JITTER, 'default')
