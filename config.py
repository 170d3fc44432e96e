import os

API_BASE = os.environ.get('TREESTORE_API_BASE', 'http://localhost:5000')
MODEL_PATH = os.environ.get('TREESTORE_MODEL_PATH', 'tree_model.h5')
CACHE_FILE = os.environ.get('TREESTORE_CACHE_FILE', 'tree_cache.json')
TREES_FILE = os.environ.get('TREESTORE_TREES_FILE', 'trees.json')
USERS_FILE = os.environ.get('TREESTORE_USERS_FILE', 'users.json')
LOCATIONS_FILE = os.environ.get('TREESTORE_LOCATIONS_FILE', 'location.json')
LOG_LEVEL = os.environ.get('TREESTORE_LOG_LEVEL', 'INFO')

# Local cache keys, one per scope
CACHE_KEY_ALL = 'trees:all'
CACHE_KEY_MINE = 'trees:mine'

# Classifier
INPUT_SIZE = 224
MODEL_THRESHOLD = 0.6
HEURISTIC_THRESHOLD = 0.4
GREEN_MARGIN = 20
GREEN_FLOOR = 60
GREEN_RATIO_FULL = 0.3
HEURISTIC_CAP = 0.95

# Views
CO2_PER_TREE = 21  # kg per year
DEFAULT_MAP_VIEW = (-1.286389, 36.817223)
DEFAULT_MAP_ZOOM = 10
MY_TREES_MAP_ZOOM = 7
LOCATION_JITTER = 0.2
