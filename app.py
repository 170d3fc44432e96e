from flask import Flask, request, jsonify
from flask_cors import CORS
import logging
import json
import os
import uuid

import config
from classifier import DecodeError, load_classifier
from ownership import is_owner
from records import Tree, from_data_url, parse_bool, utc_now

app = Flask(__name__)
CORS(app)  # Enable CORS for browser clients

app.config.update(
    TREES_FILE=config.TREES_FILE,
    USERS_FILE=config.USERS_FILE,
    MODEL_PATH=config.MODEL_PATH,
)

# Set up logging
logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


def init_classifier(model_path=None):
    """Resolve the classifier once for the process"""
    app.extensions['tree_classifier'] = load_classifier(model_path or app.config['MODEL_PATH'])
    return app.extensions['tree_classifier']


def get_classifier():
    classifier = app.extensions.get('tree_classifier')
    if classifier is None:
        classifier = init_classifier()
    return classifier


def ensure_storage():
    path = app.config['TREES_FILE']
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    if not os.path.exists(path):
        with open(path, 'w', encoding='utf-8') as f:
            f.write('[]')


def load_trees():
    path = app.config['TREES_FILE']
    if not os.path.exists(path):
        return []
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return data if isinstance(data, list) else []


def write_trees(data):
    with open(app.config['TREES_FILE'], 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def save_tree_entry(entry):
    data = load_trees()
    data.insert(0, entry)
    write_trees(data)


def delete_tree_entry(tree_id):
    data = load_trees()
    remaining = [x for x in data if x.get('id') != tree_id]
    if len(remaining) == len(data):
        return False
    write_trees(remaining)
    return True


def load_users():
    """Bearer token -> {id, name}; tokens are issued elsewhere"""
    users = app.config.get('USERS')
    if users is not None:
        return users
    path = app.config['USERS_FILE']
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read users file {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def current_user():
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    token = header[len('Bearer '):].strip()
    return load_users().get(token) if token else None


def unauthorized():
    return jsonify({'error': 'Unauthorized'}), 401


@app.route('/trees', methods=['GET'])
def list_trees():
    ensure_storage()
    return jsonify(load_trees())


@app.route('/trees/mine', methods=['GET'])
def list_my_trees():
    user = current_user()
    if user is None:
        return unauthorized()
    ensure_storage()
    user_id = str(user.get('id', ''))
    user_name = user.get('name', '')
    mine = [x for x in load_trees() if is_owner(Tree.from_payload(x), user_id, user_name)]
    return jsonify(mine)


@app.route('/trees', methods=['POST'])
def create_tree():
    user = current_user()
    if user is None:
        return unauthorized()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'No data provided'}), 400
    try:
        confidence = float(data.get('confidence', 0.0))
        latitude = data.get('latitude')
        longitude = data.get('longitude')
        latitude = float(latitude) if latitude is not None else None
        longitude = float(longitude) if longitude is not None else None
    except (TypeError, ValueError):
        return jsonify({'error': 'Invalid numeric field'}), 400
    if not 0.0 <= confidence <= 1.0:
        return jsonify({'error': 'confidence must be within [0, 1]'}), 400

    ensure_storage()
    entry = {
        'id': uuid.uuid4().hex,
        'species': data.get('species') or 'Unknown',
        'photoRef': data.get('photoRef') or data.get('photo_url') or '',
        'latitude': latitude,
        'longitude': longitude,
        'description': data.get('description') or '',
        'confidence': confidence,
        'verified': parse_bool(data.get('verified')),
        'plantedAt': utc_now(),
        'uploadedBy': user.get('name'),
        'planterName': data.get('planterName'),
        'userId': str(user.get('id')) if user.get('id') is not None else None,
        'location': data.get('location'),
    }
    save_tree_entry(entry)
    logger.info(f"Stored tree {entry['id']} for {entry['uploadedBy']}")
    return jsonify({'tree': entry}), 201


@app.route('/trees/<tree_id>', methods=['DELETE'])
def delete_tree(tree_id):
    user = current_user()
    if user is None:
        return unauthorized()
    ensure_storage()
    item = next((x for x in load_trees() if x.get('id') == tree_id), None)
    if item is None:
        return jsonify({'error': 'Not found'}), 404
    if not is_owner(Tree.from_payload(item), str(user.get('id', '')), user.get('name', '')):
        return unauthorized()
    delete_tree_entry(tree_id)
    return jsonify({'success': True, 'deleted_id': tree_id})


@app.route('/check', methods=['POST'])
def check_image():
    """Classify an uploaded photo without storing it"""
    upload = request.files.get('image')
    if upload is not None:
        image_bytes = upload.read()
    else:
        data = request.get_json(silent=True) or {}
        image_data = data.get('image')
        if not image_data:
            return jsonify({'error': 'No image provided'}), 400
        try:
            image_bytes = from_data_url(image_data)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

    classifier = get_classifier()
    try:
        result = classifier.classify(image_bytes)
    except DecodeError as e:
        logger.warning(f"Classification rejected: {e}")
        return jsonify({'error': 'Failed to classify image'}), 400
    response = result.to_dict()
    response['variant'] = classifier.name
    return jsonify(response)


@app.route('/health', methods=['GET'])
def health_check():
    ensure_storage()
    classifier = app.extensions.get('tree_classifier')
    return jsonify({
        'status': 'healthy',
        'classifier': classifier.name if classifier is not None else None,
        'trees': len(load_trees()),
    })


if __name__ == '__main__':
    print("Starting tree store API...")
    print("=" * 50)

    classifier = init_classifier()
    print(f"Classifier: {classifier.name}")

    print("Access the API at: http://localhost:5000")
    print("Health check at: http://localhost:5000/health")
    print(app.url_map)
    app.run(debug=False, use_reloader=False, host='0.0.0.0', port=5000)
