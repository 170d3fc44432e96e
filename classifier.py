"""Classifier Gateway: decides whether an image counts as a verified tree.

Two interchangeable variants exist. ``load_classifier`` is called once at
startup and makes the one model load attempt; whatever it returns is used
for the rest of the process.
"""
import io
import logging
import os
from dataclasses import dataclass

import numpy as np
import tensorflow as tf
from PIL import Image, UnidentifiedImageError

import config

logger = logging.getLogger(__name__)


class DecodeError(ValueError):
    """The submitted bytes are not a decodable image."""


class ModelLoadError(RuntimeError):
    """The tree model could not be loaded."""


@dataclass(frozen=True)
class Classification:
    verified: bool
    confidence: float
    message: str

    def to_dict(self):
        return {'verified': self.verified, 'confidence': self.confidence, 'message': self.message}


def decode_image(image_bytes):
    """Open raw bytes as an RGB PIL image"""
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, TypeError) as e:
        raise DecodeError(f"cannot decode image: {e}") from e
    if image.mode != 'RGB':
        fmt = image.format
        image = image.convert('RGB')
        image.format = fmt
    return image


def preprocess_image(image):
    """Resize to the model input and normalize channels to [0, 1]"""
    image = image.resize((config.INPUT_SIZE, config.INPUT_SIZE), Image.BILINEAR)
    image_array = np.array(image, dtype=np.float32) / 255.0
    return np.expand_dims(image_array, axis=0)


class Classifier:
    name = 'base'
    threshold = 1.0

    def classify(self, image_bytes):
        raise NotImplementedError


class ModelClassifier(Classifier):
    name = 'model'
    threshold = config.MODEL_THRESHOLD

    def __init__(self, model):
        self.model = model

    def classify(self, image_bytes):
        image_array = preprocess_image(decode_image(image_bytes))
        probabilities = np.asarray(self.model.predict(image_array, verbose=0))[0]
        confidence = float(np.clip(np.max(probabilities), 0.0, 1.0))
        verified = confidence > self.threshold
        if verified:
            message = f"Tree detected ({confidence * 100:.1f}%)"
        else:
            message = f"No tree detected ({confidence * 100:.1f}%)"
        return Classification(verified, confidence, message)


class HeuristicClassifier(Classifier):
    name = 'heuristic'
    threshold = config.HEURISTIC_THRESHOLD

    @staticmethod
    def green_ratio(image):
        arr = np.asarray(image, dtype=np.int16)
        r, g, b = arr[:, :, 0], arr[:, :, 1], arr[:, :, 2]
        mask = (g > r + config.GREEN_MARGIN) & (g > b + config.GREEN_MARGIN) & (g > config.GREEN_FLOOR)
        return float(mask.mean())

    def classify(self, image_bytes):
        image = decode_image(image_bytes)
        ratio = self.green_ratio(image)
        confidence = min(ratio / config.GREEN_RATIO_FULL, config.HEURISTIC_CAP)
        verified = confidence > self.threshold
        if verified:
            message = f"Tree-like features detected ({confidence * 100:.1f}%)"
        else:
            message = f"Low confidence ({confidence * 100:.1f}%)"
        return Classification(verified, confidence, message)


def load_model(model_path):
    if not os.path.exists(model_path):
        raise ModelLoadError(f"Model file {model_path} not found")
    try:
        return tf.keras.models.load_model(model_path, compile=False)
    except Exception as e:
        raise ModelLoadError(f"Error loading model: {e}") from e


def load_classifier(model_path=None, loader=load_model):
    """Make the single model load attempt and resolve the classifier variant."""
    model_path = model_path or config.MODEL_PATH
    try:
        model = loader(model_path)
    except ModelLoadError as e:
        logger.error(f"{e}; using heuristic verification")
        return HeuristicClassifier()
    logger.info("Model loaded successfully!")
    return ModelClassifier(model)
