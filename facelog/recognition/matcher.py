# facelog/recognition/matcher.py
"""
Identity matchers.

Both matchers share one contract:
    train(images, labels)             # images already normalized by preprocess_face
    predict(face) -> (label, distance)  # lower distance = better match
    is_trained / save(path) / load(path)

- LBPHIdentityMatcher: OpenCV LBPH (cv2.face, opencv-contrib). Default.
- EmbeddingIdentityMatcher: nearest neighbour over L2-normalized embeddings
  with top-3 voting, embeddings from a MobileFaceNet INT8 TFLite model.

Thread-safe: model and database access are guarded by locks.
"""
import os
import pickle
import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..detect.detect import to_gray

logger = logging.getLogger(__name__)

# Normalized face size shared by training and inference
FACE_SIZE = 100


def preprocess_face(face_img: np.ndarray, size: int = FACE_SIZE) -> np.ndarray:
    """
    Normalize a face crop for the matchers.

    Pipeline:
    1. Grayscale
    2. Resize to size x size
    3. Histogram equalization
    """
    gray = to_gray(face_img)
    if gray.dtype != np.uint8:
        gray = np.clip(gray, 0, 255).astype(np.uint8)
    resized = cv2.resize(gray, (size, size))
    return cv2.equalizeHist(resized)


class LBPHIdentityMatcher:
    """Local Binary Pattern Histogram matcher. Distance is the LBPH confidence."""

    def __init__(self, radius: int = 1, neighbors: int = 8, grid_x: int = 8, grid_y: int = 8):
        self._lock = threading.Lock()
        self._recognizer = cv2.face.LBPHFaceRecognizer_create(
            radius=radius, neighbors=neighbors, grid_x=grid_x, grid_y=grid_y
        )
        self._trained = False

    @property
    def is_trained(self) -> bool:
        return self._trained

    def train(self, images: Sequence[np.ndarray], labels: Sequence[int]):
        if len(images) == 0:
            raise ValueError("No training images")
        if len(images) != len(labels):
            raise ValueError(f"Got {len(images)} images but {len(labels)} labels")
        with self._lock:
            self._recognizer.train(list(images), np.array(labels, dtype=np.int32))
            self._trained = True
        logger.info(f"[LBPH] Trained on {len(images)} images, {len(set(labels))} people")

    def predict(self, face: np.ndarray) -> Tuple[int, float]:
        if not self._trained:
            raise RuntimeError("Recognizer not trained")
        with self._lock:
            label, distance = self._recognizer.predict(face)
        return int(label), float(distance)

    def save(self, path: str):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with self._lock:
            self._recognizer.write(path)
        logger.info(f"[LBPH] Model saved: {path}")

    def load(self, path: str):
        if not os.path.exists(path):
            raise FileNotFoundError(f"Model not found: {path}")
        with self._lock:
            self._recognizer.read(path)
            self._trained = True
        logger.info(f"[LBPH] Model loaded: {path}")


# ============================================================================
# EMBEDDING MATCHER
# ============================================================================
DEFAULT_EMBEDDING_MODEL_PATH = "models/recognition/MobileFaceNet_int8.tflite"

INPUT_HEIGHT = 112
INPUT_WIDTH = 112
EMBEDDING_DIM = 128

DEFAULT_INPUT_SCALE = 0.007874015718698502
DEFAULT_INPUT_ZERO_POINT = 0
DEFAULT_OUTPUT_SCALE = 0.07505225390195847
DEFAULT_OUTPUT_ZERO_POINT = 0

TOP_K = 3
STRONG_MATCH_DISTANCE = 0.3
STRONG_MATCH_BOOST = 0.8


class TFLiteEmbedder:
    """
    MobileFaceNet INT8 embedder.
    Input: [1, 112, 112, 3] int8 quantized. Output: [1, 128] (dequantized, L2 normalized).
    """

    def __init__(self, model_path: str = None, num_threads: int = None):
        from ..core.tflite_helper import get_interpreter

        if model_path is None:
            model_path = DEFAULT_EMBEDDING_MODEL_PATH
        self.model_path = model_path
        self._inference_lock = threading.Lock()

        self.interpreter = get_interpreter(model_path, num_threads)
        self.interpreter.allocate_tensors()
        input_details = self.interpreter.get_input_details()[0]
        output_details = self.interpreter.get_output_details()[0]

        self._input_dtype = input_details['dtype']
        shape = tuple(int(dim) for dim in input_details.get('shape', [1, INPUT_HEIGHT, INPUT_WIDTH, 3]))
        self.input_height = shape[1] if len(shape) >= 2 else INPUT_HEIGHT
        self.input_width = shape[2] if len(shape) >= 3 else INPUT_WIDTH

        output_shape = output_details.get('shape', [1, EMBEDDING_DIM])
        self.embedding_dim = int(output_shape[-1]) if len(output_shape) >= 2 else EMBEDDING_DIM

        self._input_scale = DEFAULT_INPUT_SCALE
        self._input_zero_point = DEFAULT_INPUT_ZERO_POINT
        self._output_scale = DEFAULT_OUTPUT_SCALE
        self._output_zero_point = DEFAULT_OUTPUT_ZERO_POINT

        input_quant = input_details.get('quantization_parameters', {})
        if len(input_quant.get('scales', [])):
            self._input_scale = float(input_quant['scales'][0])
        if len(input_quant.get('zero_points', [])):
            self._input_zero_point = int(input_quant['zero_points'][0])
        output_quant = output_details.get('quantization_parameters', {})
        if len(output_quant.get('scales', [])):
            self._output_scale = float(output_quant['scales'][0])
        if len(output_quant.get('zero_points', [])):
            self._output_zero_point = int(output_quant['zero_points'][0])

        self._input_index = input_details['index']
        self._output_index = output_details['index']

        logger.info(f"[Embedder] Model: {model_path} (dim={self.embedding_dim})")

    def _preprocess(self, face_img: np.ndarray) -> np.ndarray:
        if face_img.ndim == 2:
            face_img = cv2.cvtColor(face_img, cv2.COLOR_GRAY2BGR)
        img = cv2.resize(face_img, (self.input_width, self.input_height))
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)

        if self._input_dtype == np.int8:
            img_float = (img.astype(np.float32) - 127.5) / 127.5
            img = np.clip(
                img_float / self._input_scale + self._input_zero_point,
                -128, 127
            ).astype(np.int8)
        elif self._input_dtype == np.uint8:
            img = img.astype(np.uint8)
        else:
            img = (img.astype(np.float32) - 127.5) / 127.5
        return img[np.newaxis, ...]

    def _dequantize(self, output: np.ndarray) -> np.ndarray:
        if output.dtype in (np.int8, np.uint8):
            return (output.astype(np.float32) - self._output_zero_point) * self._output_scale
        return output.astype(np.float32)

    def __call__(self, face_img: np.ndarray) -> np.ndarray:
        tensor = self._preprocess(face_img)
        with self._inference_lock:
            self.interpreter.set_tensor(self._input_index, tensor)
            self.interpreter.invoke()
            output = self._dequantize(self.interpreter.get_tensor(self._output_index))
            emb = np.array(output[0], dtype=np.float32, copy=True)
        return emb / (np.linalg.norm(emb) + 1e-10)


class EmbeddingIdentityMatcher:
    """
    Nearest-neighbour matcher over face embeddings.

    The database maps label -> (n, dim) float32 array. A label's score is the
    mean of its TOP_K smallest L2 distances, scaled by STRONG_MATCH_BOOST when
    any single sample is closer than STRONG_MATCH_DISTANCE.
    """

    def __init__(self, embedder: Callable[[np.ndarray], np.ndarray]):
        """
        Args:
            embedder: face image -> 1-D embedding (e.g. TFLiteEmbedder)
        """
        self._embed = embedder
        self._db_lock = threading.Lock()
        self.db: Dict[int, np.ndarray] = {}

    @property
    def is_trained(self) -> bool:
        with self._db_lock:
            return len(self.db) > 0

    def _embedding(self, face: np.ndarray) -> np.ndarray:
        emb = np.asarray(self._embed(face), dtype=np.float32).reshape(-1)
        return emb / (np.linalg.norm(emb) + 1e-10)

    def train(self, images: Sequence[np.ndarray], labels: Sequence[int]):
        if len(images) == 0:
            raise ValueError("No training images")
        if len(images) != len(labels):
            raise ValueError(f"Got {len(images)} images but {len(labels)} labels")

        grouped: Dict[int, List[np.ndarray]] = {}
        for image, label in zip(images, labels):
            grouped.setdefault(int(label), []).append(self._embedding(image))

        with self._db_lock:
            self.db = {label: np.stack(embs) for label, embs in grouped.items()}
        logger.info(f"[Embedding] Trained on {len(images)} images, {len(grouped)} people")

    def add_sample(self, label: int, face: np.ndarray):
        emb = self._embedding(face)[np.newaxis, :]
        with self._db_lock:
            existing = self.db.get(int(label))
            if existing is None:
                self.db[int(label)] = emb
            else:
                self.db[int(label)] = np.concatenate((existing, emb), axis=0)

    def remove(self, label: int) -> bool:
        with self._db_lock:
            return self.db.pop(int(label), None) is not None

    def predict(self, face: np.ndarray) -> Tuple[Optional[int], float]:
        with self._db_lock:
            if not self.db:
                raise RuntimeError("Recognizer not trained")
            snapshot = {k: np.array(v, copy=True) for k, v in self.db.items()}

        emb = self._embedding(face)

        best_label = None
        best_score = float('inf')
        for label, embeddings in snapshot.items():
            if embeddings.ndim == 1:
                embeddings = embeddings[np.newaxis, :]
            if embeddings.size == 0:
                continue

            distances = np.linalg.norm(embeddings - emb, axis=1)
            top_k = min(TOP_K, len(distances))
            score = float(np.mean(np.partition(distances, top_k - 1)[:top_k]))
            if float(np.min(distances)) < STRONG_MATCH_DISTANCE:
                score *= STRONG_MATCH_BOOST

            if score < best_score:
                best_score = score
                best_label = label

        return best_label, best_score

    def save(self, path: str):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with self._db_lock:
            with open(path, "wb") as f:
                pickle.dump(self.db, f)
        logger.info(f"[Embedding] Database saved: {path}")

    def load(self, path: str):
        if not os.path.exists(path):
            raise FileNotFoundError(f"Embedding database not found: {path}")
        with open(path, "rb") as f:
            data = pickle.load(f)

        db = {}
        for label, embeddings in data.items():
            arr = np.asarray(embeddings, dtype=np.float32)
            if arr.ndim == 1:
                arr = arr[np.newaxis, :]
            db[int(label)] = arr
        with self._db_lock:
            self.db = db
        logger.info(f"[Embedding] Database loaded: {path} ({len(db)} people)")

    def labels(self) -> List[int]:
        with self._db_lock:
            return list(self.db.keys())
