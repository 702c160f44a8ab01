"""
Face Embedding Providers

An embedding provider turns one still image into one fixed-length face
embedding. It reports at most one face per call and signals failure with
NoFaceDetected (nothing to embed) or ProviderUnavailable (the model could not
run). The dimensionality of the embeddings it returns never changes during a
process lifetime.

Providers:
  - FaceEmbedder: ArcFace via insightface (preferred) or InceptionResnetV1 via
    facenet-pytorch (fallback), selected at construction
  - StubEmbeddingProvider: replays scripted embeddings/errors, for tests and demos

Usage:
    from face_login.face_embedder import FaceEmbedder

    embedder = FaceEmbedder({"backend": "auto", "device": "cpu"})
    embedding = embedder.extract(frame_bgr)  # (512,) read-only float64
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Iterable, Optional, Sequence, Union

import cv2
import numpy as np

from face_login.errors import NoFaceDetected, ProviderUnavailable

logger = logging.getLogger(__name__)

# Backend availability flags
_INSIGHTFACE_AVAILABLE = False
_FACENET_AVAILABLE = False

try:
    from insightface.app import FaceAnalysis
    _INSIGHTFACE_AVAILABLE = True
except ImportError:
    pass

try:
    from facenet_pytorch import MTCNN, InceptionResnetV1
    import torch
    _FACENET_AVAILABLE = True
except ImportError:
    pass


def as_embedding(values: Union[Sequence[float], np.ndarray]) -> np.ndarray:
    """
    Convert values into an immutable embedding.

    Args:
        values: Any 1-D sequence of finite numbers.

    Returns:
        A read-only float64 copy of shape (D,).

    Raises:
        ValueError: If the values are not a non-empty 1-D vector of finite floats.
    """
    embedding = np.array(values, dtype=np.float64)

    if embedding.ndim != 1:
        raise ValueError(f"Embedding must be 1-D, got shape {embedding.shape}")
    if embedding.shape[0] == 0:
        raise ValueError("Embedding must not be empty")
    if not np.all(np.isfinite(embedding)):
        raise ValueError("Embedding contains non-finite values")

    embedding.setflags(write=False)
    return embedding


class EmbeddingProvider(ABC):
    """Abstract source of face embeddings."""

    @abstractmethod
    def extract(self, image: np.ndarray) -> np.ndarray:
        """
        Extract the embedding of the single face in an image.

        Args:
            image: Still image as a pixel buffer, any width/height.

        Returns:
            Read-only float64 embedding of shape (D,).

        Raises:
            NoFaceDetected: If no face is found.
            ProviderUnavailable: If the underlying model cannot run.
        """
        pass


class FaceEmbedder(EmbeddingProvider):
    """
    Extract identity embeddings from face images.

    The embedder handles model loading, face detection/alignment (internal
    to the recognition model), and embedding extraction. When the detector
    finds several faces the one with the highest detection score is used.

    Args:
        config: Dictionary with keys:
            - model: Model name ("buffalo_l", "buffalo_sc", or "vggface2")
            - embedding_dim: Expected embedding dimension (default 512)
            - device: "cuda" or "cpu"
            - backend: "insightface", "facenet" or "auto"
    """

    def __init__(self, config: Optional[dict] = None):
        if config is None:
            config = {}

        self.model_name = config.get("model", "buffalo_l")
        self.embedding_dim = config.get("embedding_dim", 512)
        self.device = config.get("device", "cpu")

        requested_backend = config.get("backend", "auto")
        if requested_backend == "auto":
            if _INSIGHTFACE_AVAILABLE:
                self.backend = "insightface"
            elif _FACENET_AVAILABLE:
                self.backend = "facenet"
            else:
                self.backend = None
        else:
            self.backend = requested_backend

        self._model = None
        self._detector = None  # For facenet backend
        self._load_lock = threading.Lock()
        self.is_loaded = False

    def load_model(self) -> None:
        """
        Load the face recognition model.

        Called lazily by extract(); hosts may call it at startup to pay the
        load cost up front.

        Raises:
            ProviderUnavailable: If no backend is installed or loading fails.
        """
        with self._load_lock:
            if self.is_loaded:
                return

            if self.backend is None:
                raise ProviderUnavailable(
                    "No face embedding backend available. "
                    "Install insightface (pip install insightface onnxruntime) "
                    "or facenet-pytorch (pip install facenet-pytorch)"
                )

            try:
                if self.backend == "insightface":
                    self._load_insightface()
                elif self.backend == "facenet":
                    self._load_facenet()
                else:
                    raise ProviderUnavailable(f"Unknown embedding backend: {self.backend}")
            except ProviderUnavailable:
                raise
            except Exception as e:
                logger.error(f"Failed to load {self.backend} model '{self.model_name}': {e}")
                raise ProviderUnavailable(f"Model load failed: {e}") from e

            self.is_loaded = True
            logger.info(f"FaceEmbedder loaded (backend={self.backend}, model={self.model_name})")

    def _load_insightface(self) -> None:
        """Load insightface model bundle."""
        if not _INSIGHTFACE_AVAILABLE:
            raise ProviderUnavailable("insightface not installed. Run: pip install insightface onnxruntime")

        if self.device == "cuda":
            providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
        else:
            providers = ["CPUExecutionProvider"]

        self._model = FaceAnalysis(name=self.model_name, providers=providers)
        # det_size controls the internal face detection input size
        self._model.prepare(ctx_id=0 if self.device == "cuda" else -1, det_size=(640, 640))

    def _load_facenet(self) -> None:
        """Load facenet-pytorch model."""
        if not _FACENET_AVAILABLE:
            raise ProviderUnavailable("facenet-pytorch not installed. Run: pip install facenet-pytorch")

        device = torch.device(self.device if torch.cuda.is_available() else "cpu")

        self._detector = MTCNN(
            image_size=160,
            margin=20,
            device=device,
            select_largest=True,
        )
        self._model = InceptionResnetV1(pretrained="vggface2").eval().to(device)

    def extract(self, image: np.ndarray) -> np.ndarray:
        """
        Extract the identity embedding of the face in an image.

        Args:
            image: BGR (H, W, 3), BGRA (H, W, 4) or grayscale (H, W) uint8 image.

        Returns:
            L2-normalized read-only embedding of shape (embedding_dim,).

        Raises:
            NoFaceDetected: If the detector finds no face.
            ProviderUnavailable: If the model cannot be loaded or inference fails.
        """
        bgr = self._to_bgr(image)

        if not self.is_loaded:
            self.load_model()

        try:
            if self.backend == "insightface":
                embedding = self._extract_insightface(bgr)
            else:
                embedding = self._extract_facenet(bgr)
        except NoFaceDetected:
            raise
        except Exception as e:
            logger.error(f"Embedding inference failed ({self.backend}): {e}")
            raise ProviderUnavailable(f"Embedding inference failed: {e}") from e

        if embedding.shape[0] != self.embedding_dim:
            logger.warning(
                f"Model produced {embedding.shape[0]}-d embedding, "
                f"config expects {self.embedding_dim}"
            )
        return as_embedding(embedding)

    @staticmethod
    def _to_bgr(image: np.ndarray) -> np.ndarray:
        """Normalize an input image to 3-channel uint8 BGR."""
        if image is None or not isinstance(image, np.ndarray) or image.size == 0:
            raise ProviderUnavailable("invalid image")

        if image.dtype != np.uint8:
            image = np.clip(image, 0, 255).astype(np.uint8)

        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        if image.ndim == 3 and image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        if image.ndim == 3 and image.shape[2] == 3:
            return image

        raise ProviderUnavailable("invalid image")

    def _extract_insightface(self, face_image: np.ndarray) -> np.ndarray:
        """Extract embedding using insightface."""
        faces = self._model.get(face_image)

        if not faces:
            logger.debug("insightface detected no face, retrying with padded input")
            # Tight crops leave SCRFD no context around the face
            faces = self._model.get(self._pad_image(face_image, ratio=0.5))

        if not faces:
            raise NoFaceDetected()

        best_face = max(faces, key=lambda f: f.det_score)
        return np.asarray(best_face.normed_embedding, dtype=np.float64)

    def _extract_facenet(self, face_image: np.ndarray) -> np.ndarray:
        """Extract embedding using facenet-pytorch."""
        rgb = cv2.cvtColor(face_image, cv2.COLOR_BGR2RGB)

        face_tensor = self._detector(rgb)
        if face_tensor is None:
            raise NoFaceDetected()

        if face_tensor.dim() == 3:
            face_tensor = face_tensor.unsqueeze(0)

        device = next(self._model.parameters()).device
        face_tensor = face_tensor.to(device)

        with torch.no_grad():
            embedding = self._model(face_tensor).cpu().numpy().flatten()

        norm = np.linalg.norm(embedding)
        if norm > 1e-8:
            embedding = embedding / norm

        return embedding.astype(np.float64)

    @staticmethod
    def _pad_image(image: np.ndarray, ratio: float = 0.2) -> np.ndarray:
        """Add mean-colour padding around the image to help detection on tight crops."""
        h, w = image.shape[:2]
        pad_h = int(h * ratio)
        pad_w = int(w * ratio)

        mean_color = image.mean(axis=(0, 1)).astype(np.uint8)
        padded = np.full((h + 2 * pad_h, w + 2 * pad_w, 3), mean_color, dtype=np.uint8)
        padded[pad_h:pad_h + h, pad_w:pad_w + w] = image
        return padded


class StubEmbeddingProvider(EmbeddingProvider):
    """
    Placeholder provider that replays a scripted sequence of results.

    Each call to extract() pops the next item: an embedding (any sequence of
    floats) is returned, an exception instance is raised. When the script
    runs out, `default` is used, and NoFaceDetected is raised if there is
    none.

    Use this for testing the session and the hosts without a model.
    """

    def __init__(
        self,
        results: Optional[Iterable] = None,
        default: Optional[Sequence[float]] = None,
    ):
        self._results = deque(results or [])
        self.default = as_embedding(default) if default is not None else None
        self.calls = 0
        self._lock = threading.Lock()

    def push(self, result) -> None:
        """Queue another embedding or exception."""
        with self._lock:
            self._results.append(result)

    def extract(self, image: np.ndarray) -> np.ndarray:
        with self._lock:
            self.calls += 1
            result = self._results.popleft() if self._results else self.default

        if result is None:
            raise NoFaceDetected()
        if isinstance(result, BaseException):
            raise result
        return as_embedding(result)
