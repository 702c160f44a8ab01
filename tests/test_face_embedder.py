"""
Tests for the face embedding providers.

The real models are not loaded here: FaceEmbedder is exercised with a
fake insightface model object so the selection, padding retry and error
translation logic can be checked without downloads.

Run with: pytest tests/test_face_embedder.py -v
"""

import os
import sys
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from face_login.errors import NoFaceDetected, ProviderUnavailable
from face_login.face_embedder import FaceEmbedder, StubEmbeddingProvider, as_embedding


@pytest.fixture
def frame():
    """A small BGR frame."""
    return np.full((64, 48, 3), 128, dtype=np.uint8)


class TestAsEmbedding:
    """Tests for embedding validation."""

    def test_converts_to_float64(self):
        embedding = as_embedding(np.array([1, 2, 3], dtype=np.float32))
        assert embedding.dtype == np.float64
        assert embedding.tolist() == [1.0, 2.0, 3.0]

    def test_read_only_copy(self):
        source = np.array([1.0, 2.0])
        embedding = as_embedding(source)

        source[0] = 9.0
        assert embedding[0] == 1.0
        with pytest.raises(ValueError):
            embedding[0] = 5.0

    @pytest.mark.parametrize("values", [[], [[1.0, 2.0]], [1.0, float("inf")]])
    def test_rejects_invalid(self, values):
        with pytest.raises(ValueError):
            as_embedding(values)


class TestStubEmbeddingProvider:
    """Tests for the scripted provider."""

    def test_replays_in_order(self, frame):
        provider = StubEmbeddingProvider([[1.0, 0.0], NoFaceDetected(), [0.0, 1.0]])

        assert provider.extract(frame).tolist() == [1.0, 0.0]
        with pytest.raises(NoFaceDetected):
            provider.extract(frame)
        assert provider.extract(frame).tolist() == [0.0, 1.0]
        assert provider.calls == 3

    def test_default_after_script(self, frame):
        provider = StubEmbeddingProvider(default=[0.5])
        assert provider.extract(frame).tolist() == [0.5]
        assert provider.extract(frame).tolist() == [0.5]

    def test_no_face_when_exhausted(self, frame):
        provider = StubEmbeddingProvider()
        with pytest.raises(NoFaceDetected):
            provider.extract(frame)

    def test_push(self, frame):
        provider = StubEmbeddingProvider()
        provider.push(ProviderUnavailable("camera unplugged"))

        with pytest.raises(ProviderUnavailable, match="camera unplugged"):
            provider.extract(frame)


class TestFaceEmbedder:
    """Tests for the model-backed embedder."""

    @pytest.fixture
    def embedder(self):
        """Embedder with a fake insightface model already 'loaded'."""
        e = FaceEmbedder({"backend": "insightface", "embedding_dim": 4})
        e._model = MagicMock()
        e.is_loaded = True
        return e

    @staticmethod
    def _face(score, values):
        return SimpleNamespace(det_score=score, normed_embedding=np.array(values, dtype=np.float32))

    def test_no_backend_available(self, frame):
        with patch("face_login.face_embedder._INSIGHTFACE_AVAILABLE", False), \
             patch("face_login.face_embedder._FACENET_AVAILABLE", False):
            embedder = FaceEmbedder({"backend": "auto"})

        assert embedder.backend is None
        with pytest.raises(ProviderUnavailable, match="No face embedding backend"):
            embedder.extract(frame)

    def test_auto_prefers_insightface(self):
        with patch("face_login.face_embedder._INSIGHTFACE_AVAILABLE", True), \
             patch("face_login.face_embedder._FACENET_AVAILABLE", True):
            assert FaceEmbedder().backend == "insightface"

    def test_auto_falls_back_to_facenet(self):
        with patch("face_login.face_embedder._INSIGHTFACE_AVAILABLE", False), \
             patch("face_login.face_embedder._FACENET_AVAILABLE", True):
            assert FaceEmbedder().backend == "facenet"

    def test_picks_highest_scoring_face(self, embedder, frame):
        embedder._model.get.return_value = [
            self._face(0.6, [1, 0, 0, 0]),
            self._face(0.9, [0, 1, 0, 0]),
        ]

        embedding = embedder.extract(frame)

        assert embedding.tolist() == [0.0, 1.0, 0.0, 0.0]
        assert not embedding.flags.writeable

    def test_retries_with_padding(self, embedder, frame):
        embedder._model.get.side_effect = [[], [self._face(0.8, [0, 0, 1, 0])]]

        embedding = embedder.extract(frame)

        assert embedding.tolist() == [0.0, 0.0, 1.0, 0.0]
        padded = embedder._model.get.call_args_list[1][0][0]
        assert padded.shape == (64 + 2 * 32, 48 + 2 * 24, 3)

    def test_no_face(self, embedder, frame):
        embedder._model.get.return_value = []

        with pytest.raises(NoFaceDetected):
            embedder.extract(frame)

    def test_inference_error_is_provider_unavailable(self, embedder, frame):
        embedder._model.get.side_effect = RuntimeError("onnxruntime exploded")

        with pytest.raises(ProviderUnavailable, match="onnxruntime exploded"):
            embedder.extract(frame)

    def test_grayscale_converted(self, embedder):
        embedder._model.get.return_value = [self._face(0.9, [1, 0, 0, 0])]

        embedder.extract(np.zeros((10, 10), dtype=np.uint8))

        assert embedder._model.get.call_args[0][0].shape == (10, 10, 3)

    def test_bgra_converted(self, embedder):
        embedder._model.get.return_value = [self._face(0.9, [1, 0, 0, 0])]

        embedder.extract(np.zeros((10, 10, 4), dtype=np.uint8))

        assert embedder._model.get.call_args[0][0].shape == (10, 10, 3)

    @pytest.mark.parametrize("image", [None, np.zeros((0, 0, 3), dtype=np.uint8),
                                       np.zeros((2, 2, 2, 2), dtype=np.uint8)])
    def test_invalid_image(self, embedder, image):
        with pytest.raises(ProviderUnavailable, match="invalid image"):
            embedder.extract(image)

    def test_model_load_failure(self, frame):
        embedder = FaceEmbedder({"backend": "insightface"})
        with patch.object(embedder, "_load_insightface", side_effect=OSError("model file missing")):
            with pytest.raises(ProviderUnavailable, match="model file missing"):
                embedder.extract(frame)
        assert embedder.is_loaded is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
