"""
Embedding Matcher: compare face embeddings by Euclidean distance.

The enrolled and fresh embeddings are compared with the plain L2 distance
and accepted when the distance is strictly below the threshold (0.55 by
default, the value face-api style 128-d descriptors are calibrated for).
"""

import logging
from typing import Optional

import numpy as np

from face_login.errors import DimensionMismatch
from face_login.matching.interfaces import (
    DEFAULT_THRESHOLD,
    THRESHOLD_RANGE,
    Decision,
    EmbeddingMatcher,
    MatchResult,
)

logger = logging.getLogger(__name__)


class EuclideanMatcher(EmbeddingMatcher):
    """
    Euclidean-distance matcher with a fixed acceptance threshold.

    Args:
        config: Dictionary with optional keys:
            - threshold: Distance cutoff in [0, 2] (default 0.55)
    """

    def __init__(self, config: Optional[dict] = None):
        if config is None:
            config = {}

        threshold = float(config.get("threshold", DEFAULT_THRESHOLD))
        low, high = THRESHOLD_RANGE
        if not low <= threshold <= high:
            raise ValueError(
                f"Matching threshold must be in [{low}, {high}], got {threshold}"
            )
        self.threshold = threshold

    def compare(self, stored: np.ndarray, fresh: np.ndarray) -> MatchResult:
        """
        Compare the enrolled embedding with a fresh one.

        Args:
            stored: Enrolled embedding, shape (D,).
            fresh: Embedding from the current capture, shape (D,).

        Returns:
            MatchResult with the Euclidean distance and the decision.

        Raises:
            DimensionMismatch: If len(stored) != len(fresh).
        """
        stored = np.asarray(stored, dtype=np.float64).ravel()
        fresh = np.asarray(fresh, dtype=np.float64).ravel()

        if stored.shape[0] != fresh.shape[0]:
            logger.error(
                f"Embedding dimension mismatch: stored={stored.shape[0]}, "
                f"fresh={fresh.shape[0]}"
            )
            raise DimensionMismatch(stored.shape[0], fresh.shape[0])

        distance = float(np.sqrt(np.sum((stored - fresh) ** 2)))
        decision = Decision.MATCH if distance < self.threshold else Decision.NO_MATCH

        return MatchResult(distance=distance, decision=decision, threshold=self.threshold)
