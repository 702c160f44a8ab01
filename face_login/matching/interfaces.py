"""
Matching Interfaces Module

This module defines the result type and abstract interface for comparing an
enrolled face embedding against a freshly captured one.

Usage:
    from face_login.matching.interfaces import MatchResult, Decision, EmbeddingMatcher
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import numpy as np


# Distance cutoff shared with every existing enrollment. Changing the default
# invalidates stored templates' calibration.
DEFAULT_THRESHOLD = 0.55

# Threshold values accepted from configuration
THRESHOLD_RANGE = (0.0, 2.0)


class Decision(Enum):
    """Outcome of a single distance test."""
    MATCH = "match"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class MatchResult:
    """
    Result of comparing two embeddings.

    Attributes:
        distance: Euclidean distance between the embeddings, >= 0.
        decision: MATCH if distance < threshold, else NO_MATCH.
        threshold: The threshold the decision was made against.
    """

    distance: float
    decision: Decision
    threshold: float = DEFAULT_THRESHOLD

    @property
    def is_match(self) -> bool:
        return self.decision is Decision.MATCH

    @property
    def confidence_score(self) -> float:
        """
        1 - distance, for display only.

        Not bounded: very distant embeddings give negative values. Never
        use this for decisions.
        """
        return 1.0 - self.distance


class EmbeddingMatcher(ABC):
    """
    Abstract base class for embedding comparison.

    Implementations must be pure: no I/O, no mutation of the inputs, and
    the same inputs always give the same result.
    """

    @abstractmethod
    def compare(self, stored: np.ndarray, fresh: np.ndarray) -> MatchResult:
        """
        Compare the enrolled embedding with a fresh one.

        Args:
            stored: Embedding loaded from the template store, shape (D,).
            fresh: Embedding extracted from the current capture, shape (D,).

        Returns:
            MatchResult with the distance and decision.

        Raises:
            DimensionMismatch: If the two embeddings differ in length.
        """
        pass
