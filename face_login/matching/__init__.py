"""
Matching Module for Face Login

Components:
    - interfaces: MatchResult, Decision and the EmbeddingMatcher base class
    - embedding_matcher: Euclidean distance matcher with a fixed threshold

Usage:
    from face_login.matching import EuclideanMatcher
    result = EuclideanMatcher({"threshold": 0.55}).compare(stored, fresh)
"""

from face_login.matching.interfaces import (
    DEFAULT_THRESHOLD,
    Decision,
    EmbeddingMatcher,
    MatchResult,
)
from face_login.matching.embedding_matcher import EuclideanMatcher

__all__ = [
    "DEFAULT_THRESHOLD",
    "Decision",
    "EmbeddingMatcher",
    "MatchResult",
    "EuclideanMatcher",
]
