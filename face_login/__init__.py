"""
Face Login Engine

Single-profile face login: enroll one face embedding, then verify fresh
captures against it with a fixed Euclidean distance threshold.

Main components:
    - config: Configuration loading and management
    - errors: Typed failures and usage errors
    - face_embedder: Embedding providers (insightface / facenet-pytorch / stub)
    - template_store: Single-slot persisted template
    - matching: Euclidean matcher and MatchResult
    - session: VerificationSession state machine

Usage:
    from face_login import create_session
    session = create_session()
"""

from face_login.config import (
    get_config,
    get_section,
    get_matching_config,
    get_storage_config,
    get_embedding_config,
    get_api_config,
    get_server_config,
)

from face_login.errors import (
    FaceLoginError,
    NoFaceDetected,
    ProviderUnavailable,
    NoTemplate,
    DimensionMismatch,
    SessionUsageError,
    InvalidTransition,
    AttemptInProgress,
)

from face_login.face_embedder import (
    EmbeddingProvider,
    FaceEmbedder,
    StubEmbeddingProvider,
    as_embedding,
)

from face_login.matching import (
    Decision,
    EuclideanMatcher,
    MatchResult,
)

from face_login.template_store import (
    TemplateStore,
    EnrolledTemplate,
    KeyValueStore,
    InMemoryKeyValueStore,
    SqliteKeyValueStore,
    create_template_store,
    get_template_store,
)

from face_login.session import (
    AttemptOutcome,
    CaptureMode,
    OutcomeKind,
    Phase,
    SessionState,
    VerificationSession,
    create_session,
    get_session,
)

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_matching_config",
    "get_storage_config",
    "get_embedding_config",
    "get_api_config",
    "get_server_config",
    # Errors
    "FaceLoginError",
    "NoFaceDetected",
    "ProviderUnavailable",
    "NoTemplate",
    "DimensionMismatch",
    "SessionUsageError",
    "InvalidTransition",
    "AttemptInProgress",
    # Embedding
    "EmbeddingProvider",
    "FaceEmbedder",
    "StubEmbeddingProvider",
    "as_embedding",
    # Matching
    "Decision",
    "EuclideanMatcher",
    "MatchResult",
    # Template Store
    "TemplateStore",
    "EnrolledTemplate",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "SqliteKeyValueStore",
    "create_template_store",
    "get_template_store",
    # Session
    "AttemptOutcome",
    "CaptureMode",
    "OutcomeKind",
    "Phase",
    "SessionState",
    "VerificationSession",
    "create_session",
    "get_session",
]
