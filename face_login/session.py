"""
Verification Session Module

The session is the state machine that sequences one enrollment or
verification attempt: capture -> embed -> decide -> notify.

    IDLE -> AWAITING_CAPTURE(ENROLL) -> PROCESSING(ENROLL) -> TERMINAL(outcome)
    IDLE -> AWAITING_CAPTURE(VERIFY) -> PROCESSING(VERIFY) -> TERMINAL(outcome)
    IDLE -> TERMINAL(NO_TEMPLATE)    when verifying with nothing enrolled
    any  -> IDLE                     on reset()

Only one attempt is in flight at a time. The embedding provider call is the
only suspension point; it runs in a worker thread so model inference does
not block the event loop. A reset() while the provider is running discards
its late result.

The session is confined to a single event loop: call every method from the
loop thread.

Usage:
    session = VerificationSession(provider, store)
    session.subscribe_outcomes(lambda outcome: print(outcome))

    session.begin_enrollment()
    await session.submit_enrollment_image(frame)   # TERMINAL(ENROLLED)
    session.reset()

    session.begin_verification()
    outcome = await session.submit_verification_image(frame)
    if outcome.kind is OutcomeKind.VERIFIED:
        ...
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

import numpy as np

from face_login.errors import (
    AttemptInProgress,
    DimensionMismatch,
    InvalidTransition,
    NoFaceDetected,
    NoTemplate,
    ProviderUnavailable,
)
from face_login.face_embedder import EmbeddingProvider, as_embedding
from face_login.matching import EmbeddingMatcher, EuclideanMatcher, MatchResult
from face_login.template_store import TemplateStore

logger = logging.getLogger(__name__)


class CaptureMode(Enum):
    """What a capture is for."""
    ENROLL = "enroll"
    VERIFY = "verify"


class Phase(Enum):
    """Session state tag."""
    IDLE = "idle"
    AWAITING_CAPTURE = "awaiting_capture"
    PROCESSING = "processing"
    TERMINAL = "terminal"


class OutcomeKind(Enum):
    """Attempt outcome tag."""
    ENROLLED = "enrolled"
    VERIFIED = "verified"
    DENIED = "denied"
    NO_FACE_DETECTED = "no_face_detected"
    NO_TEMPLATE = "no_template"
    PROVIDER_FAILURE = "provider_failure"


@dataclass(frozen=True)
class AttemptOutcome:
    """
    The single result of an attempt.

    Attributes:
        kind: Which outcome this is.
        distance: Embedding distance, set for VERIFIED and DENIED only.
        reason: Failure description, set for PROVIDER_FAILURE only.
    """

    kind: OutcomeKind
    distance: Optional[float] = None
    reason: Optional[str] = None

    @classmethod
    def enrolled(cls) -> "AttemptOutcome":
        return cls(OutcomeKind.ENROLLED)

    @classmethod
    def verified(cls, distance: float) -> "AttemptOutcome":
        return cls(OutcomeKind.VERIFIED, distance=distance)

    @classmethod
    def denied(cls, distance: float) -> "AttemptOutcome":
        return cls(OutcomeKind.DENIED, distance=distance)

    @classmethod
    def no_face_detected(cls) -> "AttemptOutcome":
        return cls(OutcomeKind.NO_FACE_DETECTED)

    @classmethod
    def no_template(cls) -> "AttemptOutcome":
        return cls(OutcomeKind.NO_TEMPLATE)

    @classmethod
    def provider_failure(cls, reason: str) -> "AttemptOutcome":
        return cls(OutcomeKind.PROVIDER_FAILURE, reason=reason)

    @property
    def is_decision(self) -> bool:
        """
        True only for VERIFIED and DENIED.

        Every other outcome is not a security determination and must not be
        treated as granting or refusing access.
        """
        return self.kind in (OutcomeKind.VERIFIED, OutcomeKind.DENIED)

    def __str__(self) -> str:
        name = self.kind.name
        if self.distance is not None:
            return f"{name}({self.distance:.4f})"
        if self.reason is not None:
            return f"{name}({self.reason})"
        return name


@dataclass(frozen=True)
class SessionState:
    """
    Current session state.

    Attributes:
        phase: State tag.
        mode: Capture mode while AWAITING_CAPTURE or PROCESSING.
        outcome: The attempt outcome while TERMINAL.
    """

    phase: Phase
    mode: Optional[CaptureMode] = None
    outcome: Optional[AttemptOutcome] = None

    @classmethod
    def idle(cls) -> "SessionState":
        return cls(Phase.IDLE)

    @classmethod
    def awaiting_capture(cls, mode: CaptureMode) -> "SessionState":
        return cls(Phase.AWAITING_CAPTURE, mode=mode)

    @classmethod
    def processing(cls, mode: CaptureMode) -> "SessionState":
        return cls(Phase.PROCESSING, mode=mode)

    @classmethod
    def terminal(cls, outcome: AttemptOutcome) -> "SessionState":
        return cls(Phase.TERMINAL, outcome=outcome)

    def __str__(self) -> str:
        if self.mode is not None:
            return f"{self.phase.name}({self.mode.name})"
        if self.outcome is not None:
            return f"{self.phase.name}({self.outcome})"
        return self.phase.name


OutcomeListener = Callable[[AttemptOutcome], None]
StateListener = Callable[[SessionState], None]


class VerificationSession:
    """
    Enrollment/verification state machine for a single-profile face login.

    Args:
        provider: Source of face embeddings.
        store: Single-slot template store.
        matcher: Embedding comparison; defaults to EuclideanMatcher(0.55).
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: TemplateStore,
        matcher: Optional[EmbeddingMatcher] = None,
    ):
        self.provider = provider
        self.store = store
        self.matcher = matcher if matcher is not None else EuclideanMatcher()

        self._state = SessionState.idle()
        # Bumped by reset(); an attempt whose generation is stale is discarded
        self._generation = 0
        self._outcome_listeners: List[OutcomeListener] = []
        self._state_listeners: List[StateListener] = []
        self.last_match: Optional[MatchResult] = None

    # ------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe_outcomes(self, listener: OutcomeListener) -> Callable[[], None]:
        """
        Register a callback for terminal outcomes.

        Returns:
            A function that removes the callback.
        """
        self._outcome_listeners.append(listener)
        return lambda: self._unsubscribe(self._outcome_listeners, listener)

    def subscribe_states(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a callback for every state change.

        Returns:
            A function that removes the callback.
        """
        self._state_listeners.append(listener)
        return lambda: self._unsubscribe(self._state_listeners, listener)

    @staticmethod
    def _unsubscribe(listeners: list, listener) -> None:
        if listener in listeners:
            listeners.remove(listener)

    # ------------------------------------------------------------
    # Host operations
    # ------------------------------------------------------------

    def begin_enrollment(self) -> None:
        """
        Arm the session for an enrollment capture.

        Raises:
            InvalidTransition: If the session is not IDLE.
        """
        self._require_phase("begin enrollment", Phase.IDLE)
        self._set_state(SessionState.awaiting_capture(CaptureMode.ENROLL))

    async def submit_enrollment_image(self, image: np.ndarray) -> Optional[AttemptOutcome]:
        """
        Embed an image and store it as the enrolled template.

        The store is only written when an embedding was produced, so a
        failed enrollment never leaves a partial template behind.

        Returns:
            The terminal outcome, or None if reset() discarded the attempt.

        Raises:
            AttemptInProgress: If an attempt is already processing.
            InvalidTransition: If the session is not awaiting an enrollment capture.
            Exception: Whatever the store backend raises on save. The attempt
                is abandoned and the session returns to IDLE.
        """
        generation = self._start_processing(CaptureMode.ENROLL, "submit an enrollment image")

        embedding, failure = await self._run_provider(image, generation)
        if self._is_stale(generation):
            return None
        if failure is not None:
            return self._terminate(failure)

        try:
            self.store.save(embedding)
        except Exception:
            self._abandon("template store failed to save the enrollment")
            raise
        return self._terminate(AttemptOutcome.enrolled())

    def begin_verification(self) -> Optional[AttemptOutcome]:
        """
        Arm the session for a verification capture.

        With nothing enrolled the session goes straight to TERMINAL(NO_TEMPLATE)
        without touching the embedding provider.

        Returns:
            The NO_TEMPLATE outcome when failing fast, otherwise None.

        Raises:
            InvalidTransition: If the session is not IDLE.
        """
        self._require_phase("begin verification", Phase.IDLE)

        if not self.store.exists():
            return self._terminate(AttemptOutcome.no_template())

        self._set_state(SessionState.awaiting_capture(CaptureMode.VERIFY))
        return None

    async def submit_verification_image(self, image: np.ndarray) -> Optional[AttemptOutcome]:
        """
        Embed an image and compare it with the enrolled template.

        Returns:
            The terminal outcome, or None if reset() discarded the attempt.

        Raises:
            AttemptInProgress: If an attempt is already processing.
            InvalidTransition: If the session is not awaiting a verification capture.
            DimensionMismatch: If the provider's embeddings don't fit the
                template. The attempt is abandoned and the session returns to IDLE.
            Exception: Whatever the store backend raises on load, handled the
                same way.
        """
        generation = self._start_processing(CaptureMode.VERIFY, "submit a verification image")

        fresh, failure = await self._run_provider(image, generation)
        if self._is_stale(generation):
            return None
        if failure is not None:
            return self._terminate(failure)

        try:
            stored = self.store.load()
        except NoTemplate:
            return self._terminate(AttemptOutcome.no_template())
        except Exception:
            self._abandon("template store failed to load the enrollment")
            raise

        try:
            result = self.matcher.compare(stored, fresh)
        except DimensionMismatch:
            self._abandon("provider incompatible with template")
            raise

        self.last_match = result
        if result.is_match:
            outcome = AttemptOutcome.verified(result.distance)
        else:
            outcome = AttemptOutcome.denied(result.distance)
        return self._terminate(outcome)

    def clear_enrollment(self) -> None:
        """
        Delete the enrolled template. The session state is unchanged.

        Raises:
            InvalidTransition: If an attempt is awaiting capture or processing.
        """
        self._require_phase("clear enrollment", Phase.IDLE, Phase.TERMINAL)
        self.store.clear()

    def reset(self) -> None:
        """Return to IDLE from any state, discarding any in-flight attempt."""
        self._generation += 1
        self.last_match = None
        if self._state.phase is not Phase.IDLE:
            self._set_state(SessionState.idle())

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _require_phase(self, operation: str, *phases: Phase) -> None:
        if self._state.phase not in phases:
            raise InvalidTransition(operation, self._state)

    def _start_processing(self, mode: CaptureMode, operation: str) -> int:
        if self._state.phase is Phase.PROCESSING:
            raise AttemptInProgress()
        if self._state != SessionState.awaiting_capture(mode):
            raise InvalidTransition(operation, self._state)

        self._set_state(SessionState.processing(mode))
        return self._generation

    def _is_stale(self, generation: int) -> bool:
        if generation != self._generation:
            logger.info("Discarding provider result for an attempt that was reset")
            return True
        return False

    async def _run_provider(
        self, image: np.ndarray, generation: int
    ) -> Tuple[Optional[np.ndarray], Optional[AttemptOutcome]]:
        """
        Run the embedding provider off the event loop.

        Returns:
            (embedding, None) on success, (None, failure outcome) otherwise.
        """
        try:
            raw = await asyncio.to_thread(self.provider.extract, image)
        except NoFaceDetected:
            return None, AttemptOutcome.no_face_detected()
        except ProviderUnavailable as e:
            logger.warning(f"Embedding provider unavailable: {e.reason}")
            return None, AttemptOutcome.provider_failure(e.reason)
        except asyncio.CancelledError:
            # The awaiting host task went away; don't leave the session stuck
            if generation == self._generation:
                self._generation += 1
                self._set_state(SessionState.idle())
            raise
        except Exception as e:
            logger.error(f"Embedding provider raised {type(e).__name__}: {e}", exc_info=True)
            return None, AttemptOutcome.provider_failure(f"{type(e).__name__}: {e}")

        try:
            return as_embedding(raw), None
        except ValueError as e:
            logger.error(f"Embedding provider returned an invalid embedding: {e}")
            return None, AttemptOutcome.provider_failure(f"invalid embedding: {e}")

    def _abandon(self, reason: str) -> None:
        """Drop the current attempt without an outcome; the caller re-raises."""
        logger.error(f"Abandoning attempt: {reason}", exc_info=True)
        self.last_match = None
        self._set_state(SessionState.idle())

    def _terminate(self, outcome: AttemptOutcome) -> AttemptOutcome:
        logger.info(f"Attempt finished: {outcome}")
        self._set_state(SessionState.terminal(outcome))

        for listener in list(self._outcome_listeners):
            try:
                listener(outcome)
            except Exception:
                logger.exception("Outcome listener failed")
        return outcome

    def _set_state(self, state: SessionState) -> None:
        logger.debug(f"Session {self._state} -> {state}")
        self._state = state

        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed")


def create_session(
    provider: Optional[EmbeddingProvider] = None,
    store: Optional[TemplateStore] = None,
) -> VerificationSession:
    """
    Build a session from configuration.

    Args:
        provider: Embedding provider; defaults to a FaceEmbedder built from
                  the "embedding" config section.
        store: Template store; defaults to the shared get_template_store().

    Returns:
        A new VerificationSession in the IDLE state.
    """
    from face_login.config import get_embedding_config, get_matching_config
    from face_login.face_embedder import FaceEmbedder
    from face_login.template_store import get_template_store

    if provider is None:
        provider = FaceEmbedder(get_embedding_config())
    if store is None:
        store = get_template_store()

    matcher = EuclideanMatcher(get_matching_config())
    logger.info(f"Session created (threshold={matcher.threshold})")
    return VerificationSession(provider, store, matcher)


# Singleton session for hosts that serve one user per process
_session_instance: Optional[VerificationSession] = None


def get_session() -> VerificationSession:
    """Get or create the process-wide VerificationSession."""
    global _session_instance

    if _session_instance is None:
        _session_instance = create_session()

    return _session_instance
