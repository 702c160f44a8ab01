"""
Pydantic Schemas for API Request/Response Models

This module defines the data models used for communication between a
front end (camera page, kiosk, CLI over HTTP) and the face login session.

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts
"""

from typing import Optional

from pydantic import BaseModel, Field

from face_login.session import AttemptOutcome, SessionState


# ============================================================
# Request Schemas
# ============================================================

class FrameRequest(BaseModel):
    """A single captured still image."""
    frame: str = Field(
        ...,
        description="Base64-encoded JPEG/PNG image. A data URL prefix is accepted."
    )


# ============================================================
# Session Schemas
# ============================================================

class OutcomeInfo(BaseModel):
    """Terminal outcome of an attempt."""
    kind: str = Field(..., description="enrolled, verified, denied, no_face_detected, "
                                       "no_template or provider_failure")
    distance: Optional[float] = Field(None, description="Embedding distance (verified/denied only)")
    reason: Optional[str] = Field(None, description="Failure reason (provider_failure only)")
    is_decision: bool = Field(
        ...,
        description="True only for verified/denied. Other outcomes neither grant nor deny access."
    )

    @classmethod
    def from_outcome(cls, outcome: AttemptOutcome) -> "OutcomeInfo":
        return cls(
            kind=outcome.kind.value,
            distance=outcome.distance,
            reason=outcome.reason,
            is_decision=outcome.is_decision,
        )


class SessionStateResponse(BaseModel):
    """Current session state."""
    phase: str = Field(..., description="idle, awaiting_capture, processing or terminal")
    mode: Optional[str] = Field(None, description="enroll or verify while a capture is pending")
    outcome: Optional[OutcomeInfo] = Field(None, description="Outcome when phase is terminal")
    enrolled: bool = Field(..., description="Whether a face template is stored")

    @classmethod
    def from_state(cls, state: SessionState, enrolled: bool) -> "SessionStateResponse":
        return cls(
            phase=state.phase.value,
            mode=state.mode.value if state.mode is not None else None,
            outcome=OutcomeInfo.from_outcome(state.outcome) if state.outcome is not None else None,
            enrolled=enrolled,
        )


class AttemptResponse(BaseModel):
    """Result of submitting a capture."""
    outcome: Optional[OutcomeInfo] = Field(
        None,
        description="Terminal outcome, null if the attempt was discarded by a reset"
    )
    discarded: bool = Field(False, description="True if the session was reset mid-attempt")
    confidence_score: Optional[float] = Field(
        None,
        description="1 - distance, for display only (unbounded, never used for decisions)"
    )
    threshold: Optional[float] = Field(None, description="Distance threshold used for the decision")
    state: SessionStateResponse


class ClearEnrollmentResponse(BaseModel):
    """Response from clearing the enrolled template."""
    cleared: bool = Field(..., description="Whether the template was removed")
    message: str = Field(..., description="Status message")


# ============================================================
# Error / Health Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Error returned for usage or configuration errors."""
    detail: str = Field(..., description="Error message")
    code: str = Field(..., description="Machine-readable error code")


class HealthResponse(BaseModel):
    """System health check response."""
    model_config = {"protected_namespaces": ()}  # Allow 'model_' prefix in field names

    status: str = Field(..., description="Overall status: 'healthy' or 'degraded'")
    backend: Optional[str] = Field(None, description="Embedding backend in use")
    model_loaded: bool = Field(..., description="Whether the embedding model is loaded")
    enrolled: bool = Field(..., description="Whether a face template is stored")
    threshold: float = Field(..., description="Distance threshold for verification")
