"""
Session API Routes

REST endpoints that drive the face login session, plus a WebSocket that
streams state changes and outcomes to an observing front end.

Flow for a front end:
    POST /session/enrollment          -> awaiting_capture(enroll)
    POST /session/enrollment/image    -> terminal(enrolled | no_face_detected | ...)
    POST /session/reset               -> idle
    POST /session/verification        -> awaiting_capture(verify) or terminal(no_template)
    POST /session/verification/image  -> terminal(verified | denied | ...)
"""

import asyncio
import base64
import binascii
import logging
from typing import Optional

import cv2
import numpy as np
from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from api.schemas import (
    AttemptResponse,
    ClearEnrollmentResponse,
    FrameRequest,
    OutcomeInfo,
    SessionStateResponse,
)
from face_login.session import AttemptOutcome, SessionState, VerificationSession, get_session

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["session"])


def decode_frame(frame_b64: str) -> Optional[np.ndarray]:
    """
    Decode a base64-encoded image to a BGR numpy array.

    Args:
        frame_b64: Base64 string, optionally prefixed with a data URL header
                   ("data:image/jpeg;base64,...").

    Returns:
        BGR numpy array or None if decoding fails.
    """
    if "," in frame_b64 and frame_b64.lstrip().startswith("data:"):
        frame_b64 = frame_b64.split(",", 1)[1]

    try:
        img_bytes = base64.b64decode(frame_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Failed to decode frame: {e}")
        return None

    if not img_bytes:
        return None

    np_arr = np.frombuffer(img_bytes, np.uint8)
    return cv2.imdecode(np_arr, cv2.IMREAD_COLOR)


def _decode_or_400(request: FrameRequest) -> np.ndarray:
    frame = decode_frame(request.frame)
    if frame is None:
        raise HTTPException(status_code=400, detail="Failed to decode frame")
    return frame


def _state_response(session: VerificationSession) -> SessionStateResponse:
    return SessionStateResponse.from_state(session.state, session.store.exists())


def _attempt_response(
    session: VerificationSession, outcome: Optional[AttemptOutcome]
) -> AttemptResponse:
    response = AttemptResponse(
        outcome=OutcomeInfo.from_outcome(outcome) if outcome is not None else None,
        discarded=outcome is None,
        state=_state_response(session),
    )
    if outcome is not None and outcome.is_decision and session.last_match is not None:
        response.confidence_score = session.last_match.confidence_score
        response.threshold = session.last_match.threshold
    return response


@router.get("/session", response_model=SessionStateResponse)
async def get_session_state():
    """Return the current session state and whether a face is enrolled."""
    return _state_response(get_session())


@router.post("/session/enrollment", response_model=SessionStateResponse)
async def begin_enrollment():
    """Arm the session for an enrollment capture (requires idle)."""
    session = get_session()
    session.begin_enrollment()
    return _state_response(session)


@router.post("/session/enrollment/image", response_model=AttemptResponse)
async def submit_enrollment_image(request: FrameRequest):
    """
    Submit the enrollment capture.

    The face in the image becomes the enrolled template, replacing any
    previous one. If no face is found the stored template is untouched.
    """
    session = get_session()
    frame = _decode_or_400(request)
    outcome = await session.submit_enrollment_image(frame)
    return _attempt_response(session, outcome)


@router.post("/session/verification", response_model=SessionStateResponse)
async def begin_verification():
    """
    Arm the session for a verification capture (requires idle).

    With nothing enrolled the session immediately becomes terminal(no_template).
    """
    session = get_session()
    session.begin_verification()
    return _state_response(session)


@router.post("/session/verification/image", response_model=AttemptResponse)
async def submit_verification_image(request: FrameRequest):
    """
    Submit the verification capture and compare it with the enrolled face.

    Only verified/denied outcomes are authentication decisions.
    """
    session = get_session()
    frame = _decode_or_400(request)
    outcome = await session.submit_verification_image(frame)
    return _attempt_response(session, outcome)


@router.post("/session/reset", response_model=SessionStateResponse)
async def reset_session():
    """Return the session to idle, discarding any in-flight attempt."""
    session = get_session()
    session.reset()
    return _state_response(session)


@router.delete("/enrollment", response_model=ClearEnrollmentResponse)
async def clear_enrollment():
    """Delete the enrolled face template."""
    session = get_session()
    session.clear_enrollment()
    return ClearEnrollmentResponse(
        cleared=not session.store.exists(),
        message="Registration cleared. You can register a new face.",
    )


@router.websocket("/ws/session")
async def session_events(websocket: WebSocket):
    """
    Stream session events.

    Messages sent to the client:
        {"type": "state", "state": {...SessionStateResponse...}}
        {"type": "outcome", "outcome": {...OutcomeInfo...}}

    The current state is sent immediately after connecting. Messages from
    the client are ignored.
    """
    await websocket.accept()

    session = get_session()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # Session callbacks may fire on another loop's thread (e.g. test clients)
    def on_state(state: SessionState) -> None:
        message = {
            "type": "state",
            "state": SessionStateResponse.from_state(state, session.store.exists()).model_dump(),
        }
        loop.call_soon_threadsafe(queue.put_nowait, message)

    def on_outcome(outcome: AttemptOutcome) -> None:
        message = {"type": "outcome", "outcome": OutcomeInfo.from_outcome(outcome).model_dump()}
        loop.call_soon_threadsafe(queue.put_nowait, message)

    unsubscribe_state = session.subscribe_states(on_state)
    unsubscribe_outcome = session.subscribe_outcomes(on_outcome)

    async def forward() -> None:
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    await websocket.send_json({"type": "state", "state": _state_response(session).model_dump()})
    sender = asyncio.create_task(forward())

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Session event subscriber disconnected")
    finally:
        unsubscribe_state()
        unsubscribe_outcome()
        sender.cancel()
