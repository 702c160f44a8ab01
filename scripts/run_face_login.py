"""
Command-Line Face Login

Enroll a face from an image file, verify another image against it, clear
the enrollment, or show whether a face is enrolled. Uses the template store
and embedding backend from config.yaml.

Usage:
    python scripts/run_face_login.py enroll path/to/me.jpg
    python scripts/run_face_login.py verify path/to/probe.jpg
    python scripts/run_face_login.py clear
    python scripts/run_face_login.py status

    # Alternate config file
    python scripts/run_face_login.py --config my_config.yaml verify probe.jpg

Exit codes:
    0  enrolled / verified / command succeeded
    1  denied
    2  no decision (no face, no template, provider failure, unreadable image)
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import cv2

PROJECT_ROOT = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(PROJECT_ROOT))

from face_login.config import CONFIG_ENV_VAR, get_config
from face_login.errors import NoTemplate
from face_login.session import AttemptOutcome, OutcomeKind, VerificationSession, create_session

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DENIED = 1
EXIT_NO_DECISION = 2

MESSAGES = {
    OutcomeKind.ENROLLED: "REGISTRATION SUCCESSFUL: face captured and stored.",
    OutcomeKind.VERIFIED: "VERIFICATION SUCCESSFUL",
    OutcomeKind.DENIED: "VERIFICATION FAILED",
    OutcomeKind.NO_FACE_DETECTED: "No face detected. Ensure good lighting and look at the camera.",
    OutcomeKind.NO_TEMPLATE: "No registered face found. Please register first.",
    OutcomeKind.PROVIDER_FAILURE: "Face recognition model unavailable",
}


def print_banner(text: str, char: str = "="):
    line = char * 60
    print(f"\n{line}")
    print(text)
    print(line)


def report(outcome: Optional[AttemptOutcome]) -> int:
    """Print an outcome and map it to an exit code."""
    if outcome is None:
        print("Attempt was discarded.")
        return EXIT_NO_DECISION

    message = MESSAGES[outcome.kind]
    if outcome.distance is not None:
        print(f"{message} (distance: {outcome.distance:.3f}, "
              f"confidence: {1.0 - outcome.distance:.3f})")
    elif outcome.reason is not None:
        print(f"{message}: {outcome.reason}")
    else:
        print(message)

    if outcome.kind in (OutcomeKind.ENROLLED, OutcomeKind.VERIFIED):
        return EXIT_OK
    if outcome.kind is OutcomeKind.DENIED:
        return EXIT_DENIED
    return EXIT_NO_DECISION


def read_image(path: str):
    image = cv2.imread(path, cv2.IMREAD_COLOR)
    if image is None:
        print(f"ERROR: Cannot read image: {path}")
    return image


async def enroll(session: VerificationSession, image_path: str) -> int:
    image = read_image(image_path)
    if image is None:
        return EXIT_NO_DECISION

    session.begin_enrollment()
    return report(await session.submit_enrollment_image(image))


async def verify(session: VerificationSession, image_path: str) -> int:
    outcome = session.begin_verification()
    if outcome is not None:
        return report(outcome)

    image = read_image(image_path)
    if image is None:
        session.reset()
        return EXIT_NO_DECISION

    return report(await session.submit_verification_image(image))


def clear(session: VerificationSession) -> int:
    session.clear_enrollment()
    print("Registration cleared. You can register a new face.")
    return EXIT_OK


def status(session: VerificationSession) -> int:
    if not session.store.exists():
        print("No face enrolled.")
        return EXIT_OK

    try:
        record = session.store.load_record()
    except NoTemplate as e:
        print(f"{e}. Run 'clear' and register again.")
        return EXIT_NO_DECISION

    print(f"Face enrolled ({record.dim}-d embedding, enrolled at {record.enrolled_at or 'unknown'})")
    print(f"Threshold: {getattr(session.matcher, 'threshold', 'n/a')}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Single-profile face login from image files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to a config.yaml (default: project config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    enroll_parser = subparsers.add_parser("enroll", help="Register the face in an image")
    enroll_parser.add_argument("image", type=str, help="Image file containing one face")

    verify_parser = subparsers.add_parser("verify", help="Verify the face in an image")
    verify_parser.add_argument("image", type=str, help="Image file containing one face")

    subparsers.add_parser("clear", help="Delete the registered face")
    subparsers.add_parser("status", help="Show whether a face is registered")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.config:
        os.environ[CONFIG_ENV_VAR] = args.config

    level = "DEBUG" if args.verbose else get_config(reload=bool(args.config))["logging"]["level"]
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    session = create_session()

    try:
        if args.command == "enroll":
            print_banner("ENROLLMENT")
            return asyncio.run(enroll(session, args.image))
        if args.command == "verify":
            print_banner("VERIFICATION")
            return asyncio.run(verify(session, args.image))
        if args.command == "clear":
            return clear(session)
        return status(session)
    finally:
        session.store.close()


if __name__ == "__main__":
    sys.exit(main())
