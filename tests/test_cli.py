"""
Tests for the command-line host (scripts/run_face_login.py).

Run with: pytest tests/test_cli.py -v
"""

import importlib.util
import sys
from pathlib import Path
from unittest.mock import patch

import cv2
import numpy as np
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from face_login.face_embedder import StubEmbeddingProvider
from face_login.session import VerificationSession
from face_login.template_store import InMemoryKeyValueStore, TemplateStore


def load_cli():
    spec = importlib.util.spec_from_file_location(
        "run_face_login", PROJECT_ROOT / "scripts" / "run_face_login.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


cli = load_cli()


@pytest.fixture
def image_path(tmp_path):
    path = tmp_path / "face.png"
    cv2.imwrite(str(path), np.zeros((16, 16, 3), dtype=np.uint8))
    return str(path)


@pytest.fixture
def provider():
    return StubEmbeddingProvider()


@pytest.fixture
def store():
    return TemplateStore(InMemoryKeyValueStore())


@pytest.fixture
def run(provider, store):
    """Run the CLI against a fresh session sharing one store."""
    def _run(*argv):
        session = VerificationSession(provider, store)
        with patch.object(cli, "create_session", return_value=session):
            return cli.main(list(argv))
    return _run


class TestCommands:
    """Tests for each subcommand."""

    def test_enroll_then_verify(self, run, provider, store, image_path, capsys):
        provider.push([1.0, 0.0])
        assert run("enroll", image_path) == cli.EXIT_OK
        assert store.load().tolist() == [1.0, 0.0]

        provider.push([1.0, 0.0])
        assert run("verify", image_path) == cli.EXIT_OK
        assert "VERIFICATION SUCCESSFUL" in capsys.readouterr().out

    def test_verify_denied(self, run, provider, store, image_path, capsys):
        store.save([1.0, 0.0])
        provider.push([5.0, 0.0])

        assert run("verify", image_path) == cli.EXIT_DENIED
        out = capsys.readouterr().out
        assert "VERIFICATION FAILED" in out
        assert "distance: 4.000" in out

    def test_verify_without_enrollment(self, run, provider, image_path):
        assert run("verify", image_path) == cli.EXIT_NO_DECISION
        assert provider.calls == 0

    def test_enroll_no_face(self, run, store, image_path):
        assert run("enroll", image_path) == cli.EXIT_NO_DECISION
        assert store.exists() is False

    def test_unreadable_image(self, run, provider, tmp_path):
        missing = str(tmp_path / "missing.jpg")
        assert run("enroll", missing) == cli.EXIT_NO_DECISION
        assert provider.calls == 0

    def test_clear(self, run, store):
        store.save([1.0])
        assert run("clear") == cli.EXIT_OK
        assert store.exists() is False

    def test_status(self, run, store, capsys):
        assert run("status") == cli.EXIT_OK
        assert "No face enrolled" in capsys.readouterr().out

        store.save([1.0, 0.0, 0.0])
        assert run("status") == cli.EXIT_OK
        assert "3-d embedding" in capsys.readouterr().out

    def test_status_corrupt_record(self, run, store, capsys):
        store.backend.set(store.key, "{not json")

        assert run("status") == cli.EXIT_NO_DECISION
        assert "unreadable" in capsys.readouterr().out

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.main([])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
