"""
Tests for the TemplateStore module.

This test suite verifies:
- Save/load roundtrip is exact
- Save replaces, clear removes
- SQLite persistence across store instances
- Legacy and corrupt record handling
- Store construction from configuration

Run with: pytest tests/test_template_store.py -v
"""

import json
import os
import shutil
import sys
import tempfile

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from face_login.errors import NoTemplate
from face_login.template_store import (
    InMemoryKeyValueStore,
    SqliteKeyValueStore,
    TemplateStore,
    create_template_store,
)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    path = tempfile.mkdtemp(prefix="template_store_test_")
    yield path
    shutil.rmtree(path)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, temp_dir):
    """A TemplateStore over each backend."""
    if request.param == "memory":
        backend = InMemoryKeyValueStore()
    else:
        backend = SqliteKeyValueStore(os.path.join(temp_dir, "test.sqlite"))
    s = TemplateStore(backend)
    yield s
    s.close()


@pytest.fixture
def sample_embedding():
    """A 128-d embedding with full-precision float64 values."""
    return np.random.default_rng(7).normal(0, 0.1, 128)


class TestTemplateStore:
    """Tests for the TemplateStore class."""

    def test_empty_store(self, store):
        assert store.exists() is False
        with pytest.raises(NoTemplate):
            store.load()

    def test_save_and_load_exact(self, store, sample_embedding):
        """Values come back bit-for-bit identical."""
        store.save(sample_embedding)

        loaded = store.load()
        assert store.exists() is True
        assert loaded.dtype == np.float64
        assert np.array_equal(loaded, sample_embedding)

    def test_roundtrip_awkward_floats(self, store):
        values = [0.1, 1 / 3, -2.5e-310, 1e300, 0.55, -0.0]
        store.save(values)
        assert store.load().tolist() == values

    def test_loaded_embedding_is_read_only(self, store, sample_embedding):
        store.save(sample_embedding)
        loaded = store.load()

        with pytest.raises(ValueError):
            loaded[0] = 1.0

    def test_save_replaces(self, store):
        store.save([1.0, 0.0])
        store.save([0.0, 1.0, 2.0])

        assert store.load().tolist() == [0.0, 1.0, 2.0]

    def test_clear(self, store, sample_embedding):
        store.save(sample_embedding)
        store.clear()

        assert store.exists() is False
        with pytest.raises(NoTemplate):
            store.load()

    def test_clear_empty_store_is_noop(self, store):
        store.clear()
        assert store.exists() is False

    def test_load_record_metadata(self, store):
        store.save([1.0, 0.0])
        record = store.load_record()

        assert record.dim == 2
        assert record.enrolled_at is not None

    def test_save_rejects_invalid_embedding(self, store):
        with pytest.raises(ValueError):
            store.save([])
        with pytest.raises(ValueError):
            store.save([1.0, float("nan")])
        assert store.exists() is False


class TestStoredFormat:
    """Tests for the persisted record format."""

    @pytest.fixture
    def backend(self):
        return InMemoryKeyValueStore()

    def test_record_is_json(self, backend):
        TemplateStore(backend).save([1.0, 0.0])

        record = json.loads(backend.get("face_descriptor"))
        assert record["descriptor"] == [1.0, 0.0]
        assert record["dim"] == 2
        assert "enrolled_at" in record

    def test_custom_key(self, backend):
        TemplateStore(backend, key="other").save([1.0])
        assert backend.get("other") is not None
        assert backend.get("face_descriptor") is None

    def test_legacy_bare_array(self, backend):
        """A plain JSON array of floats is read as the descriptor."""
        backend.set("face_descriptor", json.dumps([0.25, -0.5]))
        store = TemplateStore(backend)

        assert store.load().tolist() == [0.25, -0.5]
        assert store.load_record().enrolled_at is None

    def test_corrupt_record_is_no_template(self, backend):
        backend.set("face_descriptor", "{not json")
        with pytest.raises(NoTemplate):
            TemplateStore(backend).load()

    def test_dim_disagreement_is_no_template(self, backend):
        backend.set("face_descriptor", json.dumps({"descriptor": [1.0, 2.0], "dim": 3}))
        with pytest.raises(NoTemplate):
            TemplateStore(backend).load()


class TestSqlitePersistence:
    """Tests specific to the SQLite backend."""

    def test_init_creates_database(self, temp_dir):
        db_path = os.path.join(temp_dir, "nested", "db.sqlite")
        backend = SqliteKeyValueStore(db_path)

        assert os.path.exists(db_path)
        backend.close()

    def test_persists_across_instances(self, temp_dir, sample_embedding):
        db_path = os.path.join(temp_dir, "db.sqlite")

        first = TemplateStore(SqliteKeyValueStore(db_path))
        first.save(sample_embedding)
        first.close()

        second = TemplateStore(SqliteKeyValueStore(db_path))
        assert np.array_equal(second.load(), sample_embedding)
        second.close()

    def test_upsert_keeps_single_row(self, temp_dir):
        backend = SqliteKeyValueStore(os.path.join(temp_dir, "db.sqlite"))
        backend.set("k", "a")
        backend.set("k", "b")

        rows = backend._get_connection().execute("SELECT COUNT(*) FROM kv").fetchone()[0]
        assert rows == 1
        assert backend.get("k") == "b"
        backend.close()


class TestCreateTemplateStore:
    """Tests for building stores from configuration."""

    def test_memory_backend(self):
        store = create_template_store({"backend": "memory", "key": "k"})
        assert isinstance(store.backend, InMemoryKeyValueStore)
        assert store.key == "k"

    def test_sqlite_backend(self, temp_dir):
        db_path = os.path.join(temp_dir, "cfg.sqlite")
        store = create_template_store({"backend": "sqlite", "db_path": db_path})

        assert isinstance(store.backend, SqliteKeyValueStore)
        assert os.path.exists(db_path)
        store.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_template_store({"backend": "redis"})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
