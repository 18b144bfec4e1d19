"""Tests for environment-driven configuration."""
import importlib

from embedding_server import config


def test_nested_data_dir_is_created(monkeypatch, tmp_path):
    """Test that a DATA_DIR with missing parents is created on import."""
    data_dir = tmp_path / "missing" / "parents" / "data"
    monkeypatch.setenv("DATA_DIR", str(data_dir))

    try:
        importlib.reload(config)
        assert config.DATA_DIR == data_dir
        assert data_dir.is_dir()
        assert config.DB_PATH == str(data_dir / "embeddings.sqlite")
    finally:
        monkeypatch.undo()
        importlib.reload(config)
