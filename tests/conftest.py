import pytest

from durastep.persistence import reset_store


@pytest.fixture(autouse=True)
def _isolate_store(monkeypatch, tmp_path):
    """Keep cached stores and ambient config out of individual tests."""
    monkeypatch.delenv("DURASTEP_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DURASTEP_CONFIG", str(tmp_path / "missing.yaml"))
    reset_store()
    yield
    reset_store()
