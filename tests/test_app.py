"""
Tests for application startup
"""
from fastapi.testclient import TestClient

from chatnotes import main
from chatnotes.core.config import settings


class TestLifespan:
    """Table creation on startup"""

    def test_creates_tables_when_enabled(self, monkeypatch):
        calls = []
        monkeypatch.setattr(settings, "AUTO_CREATE_TABLES", True)
        monkeypatch.setattr(main.models.Base.metadata, "create_all", lambda bind: calls.append(bind))

        with TestClient(main.app):
            pass

        assert calls == [main.engine]

    def test_skips_tables_when_disabled(self, monkeypatch):
        calls = []
        monkeypatch.setattr(settings, "AUTO_CREATE_TABLES", False)
        monkeypatch.setattr(main.models.Base.metadata, "create_all", lambda bind: calls.append(bind))

        with TestClient(main.app):
            pass

        assert calls == []
