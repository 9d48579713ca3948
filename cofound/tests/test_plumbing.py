"""Config, db session helpers, utilities and MCP tool wiring."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy.orm import Session, sessionmaker

import cofound.db as db_mod
from cofound.config import Settings, get_settings
from cofound.models import Profile
from cofound.utils import current_month, isoformat, json_parse


class TestUtils:
    def test_json_parse(self):
        assert json_parse('["a"]') == ["a"]
        assert json_parse("not json") == {}
        assert json_parse(None, []) == []

    def test_current_month(self):
        assert current_month(datetime(2026, 3, 9, tzinfo=UTC)) == "2026-03"

    def test_isoformat(self):
        assert isoformat(None) is None
        assert isoformat(datetime(2026, 1, 2)) == "2026-01-02T00:00:00"


class TestSettings:
    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("COFOUND_HOME", str(tmp_path))
        monkeypatch.setenv("COFOUND_AUTH_URL", "https://auth.example.com/")
        monkeypatch.setenv("COFOUND_PORT", "9100")
        monkeypatch.setenv("COFOUND_SESSION_TTL", "120")
        monkeypatch.delenv("COFOUND_DATABASE_URL", raising=False)
        settings = Settings()
        assert settings.data_dir == tmp_path.resolve() / "data"
        assert settings.database_url == f"sqlite:///{tmp_path.resolve() / 'data' / 'cofound.db'}"
        assert settings.auth_url == "https://auth.example.com"
        assert settings.port == 9100
        assert settings.session_ttl_seconds == 120
        assert settings.auth_mode == "provider"

    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv("COFOUND_DATABASE_URL", "sqlite:///:memory:")
        assert Settings().database_url == "sqlite:///:memory:"

    def test_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()


class TestSessionManagement:
    def _wire(self, engine):
        db_mod._engine = engine
        db_mod._SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def test_session_scope(self, engine):
        orig = (db_mod._engine, db_mod._SessionLocal)
        try:
            self._wire(engine)
            with db_mod.session_scope() as sess:
                assert isinstance(sess, Session)
                sess.add(Profile(id="scope", name="Scope"))
                sess.commit()
            with db_mod.session_scope() as sess:
                assert sess.get(Profile, "scope") is not None
        finally:
            db_mod._engine, db_mod._SessionLocal = orig

    def test_session_scope_rollback(self, engine):
        orig = (db_mod._engine, db_mod._SessionLocal)
        try:
            self._wire(engine)
            with pytest.raises(ValueError):
                with db_mod.session_scope() as sess:
                    sess.add(Profile(id="doomed", name="Doomed"))
                    sess.flush()
                    raise ValueError("boom")
            with db_mod.session_scope() as sess:
                assert sess.get(Profile, "doomed") is None
        finally:
            db_mod._engine, db_mod._SessionLocal = orig

    def test_uninitialized(self):
        orig = db_mod._SessionLocal
        try:
            db_mod._SessionLocal = None
            with pytest.raises(RuntimeError, match="init_db"):
                db_mod.get_session()
        finally:
            db_mod._SessionLocal = orig


class TestMCPTools:
    @pytest.fixture()
    def wired(self, engine):
        orig = (db_mod._engine, db_mod._SessionLocal)
        db_mod._engine = engine
        db_mod._SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        yield
        db_mod._engine, db_mod._SessionLocal = orig

    def test_import_mcp_server(self):
        from cofound.mcp_server import mcp
        assert mcp is not None

    def test_profile_tool(self, wired, founder):
        from cofound.mcp_server import get_profile
        detail = get_profile(founder.id)
        assert detail["completion"]["percentage"] == 33
        assert get_profile("missing") == {"error": "Profile missing not found"}

    def test_round_and_portfolio_tools(self, wired, open_round, investor):
        from cofound.mcp_server import get_investor_portfolio, list_open_rounds
        assert [r["id"] for r in list_open_rounds(category="Health")] == [open_round.id]
        assert list_open_rounds(min_amount=900000) == []
        assert get_investor_portfolio(investor.id)["total_invested"] == 0
        assert "error" in get_investor_portfolio("nobody")

    def test_project_and_positions_tools(self, wired, position):
        from cofound.mcp_server import get_project, list_open_positions
        assert list_open_positions()[0]["project"]["title"] == "ClinicFlow"
        assert get_project(position.project_id)["positions"][0]["title"] == "CTO"

    def test_mrr_tool(self, wired, founder, project):
        from cofound.mcp_server import get_mrr_summary
        summary = get_mrr_summary(founder.id)
        assert summary["total_mrr"] == 0
        assert summary["projects"][0]["project_title"] == "ClinicFlow"
