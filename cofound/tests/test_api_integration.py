"""Integration tests for the FastAPI endpoints.

Uses TestClient with an in-memory database and header-based identity.
"""
from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import openpyxl
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cofound.config import get_settings
from cofound.models import Base, InvestmentRound, Position, Profile, Project, ProjectMember


@pytest.fixture()
def test_db():
    """Create a temporary SQLite in-memory database for testing.

    Uses StaticPool so all connections share the same in-memory database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, TestSession


@pytest.fixture()
def client(test_db, tmp_path, monkeypatch):
    """FastAPI TestClient using in-memory database and X-User-Id identity."""
    engine, TestSession = test_db
    monkeypatch.setenv("COFOUND_HOME", str(tmp_path))
    monkeypatch.setenv("COFOUND_AUTH_MODE", "header")
    monkeypatch.delenv("COFOUND_STRIPE_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("COFOUND_DATABASE_URL", raising=False)
    get_settings.cache_clear()
    from cofound.app import app, db_session

    def override_db_session():
        session = TestSession()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c, TestSession
    app.dependency_overrides.clear()
    get_settings.cache_clear()


@pytest.fixture()
def seeded_client(client):
    """Client with a founder, a candidate, an investor, a project and an open position."""
    c, TestSession = client
    session = TestSession()
    session.add_all([
        Profile(id="founder", email="f@x.io", name="Fay Founder", bio="Serial founder in logistics",
                user_type="founder"),
        Profile(id="cand", email="c@x.io", name="Cal Candidate", user_type="founder"),
        Profile(id="inv", email="i@x.io", name="Ivy Investor", user_type="investor"),
        Project(id="proj", owner_id="founder", title="Routely", description="Route planning",
                category="Logistics"),
        Position(id="pos", project_id="proj", title="CTO", description="Build it",
                 requirements="Python", status="open"),
        InvestmentRound(id="rnd", project_id="proj", round_name="Pre-seed", amount_seeking=500000,
                        amount_raised=125000, valuation=4000000, equity_offered=12.5,
                        min_investment=10000, max_investment=100000, status="open",
                        deadline=datetime.now(UTC) + timedelta(days=14)),
    ])
    session.commit()
    session.close()
    return c, TestSession


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


class TestAuth:
    def test_missing_identity(self, seeded_client):
        c, _ = seeded_client
        resp = c.get("/api/me")
        assert resp.status_code == 401

    def test_me(self, seeded_client):
        c, _ = seeded_client
        resp = c.get("/api/me", headers=_as("founder"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["user_id"] == "founder"
        assert data["profile"]["name"] == "Fay Founder"
        assert "completion" in data["profile"]


class TestProfileEndpoints:
    def test_get_profile_detail(self, seeded_client):
        c, _ = seeded_client
        resp = c.get("/api/profiles/founder")
        assert resp.status_code == 200
        data = resp.json()
        assert data["completion"]["percentage"] == 22
        assert data["availability_label"] == "Not set"

    def test_get_profile_404(self, seeded_client):
        c, _ = seeded_client
        resp = c.get("/api/profiles/nobody")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Profile not found"

    def test_update_own_profile(self, seeded_client):
        c, _ = seeded_client
        resp = c.put("/api/profiles/cand", headers=_as("cand"), json={
            "location": "Lisbon", "availability_status": "looking_for_projects",
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["location"] == "Lisbon"
        assert data["availability_label"] == "Looking for projects"

    def test_update_other_profile_forbidden(self, seeded_client):
        c, _ = seeded_client
        resp = c.put("/api/profiles/founder", headers=_as("cand"), json={"location": "Lisbon"})
        assert resp.status_code == 403

    def test_invalid_social_link(self, seeded_client):
        c, _ = seeded_client
        resp = c.put("/api/profiles/cand", headers=_as("cand"), json={
            "social_links": {"github": "not a url"},
        })
        assert resp.status_code == 422

    def test_short_experience_rejected(self, seeded_client):
        c, _ = seeded_client
        resp = c.put("/api/profiles/cand", headers=_as("cand"), json={"experience": "too short"})
        assert resp.status_code == 422

    def test_completion_endpoint(self, seeded_client):
        c, _ = seeded_client
        resp = c.get("/api/profiles/cand/completion")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["completed_fields"]) + len(data["missing_fields"]) == 9


class TestProjectEndpoints:
    def test_create_project(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/projects", headers=_as("cand"), json={
            "title": "Sidecar", "description": "Dev tooling", "category": "Tools",
            "positions": [{"title": "Designer", "description": "UI", "requirements": "Figma"}],
        })
        assert resp.status_code == 201
        data = resp.json()
        assert data["owner_id"] == "cand"
        assert data["positions"][0]["status"] == "open"

    def test_create_project_requires_title(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/projects", headers=_as("cand"), json={
            "description": "Dev tooling", "category": "Tools",
        })
        assert resp.status_code == 422

    def test_get_project_detail(self, seeded_client):
        c, _ = seeded_client
        resp = c.get("/api/projects/proj")
        assert resp.status_code == 200
        data = resp.json()
        assert data["owner"]["name"] == "Fay Founder"
        assert [p["id"] for p in data["positions"]] == ["pos"]
        assert data["rounds"][0]["progress"] == 25.0

    def test_filter_by_category(self, seeded_client):
        c, _ = seeded_client
        assert len(c.get("/api/projects", params={"category": "Logistics"}).json()) == 1
        assert c.get("/api/projects", params={"category": "Food"}).json() == []

    def test_update_requires_owner(self, seeded_client):
        c, _ = seeded_client
        resp = c.put("/api/projects/proj", headers=_as("cand"), json={"title": "Mine now"})
        assert resp.status_code == 403
        resp = c.put("/api/projects/proj", headers=_as("founder"), json={"title": "Routely 2"})
        assert resp.status_code == 200
        assert resp.json()["title"] == "Routely 2"

    def test_delete_project(self, seeded_client):
        c, _ = seeded_client
        resp = c.delete("/api/projects/proj", headers=_as("founder"))
        assert resp.json() == {"ok": True}
        assert c.get("/api/projects/proj").status_code == 404


class TestApplicationWorkflow:
    def _apply(self, c) -> str:
        resp = c.post("/api/applications", headers=_as("cand"), json={
            "position_id": "pos", "message": "I led backend at a routing startup.",
        })
        assert resp.status_code == 201
        return resp.json()["id"]

    def test_empty_message(self, seeded_client):
        c, TestSession = seeded_client
        resp = c.post("/api/applications", headers=_as("cand"), json={"position_id": "pos"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Please write a cover letter"

    def test_accept_adds_member(self, seeded_client):
        c, TestSession = seeded_client
        app_id = self._apply(c)
        resp = c.put(f"/api/applications/{app_id}/status", headers=_as("founder"),
                     json={"status": "accepted"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "accepted"

        members = c.get("/api/projects/proj/members").json()
        assert [(m["user_id"], m["role"]) for m in members] == [("cand", "CTO")]

        resp = c.put(f"/api/applications/{app_id}/status", headers=_as("founder"),
                     json={"status": "accepted"})
        assert resp.status_code == 200
        session = TestSession()
        assert session.query(ProjectMember).count() == 1
        session.close()

    def test_reject_then_accept_conflicts(self, seeded_client):
        c, _ = seeded_client
        app_id = self._apply(c)
        c.put(f"/api/applications/{app_id}/status", headers=_as("founder"), json={"status": "rejected"})
        resp = c.put(f"/api/applications/{app_id}/status", headers=_as("founder"),
                     json={"status": "accepted"})
        assert resp.status_code == 409

    def test_non_owner_cannot_decide(self, seeded_client):
        c, _ = seeded_client
        app_id = self._apply(c)
        resp = c.put(f"/api/applications/{app_id}/status", headers=_as("inv"),
                     json={"status": "accepted"})
        assert resp.status_code == 403

    def test_pending_is_not_a_target(self, seeded_client):
        c, _ = seeded_client
        app_id = self._apply(c)
        resp = c.put(f"/api/applications/{app_id}/status", headers=_as("founder"),
                     json={"status": "pending"})
        assert resp.status_code == 422

    def test_my_applications(self, seeded_client):
        c, _ = seeded_client
        self._apply(c)
        mine = c.get("/api/applications/mine", headers=_as("cand")).json()
        assert mine[0]["position"]["project"]["title"] == "Routely"

    def test_project_applications_owner_only(self, seeded_client):
        c, _ = seeded_client
        self._apply(c)
        assert c.get("/api/projects/proj/applications", headers=_as("cand")).status_code == 403
        apps = c.get("/api/projects/proj/applications", headers=_as("founder")).json()
        assert apps[0]["applicant"]["name"] == "Cal Candidate"

    def test_owner_adds_member(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/projects/proj/members", headers=_as("founder"),
                      json={"user_id": "inv", "role": "Advisor"})
        assert resp.status_code == 201
        assert resp.json()["user"]["name"] == "Ivy Investor"
        resp = c.post("/api/projects/proj/members", headers=_as("cand"),
                      json={"user_id": "cand", "role": "CEO"})
        assert resp.status_code == 403
        memberships = c.get("/api/profiles/inv/memberships").json()
        assert memberships[0]["project"]["title"] == "Routely"


class TestReviewEndpoints:
    def test_review_updates_rating(self, seeded_client):
        c, _ = seeded_client
        for reviewer, rating in (("cand", 5), ("inv", 4), ("cand", 4)):
            resp = c.post("/api/reviews", headers=_as(reviewer), json={
                "reviewee_id": "founder", "rating": rating, "comment": "Good partner",
            })
            assert resp.status_code == 201
        assert c.get("/api/profiles/founder").json()["average_rating"] == 4.3
        assert len(c.get("/api/profiles/founder/reviews").json()) == 3

    def test_rating_out_of_range(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/reviews", headers=_as("cand"), json={
            "reviewee_id": "founder", "rating": 6, "comment": "Too good",
        })
        assert resp.status_code == 422

    def test_investor_review(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/investor-reviews", headers=_as("founder"), json={
            "investor_id": "inv", "rating": 5, "comment": "Helpful intros", "helpful": True,
        })
        assert resp.status_code == 201
        assert resp.json()["helpful"] is True
        assert c.get("/api/profiles/inv").json()["average_rating"] == 5.0


class TestInvestmentEndpoints:
    def test_open_rounds(self, seeded_client):
        c, _ = seeded_client
        rounds = c.get("/api/rounds/open", params={"category": "Logistics"}).json()
        assert [r["id"] for r in rounds] == ["rnd"]
        assert rounds[0]["deadline_label"].endswith("days left")
        assert c.get("/api/rounds/open", params={"max_amount": 100000}).json() == []

    def test_out_of_bounds(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/investments", headers=_as("inv"), json={
            "round_id": "rnd", "amount_invested": 500,
        })
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Investment must be between $10,000 and $100,000"

    def test_founder_cannot_invest(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/investments", headers=_as("cand"), json={
            "round_id": "rnd", "amount_invested": 20000,
        })
        assert resp.status_code == 403

    def test_confirm_flow_and_portfolio(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/investments", headers=_as("inv"), json={
            "round_id": "rnd", "amount_invested": 25000, "notes": "Lead angel",
        })
        assert resp.status_code == 201
        inv_id = resp.json()["id"]
        assert resp.json()["status"] == "pending"

        assert c.put(f"/api/investments/{inv_id}/status", headers=_as("inv"),
                     json={"status": "confirmed"}).status_code == 403
        resp = c.put(f"/api/investments/{inv_id}/status", headers=_as("founder"),
                     json={"status": "confirmed"})
        assert resp.status_code == 200

        portfolio = c.get("/api/portfolio/inv").json()
        assert portfolio["total_invested"] == 25000
        assert portfolio["portfolio_count"] == 1

        dash = c.get("/api/dashboard/investor", headers=_as("inv")).json()
        assert dash["total_invested"] == 25000
        assert len(dash["open_rounds"]) == 1

    def test_round_404(self, seeded_client):
        c, _ = seeded_client
        assert c.get("/api/rounds/nope").status_code == 404


class TestMRREndpoints:
    def test_add_and_dashboard(self, seeded_client):
        c, TestSession = seeded_client
        for month, revenue in (("2026-01", 1000), ("2026-02", 1500)):
            resp = c.post("/api/projects/proj/mrr", headers=_as("founder"),
                          json={"month": month, "revenue": revenue})
            assert resp.status_code == 201
        data = c.get("/api/projects/proj/mrr").json()
        assert data["growth"] == pytest.approx(50.0)

        session = TestSession()
        session.add(ProjectMember(project_id="proj", user_id="cand", role="CTO"))
        session.commit()
        session.close()
        dash = c.get("/api/mrr/dashboard", headers=_as("cand")).json()
        assert dash["total_mrr"] == 1500
        assert dash["projects"][0]["project_title"] == "Routely"

    def test_bad_month(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/projects/proj/mrr", headers=_as("founder"),
                      json={"month": "2026-13", "revenue": 1})
        assert resp.status_code == 422

    def test_import_xlsx(self, seeded_client, tmp_path):
        c, _ = seeded_client
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.append(("month", "revenue"))
        ws.append(("2026-01", 900))
        path = tmp_path / "mrr.xlsx"
        wb.save(path)
        with path.open("rb") as fh:
            resp = c.post(
                "/api/projects/proj/mrr/import", headers=_as("founder"),
                files={"file": ("mrr.xlsx", fh, "application/octet-stream")},
            )
        assert resp.status_code == 200
        assert resp.json()["created"] == 1

    def test_import_rejects_other_formats(self, seeded_client):
        c, _ = seeded_client
        resp = c.post(
            "/api/projects/proj/mrr/import", headers=_as("founder"),
            files={"file": ("mrr.csv", b"month,revenue", "text/csv")},
        )
        assert resp.status_code == 400


class TestWebhookEndpoint:
    def _payload(self) -> bytes:
        return json.dumps({
            "type": "customer.subscription.created",
            "data": {"object": {
                "id": "sub_1", "customer": "cus_1", "status": "active",
                "metadata": {"project_id": "proj"},
                "items": {"data": [{"price": {"unit_amount": 4900, "currency": "usd"}}]},
                "current_period_start": 1767225600, "current_period_end": 1769904000,
            }},
        }).encode()

    def test_missing_signature(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/webhooks/stripe", content=self._payload())
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "WEBHOOK_ERROR"

    def test_subscription_updates_mrr(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/webhooks/stripe", content=self._payload(),
                      headers={"Stripe-Signature": "t=1,v1=unchecked"})
        assert resp.status_code == 200
        assert resp.json()["received"] is True
        data = c.get("/api/projects/proj/mrr").json()["data"]
        assert data[0]["revenue"] == 49
        assert data[0]["stripe_subscription_count"] == 1
