from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from cofound.models import Base, InvestmentRound, Position, Profile, Project

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = SessionLocal()
    try:
        yield sess
    finally:
        sess.close()


# ---------------------------------------------------------------------------
# Fixtures: sample marketplace
# ---------------------------------------------------------------------------


@pytest.fixture()
def founder(session: Session) -> Profile:
    p = Profile(
        id="founder-1", email="ada@example.com", name="Ada Founder",
        bio="Building tools for small clinics.", user_type="founder",
        skills_json=json.dumps(["Python", "Sales", "Product"]),
    )
    session.add(p)
    session.commit()
    return p


@pytest.fixture()
def candidate(session: Session) -> Profile:
    p = Profile(
        id="cand-1", email="bo@example.com", name="Bo Builder",
        bio="Backend engineer, ex-fintech.", user_type="founder",
    )
    session.add(p)
    session.commit()
    return p


@pytest.fixture()
def investor(session: Session) -> Profile:
    p = Profile(
        id="inv-1", email="cy@example.com", name="Cy Capital",
        bio="Pre-seed health and climate.", user_type="investor",
    )
    session.add(p)
    session.commit()
    return p


@pytest.fixture()
def project(session: Session, founder: Profile) -> Project:
    proj = Project(
        id="proj-1", owner_id=founder.id, title="ClinicFlow",
        description="Scheduling for clinics", category="Health",
    )
    session.add(proj)
    session.commit()
    return proj


@pytest.fixture()
def position(session: Session, project: Project) -> Position:
    pos = Position(
        id="pos-1", project_id=project.id, title="CTO",
        description="Own the platform", requirements="5y backend", status="open",
    )
    session.add(pos)
    session.commit()
    return pos


@pytest.fixture()
def open_round(session: Session, project: Project) -> InvestmentRound:
    rnd = InvestmentRound(
        id="round-1", project_id=project.id, round_name="Pre-seed",
        amount_seeking=500000, amount_raised=125000, valuation=5000000,
        equity_offered=10.0, min_investment=10000, max_investment=100000,
        status="open", deadline=datetime.now(UTC) + timedelta(days=30),
    )
    session.add(rnd)
    session.commit()
    return rnd
