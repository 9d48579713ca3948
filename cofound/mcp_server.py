from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, contextmanager

from mcp.server.fastmcp import FastMCP

from cofound import services
from cofound.db import get_session, init_db
from cofound.models import Profile, Project

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def cofound_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Cofound",
    instructions=(
        "Cofound is a marketplace for founders, co-founder candidates and investors. "
        "Use these tools to browse open positions and investment rounds, inspect "
        "profiles and projects, and read portfolio and MRR figures. "
        "Start with list_open_positions() or list_open_rounds()."
    ),
    lifespan=cofound_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session():
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def _get_or_error(session, model, entity_id, label="Entity"):
    obj = services.get_or_none(session, model, entity_id)
    if not obj:
        return None, {"error": f"{label} {entity_id} not found"}
    return obj, None


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("cofound://overview")
def cofound_overview() -> str:
    """Overview of Cofound: data model and workflows."""
    return json.dumps({
        "system": "Cofound: co-founder and investor marketplace",
        "data_model": {
            "profile": "A founder or investor. Has skills, availability, social links and an average rating.",
            "project": "A venture owned by a founder. Has open positions, members, MRR history and investment rounds.",
            "position": "A role on a project. Candidates apply with a cover letter; the owner accepts or rejects.",
            "membership": "Created when an application is accepted. One per (project, user).",
            "round": "A fundraising round with seeking/raised amounts, investment bounds and a deadline.",
            "investment": "An investor's commitment to a round. Pending until the project owner confirms it.",
            "mrr": "Monthly recurring revenue per project, keyed by YYYY-MM.",
        },
        "workflow": [
            "1. list_open_positions() to find roles, get_project(id) for context.",
            "2. get_profile(id) for a candidate or investor with completion details.",
            "3. list_open_rounds(category, min_amount, max_amount) to browse fundraising.",
            "4. get_investor_portfolio(investor_id) for confirmed holdings.",
            "5. get_mrr_summary(user_id) for revenue across a founder's projects.",
        ],
        "statuses": {
            "application": ["pending", "accepted", "rejected"],
            "investment": ["pending", "confirmed"],
            "position": ["open", "closed"],
            "round": ["open", "closed"],
        },
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_open_positions(limit: int = 50) -> list[dict]:
    """List open positions across all projects, newest first, with the project attached."""
    with _session() as session:
        positions = services.list_open_positions(session)[:max(1, limit)]
        return [services.position_summary(p, project=True) for p in positions]


@mcp.tool()
def get_profile(profile_id: str) -> dict:
    """Get a profile with completion percentage, missing fields and formatted skills."""
    with _session() as session:
        profile, err = _get_or_error(session, Profile, profile_id, "Profile")
        if err:
            return err
        return services.profile_detail(profile)


@mcp.tool()
def get_project(project_id: str) -> dict:
    """Get a project with owner, positions, members and open rounds."""
    with _session() as session:
        proj, err = _get_or_error(session, Project, project_id, "Project")
        if err:
            return err
        return services.project_detail(proj)


@mcp.tool()
def list_open_rounds(
    category: str | None = None,
    min_amount: int | None = None,
    max_amount: int | None = None,
) -> list[dict]:
    """List open investment rounds, filtered by project category and amount sought."""
    with _session() as session:
        rounds = services.list_open_rounds(
            session, category=category, min_amount=min_amount, max_amount=max_amount,
        )
        return [services.round_summary(r) for r in rounds]


@mcp.tool()
def get_investor_portfolio(investor_id: str) -> dict:
    """Confirmed investments of an investor with total invested and distinct project count."""
    with _session() as session:
        _, err = _get_or_error(session, Profile, investor_id, "Investor")
        if err:
            return err
        return services.get_investor_portfolio(session, investor_id)


@mcp.tool()
def get_mrr_summary(user_id: str) -> dict:
    """MRR series per project the user owns or belongs to, plus combined totals and growth."""
    with _session() as session:
        _, err = _get_or_error(session, Profile, user_id, "Profile")
        if err:
            return err
        return services.mrr_dashboard(session, user_id)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Cofound MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
