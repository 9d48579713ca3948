"""Derived-state computations over profiles, investments, ratings, MRR and rounds.

Everything here is pure: callers load the records, these functions reduce them.
Values are never persisted by this module.
"""
from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable

from cofound.utils import json_parse

PROFICIENCY_LEVELS = ("beginner", "intermediate", "advanced", "expert")
DEFAULT_PROFICIENCY = "intermediate"

AVAILABILITY_LABELS = {
    "available": "Available for opportunities",
    "looking_for_projects": "Looking for projects",
    "busy": "Currently busy",
    "not_available": "Not available",
}
AVAILABILITY_COLORS = {
    "available": "bg-green-100 text-green-800",
    "looking_for_projects": "bg-blue-100 text-blue-800",
    "busy": "bg-yellow-100 text-yellow-800",
    "not_available": "bg-gray-100 text-gray-800",
}
_DEFAULT_COLOR = "bg-gray-100 text-gray-800"

_MS_PER_DAY = 1000 * 60 * 60 * 24


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a spreadsheet does (2.5 -> 3), not like ``round()`` (2.5 -> 2)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


# ---------------------------------------------------------------------------
# Profile completion
# ---------------------------------------------------------------------------


_TEXT_FIELDS = (
    "name", "bio", "avatar_url", "experience", "professional_summary",
    "location", "availability_status",
)


def _profile_view(profile: Any) -> dict[str, Any]:
    """Normalize an ORM profile or a plain mapping into decoded fields."""
    if isinstance(profile, Mapping):
        view = {f: profile.get(f) or "" for f in _TEXT_FIELDS}
        skills = profile.get("skills")
        links = profile.get("social_links")
    else:
        view = {f: getattr(profile, f, None) or "" for f in _TEXT_FIELDS}
        skills = json_parse(profile.skills_json, [])
        links = json_parse(profile.social_links_json, {})
    view["skills"] = list(skills or [])
    view["social_links"] = dict(links or {})
    return view


COMPLETION_CHECKS: tuple[tuple[str, Callable[[dict[str, Any]], bool]], ...] = (
    ("Name", lambda p: bool(p["name"])),
    ("Bio", lambda p: len(p["bio"]) > 10),
    ("Profile Picture", lambda p: bool(p["avatar_url"])),
    ("Skills (at least 3)", lambda p: len(p["skills"]) >= 3),
    ("Experience", lambda p: len(p["experience"]) > 20),
    ("Professional Summary", lambda p: len(p["professional_summary"]) > 20),
    ("Location", lambda p: bool(p["location"])),
    ("Availability Status", lambda p: bool(p["availability_status"])),
    ("At least one social link", lambda p: any(p["social_links"].values())),
)


def profile_completion(profile: Any) -> dict[str, Any]:
    view = _profile_view(profile)
    completed: list[str] = []
    missing: list[str] = []
    for label, check in COMPLETION_CHECKS:
        (completed if check(view) else missing).append(label)
    percentage = int(round_half_up(100 * len(completed) / len(COMPLETION_CHECKS)))
    return {"percentage": percentage, "completed_fields": completed, "missing_fields": missing}


# ---------------------------------------------------------------------------
# Availability & skills
# ---------------------------------------------------------------------------


def availability_label(status: str | None) -> str:
    if not status:
        return "Not set"
    return AVAILABILITY_LABELS.get(status, "Not set")


def availability_color(status: str | None) -> str:
    if not status:
        return _DEFAULT_COLOR
    return AVAILABILITY_COLORS.get(status, _DEFAULT_COLOR)


def format_skills_with_proficiency(
    skills: Iterable[str], proficiencies: Mapping[str, str] | None = None,
) -> list[dict[str, str]]:
    proficiencies = proficiencies or {}
    return [
        {"name": skill, "proficiency": proficiencies.get(skill) or DEFAULT_PROFICIENCY}
        for skill in skills
    ]


# ---------------------------------------------------------------------------
# Portfolio
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PortfolioTotals:
    total_invested: int
    portfolio_count: int


def aggregate_portfolio(investments: Iterable[Any]) -> PortfolioTotals:
    """Sum confirmed investments and count the distinct projects behind their rounds.

    Items are ORM ``Investment`` rows (``round`` loaded) or mappings with
    ``amount_invested``, ``status`` and ``round.project_id``.
    """
    total = 0
    projects: set[str | None] = set()
    for inv in investments:
        if isinstance(inv, Mapping):
            status, amount, rnd = inv.get("status"), inv.get("amount_invested", 0), inv.get("round")
            project_id = rnd.get("project_id") if isinstance(rnd, Mapping) else None
        else:
            status, amount, rnd = inv.status, inv.amount_invested, inv.round
            project_id = rnd.project_id if rnd is not None else None
        if status != "confirmed":
            continue
        total += amount or 0
        projects.add(project_id)
    return PortfolioTotals(total_invested=total, portfolio_count=len(projects))


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------


def average_rating(ratings: Sequence[int | float]) -> float | None:
    if not ratings:
        return None
    return round_half_up(sum(ratings) / len(ratings), 1)


# ---------------------------------------------------------------------------
# MRR
# ---------------------------------------------------------------------------


def growth_percentage(current: float, previous: float) -> float:
    if previous > 0:
        return (current - previous) / previous * 100
    return 0.0


def mrr_growth(revenues: Sequence[float]) -> float:
    """Month-over-month growth of the last two points of a month-ordered series."""
    if len(revenues) < 2:
        return 0.0
    return growth_percentage(revenues[-1], revenues[-2])


def mrr_summary(series: Iterable[Sequence[float]]) -> dict[str, float]:
    """Totals across several projects' month-ordered revenue series."""
    current_total = 0.0
    previous_total = 0.0
    for revenues in series:
        if not revenues:
            continue
        current_total += revenues[-1]
        if len(revenues) > 1:
            previous_total += revenues[-2]
    return {
        "total_mrr": current_total,
        "previous_total": previous_total,
        "growth": growth_percentage(current_total, previous_total),
    }


# ---------------------------------------------------------------------------
# Investment rounds
# ---------------------------------------------------------------------------


def round_progress(amount_raised: float, amount_seeking: float) -> float:
    if amount_seeking <= 0:
        return 0.0
    return amount_raised / amount_seeking * 100


def progress_bar_width(progress: float) -> float:
    return max(0.0, min(100.0, progress))


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def days_left(deadline: datetime, now: datetime | None = None) -> int:
    now = _as_utc(now or datetime.now(UTC))
    delta_ms = (_as_utc(deadline) - now).total_seconds() * 1000
    return math.ceil(delta_ms / _MS_PER_DAY)


def deadline_label(days: int) -> str:
    if days <= 0:
        return "Expired"
    return f"{days} days left"
