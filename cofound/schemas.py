"""Pydantic request/response schemas for the Cofound API."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

from cofound.utils import naive_utc

UserType = Literal["founder", "investor"]
Availability = Literal["available", "looking_for_projects", "busy", "not_available"]
Proficiency = Literal["beginner", "intermediate", "advanced", "expert"]
PositionStatus = Literal["open", "closed"]
ApplicationStatus = Literal["pending", "accepted", "rejected"]
InvestmentStatus = Literal["pending", "confirmed"]
RoundStatus = Literal["open", "closed"]


def _valid_url(value: str) -> bool:
    """Accept URLs with or without a scheme (``example.com`` counts)."""
    candidate = value if value.startswith("http") else f"https://{value}"
    parsed = urlparse(candidate)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and " " not in candidate


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class SocialLinks(BaseModel):
    linkedin: str | None = None
    github: str | None = None
    twitter: str | None = None
    portfolio: str | None = None
    website: str | None = None

    @field_validator("linkedin", "github", "twitter", "portfolio", "website")
    @classmethod
    def url_or_blank(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return v
        if not _valid_url(v.strip()):
            raise ValueError("Please enter a valid URL")
        return v.strip()


class ProfileUpdate(BaseModel):
    """Partial profile edit. Fields left as ``None`` are not touched."""

    name: str | None = Field(None, min_length=2, max_length=100)
    bio: str | None = Field(None, min_length=10, max_length=500)
    professional_summary: str | None = Field(None, max_length=1000)
    experience: str | None = Field(None, max_length=2000)
    contact: str | None = Field(None, max_length=300)
    avatar_url: str | None = Field(None, max_length=500)
    location: str | None = Field(None, max_length=100)
    timezone: str | None = Field(None, max_length=50)
    availability_status: Availability | None = None
    skills: list[str] | None = Field(None, min_length=1, max_length=20)
    skill_proficiencies: dict[str, Proficiency] | None = None
    achievements: list[str] | None = Field(None, max_length=10)
    social_links: SocialLinks | None = None
    investment_focus: list[str] | None = None
    investment_range_min: int | None = Field(None, ge=0)
    investment_range_max: int | None = Field(None, ge=0)

    @field_validator("professional_summary", "experience")
    @classmethod
    def long_text_or_blank(cls, v: str | None, info) -> str | None:
        if v is None or v == "":
            return v
        if len(v) < 20:
            label = info.field_name.replace("_", " ").capitalize()
            raise ValueError(f"{label} must be at least 20 characters")
        return v


class ProfileOut(BaseModel):
    id: str
    email: str
    name: str
    bio: str
    skills: list[str] = []
    experience: str
    contact: str
    avatar_url: str
    average_rating: float | None = None
    user_type: str
    professional_summary: str = ""
    location: str = ""
    timezone: str = ""
    availability_status: str = ""
    skill_proficiencies: dict[str, str] = {}
    achievements: list[str] = []
    social_links: dict[str, str | None] = {}
    investment_focus: list[str] = []
    investment_range_min: int | None = None
    investment_range_max: int | None = None
    created_at: str | None = None


class CompletionOut(BaseModel):
    percentage: int
    completed_fields: list[str]
    missing_fields: list[str]


class ProfileDetail(ProfileOut):
    completion: CompletionOut
    availability_label: str
    availability_color: str
    formatted_skills: list[dict[str, str]] = []


# ---------------------------------------------------------------------------
# Projects & positions
# ---------------------------------------------------------------------------


class PositionCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    requirements: str = Field(..., min_length=1)
    status: PositionStatus = "open"


class PositionUpdate(BaseModel):
    title: str | None = Field(None, min_length=1)
    description: str | None = None
    requirements: str | None = None
    status: PositionStatus | None = None


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=100)
    website: str = ""
    positions: list[PositionCreate] = []


class ProjectUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=300)
    description: str | None = Field(None, min_length=1)
    category: str | None = Field(None, min_length=1, max_length=100)
    website: str | None = None


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


class ApplicationCreate(BaseModel):
    position_id: str
    message: str = ""


class ApplicationStatusUpdate(BaseModel):
    status: Literal["accepted", "rejected"]


class MemberCreate(BaseModel):
    user_id: str
    role: str = Field(..., min_length=1, max_length=200)


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class ReviewCreate(BaseModel):
    reviewee_id: str
    project_id: str | None = None
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class InvestorReviewCreate(BaseModel):
    investor_id: str
    project_id: str | None = None
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    helpful: bool = False
    responsive: bool = False


# ---------------------------------------------------------------------------
# MRR
# ---------------------------------------------------------------------------


class MRRCreate(BaseModel):
    month: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    revenue: int = Field(..., ge=0)


class MRRImportResult(BaseModel):
    total_rows: int
    created: int
    updated: int
    skipped: int


# ---------------------------------------------------------------------------
# Rounds & investments
# ---------------------------------------------------------------------------


class RoundCreate(BaseModel):
    project_id: str
    round_name: str = Field(..., min_length=1)
    amount_seeking: int = Field(..., gt=0)
    amount_raised: int = Field(0, ge=0)
    valuation: int = Field(..., ge=0)
    equity_offered: float = Field(..., ge=0, le=100)
    min_investment: int = Field(..., ge=0)
    max_investment: int = Field(..., ge=0)
    description: str = ""
    terms: str = ""
    deadline: datetime
    status: RoundStatus = "open"

    @field_validator("deadline")
    @classmethod
    def deadline_in_utc(cls, v: datetime) -> datetime:
        return naive_utc(v)

    @model_validator(mode="after")
    def bounds_ordered(self) -> RoundCreate:
        if self.min_investment > self.max_investment:
            raise ValueError("min_investment must not exceed max_investment")
        return self


class RoundUpdate(BaseModel):
    round_name: str | None = Field(None, min_length=1)
    amount_seeking: int | None = Field(None, gt=0)
    amount_raised: int | None = Field(None, ge=0)
    valuation: int | None = Field(None, ge=0)
    equity_offered: float | None = Field(None, ge=0, le=100)
    min_investment: int | None = Field(None, ge=0)
    max_investment: int | None = Field(None, ge=0)
    description: str | None = None
    terms: str | None = None
    deadline: datetime | None = None
    status: RoundStatus | None = None

    @field_validator("deadline")
    @classmethod
    def deadline_in_utc(cls, v: datetime | None) -> datetime | None:
        return naive_utc(v)


class InvestmentCreate(BaseModel):
    round_id: str
    amount_invested: int = Field(..., gt=0)
    notes: str = ""


class InvestmentStatusUpdate(BaseModel):
    status: InvestmentStatus


class PortfolioOut(BaseModel):
    investments: list[dict[str, Any]]
    total_invested: int
    portfolio_count: int
