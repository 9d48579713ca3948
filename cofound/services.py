"""Shared business logic for the Cofound API, MCP server and CLI.

Functions take a SQLAlchemy ``Session`` and never commit: the caller commits
once per operation so multi-row writes land in a single transaction.
Single-record reads return ``None`` when the record is missing; writes raise
:class:`~cofound.errors.NotFoundError`.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from cofound import metrics
from cofound.errors import (
    InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationError,
)
from cofound.models import (
    Application, Investment, InvestmentRound, InvestorReview, MRRData, Position, Profile,
    Project, ProjectMember, Review,
)
from cofound.schemas import (
    ApplicationCreate, InvestmentCreate, InvestorReviewCreate, MRRCreate, PositionCreate,
    PositionUpdate, ProfileUpdate, ProjectCreate, ProjectUpdate, ReviewCreate, RoundCreate,
    RoundUpdate,
)
from cofound.utils import isoformat, json_parse

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

PROFILE_TEXT_FIELDS = (
    "name", "bio", "experience", "contact", "avatar_url", "professional_summary",
    "location", "timezone", "availability_status", "investment_range_min",
    "investment_range_max",
)

# Profile attributes persisted as JSON text: field name -> (column, default)
PROFILE_JSON_FIELDS = {
    "skills": ("skills_json", []),
    "skill_proficiencies": ("skill_proficiencies_json", {}),
    "achievements": ("achievements_json", []),
    "social_links": ("social_links_json", {}),
    "investment_focus": ("investment_focus_json", []),
}

PROJECT_FIELDS = ("title", "description", "category", "website")
POSITION_FIELDS = ("title", "description", "requirements", "status")
ROUND_FIELDS = (
    "round_name", "amount_seeking", "amount_raised", "valuation", "equity_offered",
    "min_investment", "max_investment", "description", "terms", "deadline", "status",
)

APPLICATION_TRANSITIONS = {"pending": {"accepted", "rejected"}}
INVESTMENT_TRANSITIONS = {"pending": {"confirmed"}}

DEFAULT_AVATAR = "https://api.dicebear.com/7.x/avataaars/svg?seed={name}"
OPEN_ROUNDS_ON_DASHBOARD = 3

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def profile_summary(profile: Profile) -> dict:
    out = {
        "id": profile.id, "email": profile.email, "name": profile.name, "bio": profile.bio,
        "experience": profile.experience, "contact": profile.contact,
        "avatar_url": profile.avatar_url, "average_rating": profile.average_rating,
        "user_type": profile.user_type,
        "professional_summary": profile.professional_summary,
        "location": profile.location, "timezone": profile.timezone,
        "availability_status": profile.availability_status,
        "investment_range_min": profile.investment_range_min,
        "investment_range_max": profile.investment_range_max,
        "created_at": isoformat(profile.created_at),
    }
    for field, (column, default) in PROFILE_JSON_FIELDS.items():
        out[field] = json_parse(getattr(profile, column), type(default)())
    return out


def profile_detail(profile: Profile) -> dict:
    base = profile_summary(profile)
    base["completion"] = metrics.profile_completion(base)
    base["availability_label"] = metrics.availability_label(profile.availability_status)
    base["availability_color"] = metrics.availability_color(profile.availability_status)
    base["formatted_skills"] = metrics.format_skills_with_proficiency(
        base["skills"], base["skill_proficiencies"],
    )
    return base


def project_summary(proj: Project, *, owner: bool = True) -> dict:
    out = {
        "id": proj.id, "owner_id": proj.owner_id, "title": proj.title,
        "description": proj.description, "category": proj.category,
        "website": proj.website, "created_at": isoformat(proj.created_at),
    }
    if owner:
        out["owner"] = profile_summary(proj.owner) if proj.owner else None
    return out


def project_detail(proj: Project) -> dict:
    base = project_summary(proj)
    base["positions"] = [position_summary(p) for p in proj.positions]
    base["members"] = [member_summary(m, user=True) for m in proj.members]
    base["rounds"] = [round_summary(r, project=False) for r in proj.rounds if r.status == "open"]
    return base


def position_summary(pos: Position, *, project: bool = False) -> dict:
    out = {
        "id": pos.id, "project_id": pos.project_id, "title": pos.title,
        "description": pos.description, "requirements": pos.requirements,
        "status": pos.status, "created_at": isoformat(pos.created_at),
    }
    if project:
        out["project"] = project_summary(pos.project) if pos.project else None
    return out


def application_summary(
    app: Application, *, position: bool = False, project: bool = False, applicant: bool = False,
) -> dict:
    out = {
        "id": app.id, "position_id": app.position_id, "applicant_id": app.applicant_id,
        "message": app.message, "status": app.status, "created_at": isoformat(app.created_at),
    }
    if position:
        out["position"] = position_summary(app.position, project=project) if app.position else None
    if applicant:
        out["applicant"] = profile_summary(app.applicant) if app.applicant else None
    return out


def member_summary(member: ProjectMember, *, user: bool = False, project: bool = False) -> dict:
    out = {
        "id": member.id, "project_id": member.project_id, "user_id": member.user_id,
        "role": member.role, "joined_at": isoformat(member.joined_at),
    }
    if user:
        out["user"] = profile_summary(member.user) if member.user else None
    if project:
        out["project"] = project_summary(member.project, owner=False) if member.project else None
    return out


def review_summary(review: Review) -> dict:
    return {
        "id": review.id, "reviewer_id": review.reviewer_id, "reviewee_id": review.reviewee_id,
        "project_id": review.project_id, "rating": review.rating, "comment": review.comment,
        "created_at": isoformat(review.created_at),
        "reviewer": profile_summary(review.reviewer) if review.reviewer else None,
        "project": project_summary(review.project, owner=False) if review.project else None,
    }


def investor_review_summary(review: InvestorReview) -> dict:
    return {
        "id": review.id, "reviewer_id": review.reviewer_id, "investor_id": review.investor_id,
        "project_id": review.project_id, "rating": review.rating, "comment": review.comment,
        "helpful": review.helpful, "responsive": review.responsive,
        "created_at": isoformat(review.created_at),
        "reviewer": profile_summary(review.reviewer) if review.reviewer else None,
        "project": project_summary(review.project, owner=False) if review.project else None,
    }


def mrr_point(row: MRRData) -> dict:
    return {
        "id": row.id, "project_id": row.project_id, "month": row.month,
        "revenue": row.revenue, "stripe_subscription_count": row.stripe_subscription_count,
        "created_at": isoformat(row.created_at),
    }


def round_summary(rnd: InvestmentRound, *, project: bool = True) -> dict:
    progress = metrics.round_progress(rnd.amount_raised, rnd.amount_seeking)
    days = metrics.days_left(rnd.deadline)
    out = {
        "id": rnd.id, "project_id": rnd.project_id, "round_name": rnd.round_name,
        "amount_seeking": rnd.amount_seeking, "amount_raised": rnd.amount_raised,
        "valuation": rnd.valuation, "equity_offered": rnd.equity_offered,
        "min_investment": rnd.min_investment, "max_investment": rnd.max_investment,
        "description": rnd.description, "terms": rnd.terms, "status": rnd.status,
        "deadline": isoformat(rnd.deadline), "created_at": isoformat(rnd.created_at),
        "progress": progress,
        "progress_bar": metrics.progress_bar_width(progress),
        "days_left": days,
        "deadline_label": metrics.deadline_label(days),
    }
    if project:
        out["project"] = project_summary(rnd.project, owner=False) if rnd.project else None
    return out


def investment_summary(inv: Investment) -> dict:
    return {
        "id": inv.id, "round_id": inv.round_id, "investor_id": inv.investor_id,
        "amount_invested": inv.amount_invested, "status": inv.status, "notes": inv.notes,
        "date": isoformat(inv.date),
        "round": round_summary(inv.round) if inv.round else None,
        "investor": profile_summary(inv.investor) if inv.investor else None,
    }


# ---------------------------------------------------------------------------
# Lookup & mutation helpers
# ---------------------------------------------------------------------------


def get_or_none(session: Session, model, entity_id: str):
    return session.execute(select(model).where(model.id == entity_id)).scalars().first()


def get_or_raise(session: Session, model, entity_id: str, label: str = "Entity"):
    obj = get_or_none(session, model, entity_id)
    if obj is None:
        raise NotFoundError(label, entity_id)
    return obj


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)


def _require_owner(project: Project, actor_id: str, action: str = "modify this project") -> None:
    if project.owner_id != actor_id:
        raise PermissionDeniedError(f"You do not have permission to {action}")


def _require_text(value: str | None, message: str) -> str:
    if not value or not value.strip():
        raise ValidationError(message)
    return value


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def list_profiles(
    session: Session, *, user_type: str | None = None, search: str | None = None,
) -> list[Profile]:
    query = select(Profile).order_by(Profile.name)
    if user_type:
        query = query.where(Profile.user_type == user_type)
    if search:
        like = f"%{search.strip()}%"
        query = query.where(or_(
            Profile.name.ilike(like), Profile.bio.ilike(like), Profile.skills_json.ilike(like),
        ))
    return list(session.execute(query).scalars().all())


def ensure_profile(
    session: Session, user_id: str, *, email: str = "", name: str = "",
    user_type: str = "founder",
) -> Profile:
    """Return the profile for *user_id*, creating it on first sign-in."""
    profile = get_or_none(session, Profile, user_id)
    if profile is not None:
        return profile
    name = name or (email.split("@")[0] if email else "")
    profile = Profile(
        id=user_id, email=email, name=name,
        user_type=user_type if user_type in ("founder", "investor") else "founder",
        avatar_url=DEFAULT_AVATAR.format(name=name),
    )
    session.add(profile)
    session.flush()
    log.info("Created profile %s (%s)", user_id, profile.user_type)
    return profile


def update_profile(
    session: Session, actor_id: str, profile_id: str, body: ProfileUpdate,
) -> Profile:
    if actor_id != profile_id:
        raise PermissionDeniedError("You can only edit your own profile")
    profile = get_or_raise(session, Profile, profile_id, "Profile")
    updates = body.model_dump(exclude_none=True)
    apply_updates(profile, updates, PROFILE_TEXT_FIELDS)
    for field, (column, _default) in PROFILE_JSON_FIELDS.items():
        if field in updates:
            setattr(profile, column, json.dumps(updates[field]))
    session.flush()
    return profile


# ---------------------------------------------------------------------------
# Projects & positions
# ---------------------------------------------------------------------------


def list_projects(
    session: Session, *, category: str | None = None, search: str | None = None,
) -> list[Project]:
    query = select(Project).order_by(Project.created_at.desc(), Project.title)
    if category:
        query = query.where(Project.category == category)
    if search:
        like = f"%{search.strip()}%"
        query = query.where(or_(Project.title.ilike(like), Project.description.ilike(like)))
    return list(session.execute(query).scalars().all())


def projects_by_owner(session: Session, owner_id: str) -> list[Project]:
    return list(session.execute(
        select(Project).where(Project.owner_id == owner_id).order_by(Project.title)
    ).scalars().all())


def create_project(session: Session, actor_id: str, body: ProjectCreate) -> Project:
    get_or_raise(session, Profile, actor_id, "Profile")
    proj = Project(
        owner_id=actor_id, title=body.title, description=body.description,
        category=body.category, website=body.website,
    )
    session.add(proj)
    session.flush()
    for pos in body.positions:
        session.add(Position(
            project_id=proj.id, title=pos.title, description=pos.description,
            requirements=pos.requirements, status="open",
        ))
    session.flush()
    session.refresh(proj)
    log.info("Project %s created by %s with %d positions", proj.id, actor_id, len(body.positions))
    return proj


def update_project(session: Session, actor_id: str, project_id: str, body: ProjectUpdate) -> Project:
    proj = get_or_raise(session, Project, project_id, "Project")
    _require_owner(proj, actor_id, "edit this project")
    apply_updates(proj, body.model_dump(), PROJECT_FIELDS)
    session.flush()
    return proj


def delete_project(session: Session, actor_id: str, project_id: str) -> None:
    """Delete a project with its positions, team, rounds, MRR and subscriptions.

    Reviews that mention the project are kept with ``project_id`` cleared.
    """
    proj = get_or_raise(session, Project, project_id, "Project")
    _require_owner(proj, actor_id, "delete this project")
    session.delete(proj)
    session.flush()


def positions_by_project(session: Session, project_id: str) -> list[Position]:
    return list(session.execute(
        select(Position).where(Position.project_id == project_id).order_by(Position.created_at)
    ).scalars().all())


def list_open_positions(session: Session) -> list[Position]:
    return list(session.execute(
        select(Position).where(Position.status == "open").order_by(Position.created_at.desc())
    ).scalars().all())


def create_position(
    session: Session, actor_id: str, project_id: str, body: PositionCreate,
) -> Position:
    proj = get_or_raise(session, Project, project_id, "Project")
    _require_owner(proj, actor_id, "add positions to this project")
    pos = Position(
        project_id=proj.id, title=body.title, description=body.description,
        requirements=body.requirements, status=body.status,
    )
    session.add(pos)
    session.flush()
    return pos


def update_position(
    session: Session, actor_id: str, position_id: str, body: PositionUpdate,
) -> Position:
    pos = get_or_raise(session, Position, position_id, "Position")
    _require_owner(pos.project, actor_id, "edit this position")
    apply_updates(pos, body.model_dump(), POSITION_FIELDS)
    session.flush()
    return pos


def delete_position(session: Session, actor_id: str, position_id: str) -> None:
    pos = get_or_raise(session, Position, position_id, "Position")
    _require_owner(pos.project, actor_id, "delete this position")
    session.delete(pos)
    session.flush()


# ---------------------------------------------------------------------------
# Applications & memberships
# ---------------------------------------------------------------------------


def validate_application_message(message: str | None) -> str:
    return _require_text(message, "Please write a cover letter")


def create_application(session: Session, actor_id: str, body: ApplicationCreate) -> Application:
    message = validate_application_message(body.message)
    pos = get_or_raise(session, Position, body.position_id, "Position")
    if pos.status != "open":
        raise ValidationError("This position is no longer open")
    if pos.project is not None and pos.project.owner_id == actor_id:
        raise ValidationError("You cannot apply to your own project")
    app = Application(position_id=pos.id, applicant_id=actor_id, message=message, status="pending")
    session.add(app)
    session.flush()
    return app


def applications_by_applicant(session: Session, applicant_id: str) -> list[Application]:
    return list(session.execute(
        select(Application).where(Application.applicant_id == applicant_id)
        .order_by(Application.created_at.desc())
    ).scalars().all())


def applications_by_position(session: Session, actor_id: str, position_id: str) -> list[Application]:
    pos = get_or_raise(session, Position, position_id, "Position")
    _require_owner(pos.project, actor_id, "view these applications")
    return list(pos.applications)


def applications_by_project(session: Session, actor_id: str, project_id: str) -> list[Application]:
    proj = get_or_raise(session, Project, project_id, "Project")
    _require_owner(proj, actor_id, "view these applications")
    return list(session.execute(
        select(Application).join(Position, Application.position_id == Position.id)
        .where(Position.project_id == project_id)
        .order_by(Application.created_at.desc())
    ).scalars().all())


def add_member(
    session: Session, project_id: str, user_id: str, role: str,
) -> tuple[ProjectMember, bool]:
    """Insert a membership unless one exists for (project, user). Returns (member, created)."""
    existing = session.execute(
        select(ProjectMember).where(
            ProjectMember.project_id == project_id, ProjectMember.user_id == user_id,
        )
    ).scalars().first()
    if existing is not None:
        return existing, False
    member = ProjectMember(project_id=project_id, user_id=user_id, role=role)
    session.add(member)
    session.flush()
    return member, True


def transition_application(
    session: Session, actor_id: str, application_id: str, status: str,
) -> Application:
    """Move an application out of ``pending``; acceptance also grants membership.

    Re-requesting the current status is a no-op. The status change and the
    membership row are flushed together and committed by the caller.
    """
    app = get_or_raise(session, Application, application_id, "Application")
    pos = app.position
    if pos is None:
        raise NotFoundError("Position", app.position_id)
    _require_owner(pos.project, actor_id, "review applications for this project")

    if app.status != status:
        if status not in APPLICATION_TRANSITIONS.get(app.status, set()):
            raise InvalidTransitionError("Application", app.status, status)
        app.status = status
        log.info("Application %s -> %s", app.id, status)

    if status == "accepted":
        _, created = add_member(session, pos.project_id, app.applicant_id, pos.title)
        if created:
            log.info("Added %s to project %s as %s", app.applicant_id, pos.project_id, pos.title)
    session.flush()
    return app


def add_project_member(
    session: Session, actor_id: str, project_id: str, user_id: str, role: str,
) -> ProjectMember:
    proj = get_or_raise(session, Project, project_id, "Project")
    _require_owner(proj, actor_id, "manage this team")
    get_or_raise(session, Profile, user_id, "Profile")
    member, _ = add_member(session, proj.id, user_id, role)
    return member


def members_by_project(session: Session, project_id: str) -> list[ProjectMember]:
    return list(session.execute(
        select(ProjectMember).where(ProjectMember.project_id == project_id)
        .order_by(ProjectMember.joined_at)
    ).scalars().all())


def members_by_user(session: Session, user_id: str) -> list[ProjectMember]:
    return list(session.execute(
        select(ProjectMember).where(ProjectMember.user_id == user_id)
        .order_by(ProjectMember.joined_at)
    ).scalars().all())


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


def recompute_user_rating(session: Session, user_id: str) -> float | None:
    ratings = session.execute(
        select(Review.rating).where(Review.reviewee_id == user_id)
    ).scalars().all()
    avg = metrics.average_rating(list(ratings))
    profile = get_or_none(session, Profile, user_id)
    if profile is not None:
        profile.average_rating = avg
    return avg


def recompute_investor_rating(session: Session, investor_id: str) -> float | None:
    ratings = session.execute(
        select(InvestorReview.rating).where(InvestorReview.investor_id == investor_id)
    ).scalars().all()
    avg = metrics.average_rating(list(ratings))
    profile = get_or_none(session, Profile, investor_id)
    if profile is not None:
        profile.average_rating = avg
    return avg


def create_review(session: Session, actor_id: str, body: ReviewCreate) -> Review:
    comment = _require_text(body.comment, "Please write a comment")
    if body.reviewee_id == actor_id:
        raise ValidationError("You cannot review yourself")
    get_or_raise(session, Profile, body.reviewee_id, "Profile")
    review = Review(
        reviewer_id=actor_id, reviewee_id=body.reviewee_id, project_id=body.project_id,
        rating=body.rating, comment=comment,
    )
    session.add(review)
    session.flush()
    avg = recompute_user_rating(session, body.reviewee_id)
    session.flush()
    log.info("Review %s for %s; average now %s", review.id, body.reviewee_id, avg)
    return review


def reviews_for_user(session: Session, user_id: str) -> list[Review]:
    return list(session.execute(
        select(Review).where(Review.reviewee_id == user_id).order_by(Review.created_at.desc())
    ).scalars().all())


def create_investor_review(
    session: Session, actor_id: str, body: InvestorReviewCreate,
) -> InvestorReview:
    comment = _require_text(body.comment, "Please write a comment")
    if body.investor_id == actor_id:
        raise ValidationError("You cannot review yourself")
    investor = get_or_raise(session, Profile, body.investor_id, "Investor")
    if investor.user_type != "investor":
        raise ValidationError("Only investors can receive investor reviews")
    review = InvestorReview(
        reviewer_id=actor_id, investor_id=body.investor_id, project_id=body.project_id,
        rating=body.rating, comment=comment, helpful=body.helpful, responsive=body.responsive,
    )
    session.add(review)
    session.flush()
    avg = recompute_investor_rating(session, body.investor_id)
    session.flush()
    log.info("Investor review %s for %s; average now %s", review.id, body.investor_id, avg)
    return review


def investor_reviews_for(session: Session, investor_id: str) -> list[InvestorReview]:
    return list(session.execute(
        select(InvestorReview).where(InvestorReview.investor_id == investor_id)
        .order_by(InvestorReview.created_at.desc())
    ).scalars().all())


# ---------------------------------------------------------------------------
# MRR
# ---------------------------------------------------------------------------


def mrr_by_project(session: Session, project_id: str) -> list[MRRData]:
    return list(session.execute(
        select(MRRData).where(MRRData.project_id == project_id).order_by(MRRData.month)
    ).scalars().all())


def _user_project_ids(session: Session, user_id: str) -> list[str]:
    owned = session.execute(select(Project.id).where(Project.owner_id == user_id)).scalars().all()
    joined = session.execute(
        select(ProjectMember.project_id).where(ProjectMember.user_id == user_id)
    ).scalars().all()
    return list(dict.fromkeys([*owned, *joined]))


def mrr_by_user(session: Session, user_id: str) -> list[dict]:
    """One month-ordered series per project the user owns or belongs to."""
    out = []
    for project_id in _user_project_ids(session, user_id):
        proj = get_or_none(session, Project, project_id)
        rows = mrr_by_project(session, project_id)
        out.append({
            "project_id": project_id,
            "project_title": proj.title if proj else "Unknown Project",
            "data": [mrr_point(r) for r in rows],
            "growth": metrics.mrr_growth([r.revenue for r in rows]),
        })
    return out


def mrr_dashboard(session: Session, user_id: str) -> dict:
    projects = mrr_by_user(session, user_id)
    summary = metrics.mrr_summary([[p["revenue"] for p in s["data"]] for s in projects])
    return {"projects": projects, **summary}


def upsert_mrr(
    session: Session, project_id: str, month: str, revenue: int,
    subscription_count: int | None = None,
) -> tuple[MRRData, bool]:
    row = session.execute(
        select(MRRData).where(MRRData.project_id == project_id, MRRData.month == month)
    ).scalars().first()
    created = row is None
    if created:
        row = MRRData(project_id=project_id, month=month)
        session.add(row)
    row.revenue = revenue
    if subscription_count is not None:
        row.stripe_subscription_count = subscription_count
    session.flush()
    return row, created


def add_mrr(session: Session, actor_id: str, project_id: str, body: MRRCreate) -> MRRData:
    proj = get_or_raise(session, Project, project_id, "Project")
    _require_owner(proj, actor_id, "record revenue for this project")
    row, _ = upsert_mrr(session, proj.id, body.month, body.revenue)
    return row


# ---------------------------------------------------------------------------
# Investment rounds
# ---------------------------------------------------------------------------


def list_rounds(session: Session, project_id: str | None = None) -> list[InvestmentRound]:
    query = select(InvestmentRound).order_by(InvestmentRound.deadline)
    if project_id:
        query = query.where(InvestmentRound.project_id == project_id)
    return list(session.execute(query).scalars().all())


def list_open_rounds(
    session: Session, *, category: str | None = None,
    min_amount: int | None = None, max_amount: int | None = None,
) -> list[InvestmentRound]:
    query = select(InvestmentRound).where(InvestmentRound.status == "open")
    if category:
        query = query.join(Project, InvestmentRound.project_id == Project.id).where(
            Project.category == category,
        )
    if min_amount:
        query = query.where(InvestmentRound.amount_seeking >= min_amount)
    if max_amount:
        query = query.where(InvestmentRound.amount_seeking <= max_amount)
    return list(session.execute(query.order_by(InvestmentRound.deadline)).scalars().all())


def create_round(session: Session, actor_id: str, body: RoundCreate) -> InvestmentRound:
    proj = get_or_raise(session, Project, body.project_id, "Project")
    _require_owner(proj, actor_id, "open a round for this project")
    rnd = InvestmentRound(**body.model_dump())
    session.add(rnd)
    session.flush()
    log.info("Round %s opened for project %s seeking %s", rnd.id, proj.id, rnd.amount_seeking)
    return rnd


def update_round(session: Session, actor_id: str, round_id: str, body: RoundUpdate) -> InvestmentRound:
    rnd = get_or_raise(session, InvestmentRound, round_id, "Investment round")
    _require_owner(rnd.project, actor_id, "edit this round")
    apply_updates(rnd, body.model_dump(), ROUND_FIELDS)
    if rnd.min_investment > rnd.max_investment:
        raise ValidationError("min_investment must not exceed max_investment")
    session.flush()
    return rnd


# ---------------------------------------------------------------------------
# Investments
# ---------------------------------------------------------------------------


def validate_investment_amount(rnd: InvestmentRound, amount: int) -> int:
    if not amount:
        raise ValidationError("Please enter an investment amount")
    if amount < rnd.min_investment or amount > rnd.max_investment:
        raise ValidationError(
            f"Investment must be between ${rnd.min_investment:,} and ${rnd.max_investment:,}"
        )
    return amount


def list_investments(
    session: Session, *, round_id: str | None = None, investor_id: str | None = None,
) -> list[Investment]:
    query = select(Investment).order_by(Investment.date.desc())
    if round_id:
        query = query.where(Investment.round_id == round_id)
    if investor_id:
        query = query.where(Investment.investor_id == investor_id)
    return list(session.execute(query).scalars().all())


def create_investment(session: Session, actor_id: str, body: InvestmentCreate) -> Investment:
    investor = get_or_raise(session, Profile, actor_id, "Profile")
    if investor.user_type != "investor":
        raise PermissionDeniedError("Only investors can invest in a round")
    rnd = get_or_raise(session, InvestmentRound, body.round_id, "Investment round")
    if rnd.status != "open":
        raise ValidationError("This round is closed")
    amount = validate_investment_amount(rnd, body.amount_invested)
    inv = Investment(
        round_id=rnd.id, investor_id=actor_id, amount_invested=amount,
        status="pending", notes=body.notes,
    )
    session.add(inv)
    session.flush()
    log.info("Investment %s of %s pending on round %s", inv.id, amount, rnd.id)
    return inv


def transition_investment(
    session: Session, actor_id: str, investment_id: str, status: str,
) -> Investment:
    inv = get_or_raise(session, Investment, investment_id, "Investment")
    _require_owner(inv.round.project, actor_id, "confirm investments in this round")
    if inv.status != status:
        if status not in INVESTMENT_TRANSITIONS.get(inv.status, set()):
            raise InvalidTransitionError("Investment", inv.status, status)
        inv.status = status
        log.info("Investment %s -> %s", inv.id, status)
    session.flush()
    return inv


def get_investor_portfolio(session: Session, investor_id: str) -> dict:
    investments = session.execute(
        select(Investment).where(
            Investment.investor_id == investor_id, Investment.status == "confirmed",
        ).order_by(Investment.date.desc())
    ).scalars().all()
    totals = metrics.aggregate_portfolio(investments)
    return {
        "investments": [investment_summary(i) for i in investments],
        "total_invested": totals.total_invested,
        "portfolio_count": totals.portfolio_count,
    }


def investor_dashboard(session: Session, investor_id: str) -> dict:
    portfolio = get_investor_portfolio(session, investor_id)
    rounds = list_open_rounds(session)[:OPEN_ROUNDS_ON_DASHBOARD]
    return {
        "total_invested": portfolio["total_invested"],
        "portfolio_count": portfolio["portfolio_count"],
        "open_rounds": [round_summary(r) for r in rounds],
    }
