from __future__ import annotations

import logging
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from cofound import metrics, services, webhooks
from cofound.auth import SessionContext, current_session, get_session_manager
from cofound.config import get_settings
from cofound.db import init_db
from cofound.db import session_generator as db_session
from cofound.errors import (
    AuthError, CofoundError, InvalidTransitionError, NotFoundError, PermissionDeniedError,
    ValidationError, WebhookError,
)
from cofound.importer import import_mrr_xlsx
from cofound.models import InvestmentRound, Position, Profile, Project
from cofound.schemas import (
    ApplicationCreate, ApplicationStatusUpdate, CompletionOut, InvestmentCreate,
    InvestmentStatusUpdate, InvestorReviewCreate, MemberCreate, MRRCreate, MRRImportResult,
    PortfolioOut, PositionCreate, PositionUpdate, ProfileDetail, ProfileOut, ProfileUpdate,
    ProjectCreate, ProjectUpdate, ReviewCreate, RoundCreate, RoundUpdate,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Cofound",
    version="0.1.0",
    description=(
        "Marketplace API connecting founders, co-founder candidates and investors. "
        "Profiles, projects and open positions, applications, reviews, investment "
        "rounds, portfolios and MRR tracking. All endpoints return JSON."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Profiles", "description": "Founder and investor profiles with completion scoring."},
        {"name": "Auth", "description": "Current session and auth provider events."},
        {"name": "Projects", "description": "Projects and their open positions."},
        {"name": "Applications", "description": "Apply to positions; owners accept or reject."},
        {"name": "Members", "description": "Project team memberships."},
        {"name": "Reviews", "description": "Peer reviews and investor reviews."},
        {"name": "MRR", "description": "Monthly recurring revenue per project and dashboard totals."},
        {"name": "Rounds", "description": "Investment rounds and progress."},
        {"name": "Investments", "description": "Investments, portfolios and the investor dashboard."},
        {"name": "Webhooks", "description": "Payment provider subscription events."},
    ],
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_ERROR_STATUS = (
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (ValidationError, 400),
    (InvalidTransitionError, 409),
    (AuthError, 401),
)


@app.exception_handler(CofoundError)
async def cofound_error_handler(request: Request, exc: CofoundError):
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.exception_handler(WebhookError)
async def webhook_error_handler(request: Request, exc: WebhookError):
    log.error("Webhook error: %s", exc)
    return JSONResponse(
        status_code=400, content={"error": {"code": "WEBHOOK_ERROR", "message": str(exc)}},
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_or_404(session: Session, model, entity_id: str, label: str = "Entity"):
    obj = services.get_or_none(session, model, entity_id)
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


# ---------------------------------------------------------------------------
# Routes: Auth
# ---------------------------------------------------------------------------


class AuthEvent(BaseModel):
    event: str
    access_token: str


@app.get("/api/me", tags=["Auth"], summary="Current caller and profile")
async def me(ctx: SessionContext = Depends(current_session)):
    return ctx.as_dict()


@app.post("/api/auth/events", tags=["Auth"], summary="Apply an auth provider state change")
async def auth_event(body: AuthEvent, session: Session = Depends(db_session)):
    ctx = await get_session_manager().handle_event(session, body.event, body.access_token)
    return {"event": body.event, "session": ctx.as_dict() if ctx else None}


# ---------------------------------------------------------------------------
# Routes: Profiles
# ---------------------------------------------------------------------------


@app.get("/api/profiles", response_model=list[ProfileOut],
         tags=["Profiles"], summary="List profiles, optionally by type or search term")
async def list_profiles(
    user_type: str | None = Query(None), search: str | None = Query(None),
    session: Session = Depends(db_session),
):
    return [services.profile_summary(p) for p in services.list_profiles(
        session, user_type=user_type, search=search,
    )]


@app.get("/api/profiles/{profile_id}", response_model=ProfileDetail,
         tags=["Profiles"], summary="Profile with completion and formatted skills")
async def get_profile(profile_id: str, session: Session = Depends(db_session)):
    return services.profile_detail(_get_or_404(session, Profile, profile_id, "Profile"))


@app.put("/api/profiles/{profile_id}", response_model=ProfileDetail,
         tags=["Profiles"], summary="Update your own profile (partial update)")
async def update_profile(
    profile_id: str, body: ProfileUpdate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    profile = services.update_profile(session, ctx.user_id, profile_id, body)
    session.commit()
    return services.profile_detail(profile)


@app.get("/api/profiles/{profile_id}/completion", response_model=CompletionOut,
         tags=["Profiles"], summary="Profile completion score")
async def get_completion(profile_id: str, session: Session = Depends(db_session)):
    return services.profile_detail(_get_or_404(session, Profile, profile_id, "Profile"))["completion"]


@app.get("/api/profiles/{profile_id}/projects", tags=["Profiles", "Projects"],
         summary="Projects owned by a profile")
async def list_owned_projects(profile_id: str, session: Session = Depends(db_session)):
    return [services.project_summary(p, owner=False) for p in services.projects_by_owner(session, profile_id)]


@app.get("/api/profiles/{profile_id}/memberships", tags=["Profiles", "Members"],
         summary="Projects a profile is a member of")
async def list_memberships(profile_id: str, session: Session = Depends(db_session)):
    return [services.member_summary(m, project=True) for m in services.members_by_user(session, profile_id)]


@app.get("/api/profiles/{profile_id}/reviews", tags=["Profiles", "Reviews"],
         summary="Reviews about a profile")
async def list_reviews(profile_id: str, session: Session = Depends(db_session)):
    return [services.review_summary(r) for r in services.reviews_for_user(session, profile_id)]


@app.get("/api/profiles/{profile_id}/investor-reviews", tags=["Profiles", "Reviews"],
         summary="Investor reviews about an investor")
async def list_investor_reviews(profile_id: str, session: Session = Depends(db_session)):
    return [services.investor_review_summary(r) for r in services.investor_reviews_for(session, profile_id)]


# ---------------------------------------------------------------------------
# Routes: Projects & positions
# ---------------------------------------------------------------------------


@app.get("/api/projects", tags=["Projects"], summary="Browse projects")
async def list_projects(
    category: str | None = Query(None), search: str | None = Query(None),
    session: Session = Depends(db_session),
):
    return [services.project_summary(p) for p in services.list_projects(
        session, category=category, search=search,
    )]


@app.get("/api/projects/{project_id}", tags=["Projects"],
         summary="Project with owner, positions, members and open rounds")
async def get_project(project_id: str, session: Session = Depends(db_session)):
    return services.project_detail(_get_or_404(session, Project, project_id, "Project"))


@app.post("/api/projects", status_code=201, tags=["Projects"],
          summary="Create a project with its initial open positions")
async def create_project(
    body: ProjectCreate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    proj = services.create_project(session, ctx.user_id, body)
    session.commit()
    return services.project_detail(proj)


@app.put("/api/projects/{project_id}", tags=["Projects"], summary="Update project fields (owner only)")
async def update_project(
    project_id: str, body: ProjectUpdate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    proj = services.update_project(session, ctx.user_id, project_id, body)
    session.commit()
    return services.project_summary(proj)


@app.delete("/api/projects/{project_id}", tags=["Projects"], summary="Delete a project (owner only)")
async def delete_project(
    project_id: str,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    services.delete_project(session, ctx.user_id, project_id)
    session.commit()
    return {"ok": True}


@app.get("/api/positions", tags=["Projects"], summary="All open positions")
async def list_open_positions(session: Session = Depends(db_session)):
    return [services.position_summary(p, project=True) for p in services.list_open_positions(session)]


@app.get("/api/positions/{position_id}", tags=["Projects"], summary="Position with its project and owner")
async def get_position(position_id: str, session: Session = Depends(db_session)):
    return services.position_summary(_get_or_404(session, Position, position_id, "Position"), project=True)


@app.get("/api/projects/{project_id}/positions", tags=["Projects"], summary="Positions of a project")
async def list_positions(project_id: str, session: Session = Depends(db_session)):
    return [services.position_summary(p) for p in services.positions_by_project(session, project_id)]


@app.post("/api/projects/{project_id}/positions", status_code=201, tags=["Projects"],
          summary="Add a position (owner only)")
async def create_position(
    project_id: str, body: PositionCreate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    pos = services.create_position(session, ctx.user_id, project_id, body)
    session.commit()
    return services.position_summary(pos)


@app.put("/api/positions/{position_id}", tags=["Projects"], summary="Update a position (owner only)")
async def update_position(
    position_id: str, body: PositionUpdate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    pos = services.update_position(session, ctx.user_id, position_id, body)
    session.commit()
    return services.position_summary(pos)


@app.delete("/api/positions/{position_id}", tags=["Projects"], summary="Delete a position (owner only)")
async def delete_position(
    position_id: str,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    services.delete_position(session, ctx.user_id, position_id)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Applications & members
# ---------------------------------------------------------------------------


@app.post("/api/applications", status_code=201, tags=["Applications"],
          summary="Apply to an open position")
async def create_application(
    body: ApplicationCreate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    application = services.create_application(session, ctx.user_id, body)
    session.commit()
    return services.application_summary(application)


@app.get("/api/applications/mine", tags=["Applications"], summary="Your applications")
async def my_applications(
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    return [
        services.application_summary(a, position=True, project=True)
        for a in services.applications_by_applicant(session, ctx.user_id)
    ]


@app.get("/api/projects/{project_id}/applications", tags=["Applications"],
         summary="Applications to a project's positions (owner only)")
async def project_applications(
    project_id: str,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    return [
        services.application_summary(a, position=True, applicant=True)
        for a in services.applications_by_project(session, ctx.user_id, project_id)
    ]


@app.get("/api/positions/{position_id}/applications", tags=["Applications"],
         summary="Applications to one position (owner only)")
async def position_applications(
    position_id: str,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    return [
        services.application_summary(a, applicant=True)
        for a in services.applications_by_position(session, ctx.user_id, position_id)
    ]


@app.put("/api/applications/{application_id}/status", tags=["Applications"],
         summary="Accept or reject a pending application (owner only)")
async def update_application_status(
    application_id: str, body: ApplicationStatusUpdate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    application = services.transition_application(session, ctx.user_id, application_id, body.status)
    session.commit()
    return services.application_summary(application, position=True)


@app.post("/api/projects/{project_id}/members", status_code=201, tags=["Members"],
          summary="Add a team member directly (owner only)")
async def add_member(
    project_id: str, body: MemberCreate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    member = services.add_project_member(session, ctx.user_id, project_id, body.user_id, body.role)
    session.commit()
    return services.member_summary(member, user=True)


@app.get("/api/projects/{project_id}/members", tags=["Members"], summary="Members of a project")
async def list_members(project_id: str, session: Session = Depends(db_session)):
    return [
        services.member_summary(m, user=True, project=True)
        for m in services.members_by_project(session, project_id)
    ]


# ---------------------------------------------------------------------------
# Routes: Reviews
# ---------------------------------------------------------------------------


@app.post("/api/reviews", status_code=201, tags=["Reviews"], summary="Review another user")
async def create_review(
    body: ReviewCreate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    review = services.create_review(session, ctx.user_id, body)
    session.commit()
    return services.review_summary(review)


@app.post("/api/investor-reviews", status_code=201, tags=["Reviews"], summary="Review an investor")
async def create_investor_review(
    body: InvestorReviewCreate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    review = services.create_investor_review(session, ctx.user_id, body)
    session.commit()
    return services.investor_review_summary(review)


# ---------------------------------------------------------------------------
# Routes: MRR
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/mrr", tags=["MRR"], summary="Month-ordered MRR for a project")
async def project_mrr(project_id: str, session: Session = Depends(db_session)):
    rows = services.mrr_by_project(session, project_id)
    return {
        "project_id": project_id,
        "data": [services.mrr_point(r) for r in rows],
        "growth": metrics.mrr_growth([r.revenue for r in rows]),
    }


@app.post("/api/projects/{project_id}/mrr", status_code=201, tags=["MRR"],
          summary="Record a month's revenue (owner only)")
async def add_mrr(
    project_id: str, body: MRRCreate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    row = services.add_mrr(session, ctx.user_id, project_id, body)
    session.commit()
    return services.mrr_point(row)


@app.post("/api/projects/{project_id}/mrr/import", response_model=MRRImportResult,
          tags=["MRR"], summary="Import monthly revenue from an XLSX sheet (owner only)")
async def import_mrr(
    project_id: str, file: UploadFile = File(...),
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    if not file.filename or not file.filename.endswith(".xlsx"):
        raise HTTPException(400, "Only .xlsx files are supported")
    proj = _get_or_404(session, Project, project_id, "Project")
    if proj.owner_id != ctx.user_id:
        raise PermissionDeniedError("You do not have permission to record revenue for this project")
    content = await file.read()
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(suffix=".xlsx", delete=False) as f:
            tmp_path = Path(f.name)
            f.write(content)
        return import_mrr_xlsx(tmp_path, session, project_id)
    finally:
        if tmp_path:
            tmp_path.unlink(missing_ok=True)


@app.get("/api/mrr/dashboard", tags=["MRR"], summary="MRR series and totals for your projects")
async def mrr_dashboard(
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    return services.mrr_dashboard(session, ctx.user_id)


@app.get("/api/profiles/{profile_id}/mrr", tags=["MRR", "Profiles"],
         summary="MRR series for every project a user owns or belongs to")
async def user_mrr(profile_id: str, session: Session = Depends(db_session)):
    return services.mrr_by_user(session, profile_id)


# ---------------------------------------------------------------------------
# Routes: Rounds
# ---------------------------------------------------------------------------


@app.get("/api/rounds", tags=["Rounds"], summary="List rounds, optionally for one project")
async def list_rounds(project_id: str | None = Query(None), session: Session = Depends(db_session)):
    return [services.round_summary(r) for r in services.list_rounds(session, project_id)]


@app.get("/api/rounds/open", tags=["Rounds"], summary="Open rounds filtered by category and size")
async def list_open_rounds(
    category: str | None = Query(None),
    min_amount: int | None = Query(None, ge=0),
    max_amount: int | None = Query(None, ge=0),
    session: Session = Depends(db_session),
):
    rounds = services.list_open_rounds(
        session, category=category, min_amount=min_amount, max_amount=max_amount,
    )
    return [services.round_summary(r) for r in rounds]


@app.get("/api/rounds/{round_id}", tags=["Rounds"], summary="Round with progress and deadline")
async def get_round(round_id: str, session: Session = Depends(db_session)):
    return services.round_summary(_get_or_404(session, InvestmentRound, round_id, "Investment round"))


@app.post("/api/rounds", status_code=201, tags=["Rounds"], summary="Open a round (owner only)")
async def create_round(
    body: RoundCreate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    rnd = services.create_round(session, ctx.user_id, body)
    session.commit()
    return services.round_summary(rnd)


@app.put("/api/rounds/{round_id}", tags=["Rounds"], summary="Update a round (owner only)")
async def update_round(
    round_id: str, body: RoundUpdate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    rnd = services.update_round(session, ctx.user_id, round_id, body)
    session.commit()
    return services.round_summary(rnd)


# ---------------------------------------------------------------------------
# Routes: Investments
# ---------------------------------------------------------------------------


@app.get("/api/investments", tags=["Investments"], summary="List investments by round and/or investor")
async def list_investments(
    round_id: str | None = Query(None), investor_id: str | None = Query(None),
    session: Session = Depends(db_session),
):
    return [services.investment_summary(i) for i in services.list_investments(
        session, round_id=round_id, investor_id=investor_id,
    )]


@app.post("/api/investments", status_code=201, tags=["Investments"],
          summary="Commit to an open round (investors only)")
async def create_investment(
    body: InvestmentCreate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    inv = services.create_investment(session, ctx.user_id, body)
    session.commit()
    return services.investment_summary(inv)


@app.put("/api/investments/{investment_id}/status", tags=["Investments"],
         summary="Confirm a pending investment (project owner only)")
async def update_investment_status(
    investment_id: str, body: InvestmentStatusUpdate,
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    inv = services.transition_investment(session, ctx.user_id, investment_id, body.status)
    session.commit()
    return services.investment_summary(inv)


@app.get("/api/portfolio/{investor_id}", response_model=PortfolioOut,
         tags=["Investments"], summary="Confirmed investments with totals")
async def get_portfolio(investor_id: str, session: Session = Depends(db_session)):
    return services.get_investor_portfolio(session, investor_id)


@app.get("/api/dashboard/investor", tags=["Investments"],
         summary="Portfolio totals and the next open rounds")
async def investor_dashboard(
    ctx: SessionContext = Depends(current_session), session: Session = Depends(db_session),
):
    return services.investor_dashboard(session, ctx.user_id)


# ---------------------------------------------------------------------------
# Routes: Webhooks
# ---------------------------------------------------------------------------


@app.post("/api/webhooks/stripe", tags=["Webhooks"], summary="Subscription lifecycle events")
async def stripe_webhook(request: Request, session: Session = Depends(db_session)):
    settings = get_settings()
    payload = await request.body()
    webhooks.verify_signature(
        payload, request.headers.get("Stripe-Signature"), settings.stripe_webhook_secret,
        tolerance=settings.stripe_tolerance_seconds,
    )
    result = webhooks.handle_subscription_event(session, webhooks.parse_event(payload))
    session.commit()
    return result


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    uvicorn.run("cofound.app:app", host=settings.host, port=settings.port, reload=True)


if __name__ == "__main__":
    main()
