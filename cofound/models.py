from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from cofound.utils import new_id


class Base(DeclarativeBase):
    pass


def _id_column() -> Mapped[str]:
    return mapped_column(String(36), primary_key=True, default=new_id)


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = _id_column()
    email: Mapped[str] = mapped_column(String(300), default="")
    name: Mapped[str] = mapped_column(String(100), default="")
    bio: Mapped[str] = mapped_column(Text, default="")
    skills_json: Mapped[str] = mapped_column(Text, default="[]")
    experience: Mapped[str] = mapped_column(Text, default="")
    contact: Mapped[str] = mapped_column(String(300), default="")
    avatar_url: Mapped[str] = mapped_column(String(500), default="")
    average_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    user_type: Mapped[str] = mapped_column(String(20), default="founder")  # founder | investor
    # Extended profile
    professional_summary: Mapped[str] = mapped_column(Text, default="")
    location: Mapped[str] = mapped_column(String(100), default="")
    timezone: Mapped[str] = mapped_column(String(50), default="")
    availability_status: Mapped[str] = mapped_column(String(30), default="")
    skill_proficiencies_json: Mapped[str] = mapped_column(Text, default="{}")
    achievements_json: Mapped[str] = mapped_column(Text, default="[]")
    social_links_json: Mapped[str] = mapped_column(Text, default="{}")
    # Investor extras
    investment_focus_json: Mapped[str] = mapped_column(Text, default="[]")
    investment_range_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    investment_range_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    projects: Mapped[list[Project]] = relationship("Project", back_populates="owner")


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = _id_column()
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(100), default="")
    website: Mapped[str] = mapped_column(String(500), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    owner: Mapped[Profile] = relationship("Profile", back_populates="projects")
    positions: Mapped[list[Position]] = relationship(
        "Position", back_populates="project", cascade="all, delete-orphan",
    )
    members: Mapped[list[ProjectMember]] = relationship(
        "ProjectMember", back_populates="project", cascade="all, delete-orphan",
    )
    rounds: Mapped[list[InvestmentRound]] = relationship(
        "InvestmentRound", back_populates="project", cascade="all, delete-orphan",
    )
    mrr: Mapped[list[MRRData]] = relationship(
        "MRRData", back_populates="project", cascade="all, delete-orphan",
        order_by="MRRData.month",
    )
    subscriptions: Mapped[list[StripeSubscription]] = relationship(
        "StripeSubscription", back_populates="project", cascade="all, delete-orphan",
    )
    # Reviews outlive the project; deleting it clears their project_id.
    reviews: Mapped[list[Review]] = relationship("Review", back_populates="project")
    investor_reviews: Mapped[list[InvestorReview]] = relationship(
        "InvestorReview", back_populates="project",
    )


class Position(Base):
    __tablename__ = "positions"

    id: Mapped[str] = _id_column()
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    requirements: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="open")  # open | closed
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    project: Mapped[Project] = relationship("Project", back_populates="positions")
    applications: Mapped[list[Application]] = relationship(
        "Application", back_populates="position", cascade="all, delete-orphan",
    )


class Application(Base):
    __tablename__ = "applications"

    id: Mapped[str] = _id_column()
    position_id: Mapped[str] = mapped_column(String(36), ForeignKey("positions.id"), nullable=False)
    applicant_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    message: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending | accepted | rejected
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    position: Mapped[Position] = relationship("Position", back_populates="applications")
    applicant: Mapped[Profile] = relationship("Profile")


class ProjectMember(Base):
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)

    id: Mapped[str] = _id_column()
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(200), default="")
    joined_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    project: Mapped[Project] = relationship("Project", back_populates="members")
    user: Mapped[Profile] = relationship("Profile")


class Review(Base):
    __tablename__ = "reviews"

    id: Mapped[str] = _id_column()
    reviewer_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    reviewee_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    project_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True,
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    reviewer: Mapped[Profile] = relationship("Profile", foreign_keys=[reviewer_id])
    reviewee: Mapped[Profile] = relationship("Profile", foreign_keys=[reviewee_id])
    project: Mapped[Project | None] = relationship("Project", back_populates="reviews")


class InvestorReview(Base):
    __tablename__ = "investor_reviews"

    id: Mapped[str] = _id_column()
    reviewer_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    investor_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    project_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True,
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str] = mapped_column(Text, default="")
    helpful: Mapped[bool] = mapped_column(Boolean, default=False)
    responsive: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    reviewer: Mapped[Profile] = relationship("Profile", foreign_keys=[reviewer_id])
    investor: Mapped[Profile] = relationship("Profile", foreign_keys=[investor_id])
    project: Mapped[Project | None] = relationship("Project", back_populates="investor_reviews")


class MRRData(Base):
    __tablename__ = "mrr_data"
    __table_args__ = (UniqueConstraint("project_id", "month", name="uq_mrr_project_month"),)

    id: Mapped[str] = _id_column()
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM
    revenue: Mapped[int] = mapped_column(Integer, default=0)
    stripe_subscription_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    project: Mapped[Project] = relationship("Project", back_populates="mrr")


class InvestmentRound(Base):
    __tablename__ = "investment_rounds"

    id: Mapped[str] = _id_column()
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    round_name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_seeking: Mapped[int] = mapped_column(Integer, default=0)
    amount_raised: Mapped[int] = mapped_column(Integer, default=0)
    valuation: Mapped[int] = mapped_column(Integer, default=0)
    equity_offered: Mapped[float] = mapped_column(Float, default=0.0)
    min_investment: Mapped[int] = mapped_column(Integer, default=0)
    max_investment: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str] = mapped_column(Text, default="")
    terms: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="open")  # open | closed
    deadline: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    project: Mapped[Project] = relationship("Project", back_populates="rounds")
    investments: Mapped[list[Investment]] = relationship(
        "Investment", back_populates="round", cascade="all, delete-orphan",
    )


class Investment(Base):
    __tablename__ = "investments"

    id: Mapped[str] = _id_column()
    round_id: Mapped[str] = mapped_column(String(36), ForeignKey("investment_rounds.id"), nullable=False)
    investor_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    amount_invested: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending | confirmed
    notes: Mapped[str] = mapped_column(Text, default="")
    date: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    round: Mapped[InvestmentRound] = relationship("InvestmentRound", back_populates="investments")
    investor: Mapped[Profile] = relationship("Profile")


class StripeSubscription(Base):
    __tablename__ = "stripe_subscriptions"

    id: Mapped[str] = _id_column()
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    stripe_subscription_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    stripe_customer_id: Mapped[str] = mapped_column(String(100), default="")
    status: Mapped[str] = mapped_column(String(30), default="")
    amount: Mapped[int] = mapped_column(Integer, default=0)  # cents
    currency: Mapped[str] = mapped_column(String(10), default="usd")
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    project: Mapped[Project] = relationship("Project", back_populates="subscriptions")
