# forswags/models.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def utcnow() -> datetime:
    """Naive UTC, the convention for every stored datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """Identity record owned by the identity provider (see identity.py)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    # Free-form provider metadata (full_name, source="coach_application", application_id, ...)
    user_metadata: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    profile = relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    roles = relationship("UserRole", back_populates="user", cascade="all, delete-orphan")
    memberships = relationship("Membership", back_populates="user")


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(ForeignKey("users.id"), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User", back_populates="profile")


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    # Values: athlete | coach | recruiter | parent | admin
    role: Mapped[str] = mapped_column(String(20), nullable=False)

    user = relationship("User", back_populates="roles")


class Membership(Base):
    __tablename__ = "memberships"
    # at most one active/trialing row per user, enforced by the store
    __table_args__ = (
        Index(
            "uq_memberships_one_entitled",
            "user_id",
            unique=True,
            postgresql_where=text("status IN ('active', 'trialing')"),
            sqlite_where=text("status IN ('active', 'trialing')"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    # Values: free | pro_monthly | championship_yearly
    tier: Mapped[str] = mapped_column(String(30), nullable=False, default="free")
    # Values: active | trialing | cancelled | expired
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    start_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    # NULL means no expiry tracked
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    stripe_subscription_id: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)
    payment_failed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User", back_populates="memberships")
    reminders = relationship("MembershipRenewalReminder", back_populates="membership")


class MembershipRenewalReminder(Base):
    __tablename__ = "membership_renewal_reminders"
    # at most one reminder per (membership, bucket), even across overlapping job runs
    __table_args__ = (
        UniqueConstraint("membership_id", "reminder_type", name="uq_renewal_reminder_bucket"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    membership_id: Mapped[int] = mapped_column(ForeignKey("memberships.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    # Values: 30_days | 7_days | 1_day
    reminder_type: Mapped[str] = mapped_column(String(20), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    membership = relationship("Membership", back_populates="reminders")


class Evaluation(Base):
    __tablename__ = "evaluations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    athlete_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    # Values: pending | in_progress | completed
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)

    # coach_id is set iff claimed_at is set
    coach_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    payment_reference: Mapped[str | None] = mapped_column(String(120), unique=True, nullable=True)
    is_reevaluation: Mapped[bool] = mapped_column(Boolean, default=False)
    video_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    purchased_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    scores: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    athlete = relationship("User", foreign_keys=[athlete_user_id])
    coach = relationship("User", foreign_keys=[coach_id])


class StaleEvaluationAlert(Base):
    """Side-effect record so repeated staleness checks alert once per stall."""

    __tablename__ = "stale_evaluation_alerts"
    __table_args__ = (
        UniqueConstraint("evaluation_id", "kind", "since", name="uq_stale_alert"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    evaluation_id: Mapped[int] = mapped_column(ForeignKey("evaluations.id"), nullable=False, index=True)

    # Values: unpicked | uncompleted
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    # purchased_at for unpicked, claimed_at for uncompleted
    since: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class CoachApplication(Base):
    __tablename__ = "coach_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    coaching_background: Mapped[str] = mapped_column(Text, nullable=False)
    why_mentor: Mapped[str] = mapped_column(Text, nullable=False)
    experience_years: Mapped[int | None] = mapped_column(Integer, nullable=True)
    certifications: Mapped[str | None] = mapped_column(Text, nullable=True)
    specializations: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    twitter_handle: Mapped[str | None] = mapped_column(String(80), nullable=True)
    instagram_handle: Mapped[str | None] = mapped_column(String(80), nullable=True)
    facebook_handle: Mapped[str | None] = mapped_column(String(80), nullable=True)
    tiktok_handle: Mapped[str | None] = mapped_column(String(80), nullable=True)

    # Values: pending | approved | rejected (approved/rejected are terminal)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    reviewed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class CoachProfile(Base):
    __tablename__ = "coach_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    specializations: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    certifications: Mapped[str | None] = mapped_column(Text, nullable=True)
    experience_years: Mapped[int | None] = mapped_column(Integer, nullable=True)

    twitter_handle: Mapped[str | None] = mapped_column(String(80), nullable=True)
    instagram_handle: Mapped[str | None] = mapped_column(String(80), nullable=True)
    facebook_handle: Mapped[str | None] = mapped_column(String(80), nullable=True)
    tiktok_handle: Mapped[str | None] = mapped_column(String(80), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Notification(Base):
    """Never mutated after creation except for the consumer's dismissal flag."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    type: Mapped[str] = mapped_column(String(40), nullable=False)  # evaluation_complete / admin_action / ...
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(500), nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class EmailOutbox(Base):
    """Emails that failed their first send; retried by the email-outbox job."""

    __tablename__ = "email_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    to_email: Mapped[str] = mapped_column(String(255), nullable=False)
    template: Mapped[str] = mapped_column(String(60), nullable=False)
    variables: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Values: pending | sent | failed
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
