# forswags/schemas.py
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

TierName = Literal["free", "pro_monthly", "championship_yearly"]
SubscriptionEvent = Literal["activated", "trial_started", "renewed", "cancelled", "expired", "payment_failed"]


# -----------------------------
# AUTH
# -----------------------------
class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: Optional[int] = None


class PasswordSetIn(BaseModel):
    token: str
    password: str = Field(min_length=8)


# -----------------------------
# FEATURES / MEMBERSHIP
# -----------------------------
class FeatureAccessOut(BaseModel):
    feature_key: str
    allowed: bool
    tier: str
    required_tier: Optional[str] = None
    reason: str = ""

    class Config:
        from_attributes = True


class MembershipStatusOut(BaseModel):
    """What the renewal banner reads."""
    tier: str
    status: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    needs_renewal: bool = False
    is_urgent: bool = False
    is_critical: bool = False
    days_until_renewal: Optional[int] = None


class MembershipOut(BaseModel):
    id: int
    user_id: int
    tier: str
    status: str
    start_date: datetime
    end_date: Optional[datetime] = None
    stripe_subscription_id: Optional[str] = None
    payment_failed_at: Optional[datetime] = None
    updated_at: datetime

    class Config:
        from_attributes = True


class AdminMembershipIn(BaseModel):
    """
    Admin override. Defaults to granting/adjusting an active membership;
    `event` lets support staff cancel or expire one as well.
    """
    tier: Optional[TierName] = None
    end_date: Optional[datetime] = None
    event: SubscriptionEvent = "activated"
    # removes an existing end_date (open-ended membership)
    clear_end_date: bool = False


# -----------------------------
# EVALUATIONS
# -----------------------------
class EvaluationOut(BaseModel):
    id: int
    athlete_user_id: int
    status: str
    coach_id: Optional[int] = None
    is_reevaluation: bool
    video_url: Optional[str] = None

    purchased_at: datetime
    claimed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    feedback: Optional[str] = None
    scores: Optional[dict[str, Any]] = None

    class Config:
        from_attributes = True


class EvaluationCompleteIn(BaseModel):
    feedback: str = Field(min_length=1)
    scores: Optional[dict[str, Any]] = None


class EvaluationAssignIn(BaseModel):
    coach_id: int


class StaleEvaluationOut(BaseModel):
    evaluation: EvaluationOut
    kind: Literal["unpicked", "uncompleted"]
    since: datetime


# -----------------------------
# COACH APPLICATIONS
# -----------------------------
class CoachApplicationIn(BaseModel):
    email: EmailStr
    full_name: str = Field(min_length=1)
    phone: Optional[str] = None

    coaching_background: str = Field(min_length=1)
    why_mentor: str = Field(min_length=1)
    experience_years: Optional[int] = Field(default=None, ge=0)
    certifications: Optional[str] = None
    specializations: list[str] = Field(default_factory=list)

    twitter_handle: Optional[str] = None
    instagram_handle: Optional[str] = None
    facebook_handle: Optional[str] = None
    tiktok_handle: Optional[str] = None


class CoachApplicationOut(BaseModel):
    id: int
    email: str
    full_name: str
    phone: Optional[str] = None

    coaching_background: str
    why_mentor: str
    experience_years: Optional[int] = None
    certifications: Optional[str] = None
    specializations: list[str] = Field(default_factory=list)

    twitter_handle: Optional[str] = None
    instagram_handle: Optional[str] = None
    facebook_handle: Optional[str] = None
    tiktok_handle: Optional[str] = None

    status: str
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApplicationReviewIn(BaseModel):
    admin_notes: Optional[str] = None


class ApprovalOut(BaseModel):
    application: CoachApplicationOut
    user_id: int


# -----------------------------
# NOTIFICATIONS
# -----------------------------
class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    message: str
    link: Optional[str] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True
