# forswags/email_templates.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional

ORG_NAME = "ForSWAGs"


class EmailTemplate(str, Enum):
    BADGE_EARNED = "badge_earned"
    EVAL_COMPLETE = "eval_complete"
    EVAL_STARTED = "eval_started"
    MEMBERSHIP_RENEWAL = "membership_renewal"
    PAYMENT_RECEIPT = "payment_receipt"
    PROFILE_VIEWED = "profile_viewed"
    COACH_WELCOME = "coach_welcome"
    NEW_EVALUATION_AVAILABLE = "new_evaluation_available"


@dataclass(frozen=True)
class EmailParts:
    subject: str
    body: str


def _clean(s: Optional[object]) -> str:
    return str(s if s is not None else "").strip()


def _line(label: str, value: Optional[object]) -> str:
    v = _clean(value) or "—"
    return f"{label}: {v}"


def _footer() -> str:
    return (
        "\n\n"
        "Regards,\n"
        f"The {ORG_NAME} Team\n"
        "Questions? Contact us at support@forswags.com\n"
    )


def _greeting(name: Optional[object]) -> str:
    return f"Hi {_clean(name) or 'there'},\n\n"


# -----------------------------
# Templates
# -----------------------------
def badge_earned(v: Mapping[str, object]) -> EmailParts:
    return EmailParts(
        subject="New Badge Unlocked!",
        body=(
            _greeting(v.get("name"))
            + f"You just earned the {_clean(v.get('badge_name')) or 'new'} badge. Keep it up!\n\n"
            + _line("View your badges", v.get("badges_url"))
            + _footer()
        ),
    )


def eval_complete(v: Mapping[str, object]) -> EmailParts:
    return EmailParts(
        subject="Your Evaluation is Complete",
        body=(
            _greeting(v.get("athlete_name"))
            + f"{_clean(v.get('coach_name')) or 'Your coach'} has completed your evaluation. "
            "View your feedback and scores now.\n\n"
            + _line("Evaluation", v.get("evaluation_url"))
            + _footer()
        ),
    )


def eval_started(v: Mapping[str, object]) -> EmailParts:
    return EmailParts(
        subject="Your Evaluation Has Started",
        body=(
            _greeting(v.get("athlete_name"))
            + f"{_clean(v.get('coach_name')) or 'A coach'} has started reviewing your evaluation.\n\n"
            + _line("Evaluation", v.get("evaluation_url"))
            + _footer()
        ),
    )


def membership_renewal(v: Mapping[str, object]) -> EmailParts:
    days = _clean(v.get("days_until_renewal")) or "a few"
    plural = "" if days == "1" else "s"
    return EmailParts(
        subject=f"Your {ORG_NAME} Membership Expires in {days} Day{plural}",
        body=(
            _greeting(v.get("full_name"))
            + f"Your {ORG_NAME} {_clean(v.get('tier'))} membership will expire in {days} day{plural} "
            f"on {_clean(v.get('end_date')) or '—'}.\n\n"
            "To continue enjoying all premium features, please renew your membership.\n\n"
            + _line("Renew now", v.get("renew_url"))
            + _footer()
        ),
    )


def payment_receipt(v: Mapping[str, object]) -> EmailParts:
    return EmailParts(
        subject=f"Payment Receipt - {ORG_NAME}",
        body=(
            _greeting(v.get("full_name"))
            + "Thank you for your payment.\n\n"
            + f"{_line('Item', v.get('item'))}\n"
            + f"{_line('Amount', v.get('amount'))}\n"
            + _line("Reference", v.get("reference"))
            + _footer()
        ),
    )


def profile_viewed(v: Mapping[str, object]) -> EmailParts:
    return EmailParts(
        subject="Your Profile Was Viewed",
        body=(
            _greeting(v.get("athlete_name"))
            + f"{_clean(v.get('viewer')) or 'A recruiter'} viewed your profile.\n\n"
            + _line("Profile", v.get("profile_url"))
            + _footer()
        ),
    )


def coach_welcome(v: Mapping[str, object]) -> EmailParts:
    return EmailParts(
        subject=f"Welcome to {ORG_NAME} - Set Your Password",
        body=(
            _greeting(v.get("full_name"))
            + "Your coach application was approved and your account is ready.\n\n"
            "Use the link below to set your password and sign in:\n"
            f"{_clean(v.get('password_setup_url')) or '—'}\n\n"
            "This link expires, so please use it soon."
            + _footer()
        ),
    )


def new_evaluation_available(v: Mapping[str, object]) -> EmailParts:
    return EmailParts(
        subject="New Evaluation Available",
        body=(
            _greeting(v.get("coach_name"))
            + "A new athlete evaluation is waiting to be claimed.\n\n"
            + _line("Available evaluations", v.get("evaluations_url"))
            + _footer()
        ),
    )


RENDERERS: dict[EmailTemplate, Callable[[Mapping[str, object]], EmailParts]] = {
    EmailTemplate.BADGE_EARNED: badge_earned,
    EmailTemplate.EVAL_COMPLETE: eval_complete,
    EmailTemplate.EVAL_STARTED: eval_started,
    EmailTemplate.MEMBERSHIP_RENEWAL: membership_renewal,
    EmailTemplate.PAYMENT_RECEIPT: payment_receipt,
    EmailTemplate.PROFILE_VIEWED: profile_viewed,
    EmailTemplate.COACH_WELCOME: coach_welcome,
    EmailTemplate.NEW_EVALUATION_AVAILABLE: new_evaluation_available,
}


def render(template: EmailTemplate | str, variables: Optional[Mapping[str, object]] = None) -> EmailParts:
    """Raises ValueError for a template outside the catalog."""
    return RENDERERS[EmailTemplate(template)](variables or {})
