# forswags/plans.py
from __future__ import annotations

from typing import Optional

TIER_FREE = "free"
TIER_PRO_MONTHLY = "pro_monthly"
TIER_CHAMPIONSHIP_YEARLY = "championship_yearly"

# Total order: free < pro_monthly < championship_yearly
TIER_ORDER: tuple[str, ...] = (TIER_FREE, TIER_PRO_MONTHLY, TIER_CHAMPIONSHIP_YEARLY)

# Only these statuses grant the membership's tier
ENTITLED_STATUSES = frozenset({"active", "trialing"})

# -------------------------------------------------
# Feature catalog (static; feature key -> minimum tier)
# -------------------------------------------------
FEATURE_PROFILE_BASICS = "profile_basics"
FEATURE_VIDEO_UPLOADS = "video_uploads"
FEATURE_COLLEGE_MATCHING = "college_matching"
FEATURE_PROFILE_ANALYTICS = "profile_analytics"
FEATURE_SOCIAL_CROSS_POSTING = "social_cross_posting"
FEATURE_AI_CAPTIONS = "ai_captions"
FEATURE_EVALUATION_HISTORY = "evaluation_history"
FEATURE_PRIME_DIME_ADVISOR = "prime_dime_advisor"
FEATURE_PRESS_RELEASE_GENERATOR = "press_release_generator"
FEATURE_MEDIA_PACK_DOWNLOAD = "media_pack_download"

FEATURES: dict[str, str] = {
    FEATURE_PROFILE_BASICS: TIER_FREE,
    FEATURE_VIDEO_UPLOADS: TIER_PRO_MONTHLY,
    FEATURE_COLLEGE_MATCHING: TIER_PRO_MONTHLY,
    FEATURE_PROFILE_ANALYTICS: TIER_PRO_MONTHLY,
    FEATURE_SOCIAL_CROSS_POSTING: TIER_PRO_MONTHLY,
    FEATURE_AI_CAPTIONS: TIER_PRO_MONTHLY,
    FEATURE_EVALUATION_HISTORY: TIER_PRO_MONTHLY,
    FEATURE_PRIME_DIME_ADVISOR: TIER_CHAMPIONSHIP_YEARLY,
    FEATURE_PRESS_RELEASE_GENERATOR: TIER_CHAMPIONSHIP_YEARLY,
    FEATURE_MEDIA_PACK_DOWNLOAD: TIER_CHAMPIONSHIP_YEARLY,
}


def normalize_tier(value: Optional[str]) -> str:
    t = (value or "").strip().lower()
    return t if t in TIER_ORDER else TIER_FREE


def tier_rank(tier: Optional[str]) -> int:
    return TIER_ORDER.index(normalize_tier(tier))


def tier_at_least(tier: Optional[str], minimum: str) -> bool:
    return tier_rank(tier) >= tier_rank(minimum)


def required_tier(feature_key: str) -> Optional[str]:
    """None for unknown keys; callers must treat that as denied."""
    return FEATURES.get((feature_key or "").strip())
