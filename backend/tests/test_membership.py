"""
Membership lifecycle: renewal flags, subscription events, expiry and
idempotent renewal reminders.
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from forswags import membership as lifecycle
from forswags import models
from forswags.membership import (
    apply_subscription_event,
    evaluate_status,
    expire_lapsed_memberships,
    send_renewal_reminders,
)
from forswags.plans import TIER_CHAMPIONSHIP_YEARLY, TIER_FREE, TIER_PRO_MONTHLY


def _membership(tier, end_date):
    return models.Membership(tier=tier, status="active", end_date=end_date)


# -------------------------------------------------
# evaluate_status
# -------------------------------------------------
@pytest.mark.parametrize(
    "days, needs, urgent, critical",
    [
        (10, False, False, False),
        (8, False, False, False),
        (7, True, True, False),
        (4, True, True, False),
        (3, True, False, True),
        (1, True, False, True),
    ],
)
def test_renewal_flags_by_days_left(now, days, needs, urgent, critical):
    status = evaluate_status(_membership(TIER_PRO_MONTHLY, now + timedelta(days=days)), now)

    assert status.days_until_renewal == days
    assert status.needs_renewal is needs
    assert status.is_urgent is urgent
    assert status.is_critical is critical
    assert not (status.is_urgent and status.is_critical)


def test_partial_days_round_up(now):
    status = evaluate_status(_membership(TIER_PRO_MONTHLY, now + timedelta(days=7, hours=1)), now)
    assert status.days_until_renewal == 8
    assert status.needs_renewal is False


def test_already_past_end_is_critical(now):
    status = evaluate_status(_membership(TIER_PRO_MONTHLY, now - timedelta(days=1)), now)
    assert status.is_critical is True
    assert status.needs_renewal is True


@pytest.mark.parametrize(
    "membership",
    [
        None,
        models.Membership(tier=TIER_FREE, status="active", end_date=None),
        models.Membership(tier=TIER_PRO_MONTHLY, status="active", end_date=None),
    ],
)
def test_nothing_to_renew(now, membership):
    status = evaluate_status(membership, now)
    assert status.needs_renewal is False
    assert status.is_urgent is False
    assert status.is_critical is False


def test_free_tier_with_end_date_never_needs_renewal(now):
    status = evaluate_status(_membership(TIER_FREE, now + timedelta(days=2)), now)
    assert status.needs_renewal is False


def test_evaluate_status_is_pure(now):
    m = _membership(TIER_CHAMPIONSHIP_YEARLY, now + timedelta(days=5))
    assert evaluate_status(m, now) == evaluate_status(m, now)


# -------------------------------------------------
# apply_subscription_event
# -------------------------------------------------
def test_first_activation_creates_membership(db, make_user, now):
    user = make_user("newpro@example.com")
    m = apply_subscription_event(
        db, user.id, "activated", tier=TIER_PRO_MONTHLY, end_date=now + timedelta(days=30), now=now
    )

    assert m.id is not None
    assert m.status == "active"
    assert m.tier == TIER_PRO_MONTHLY
    assert m.start_date == now


def test_at_most_one_active_row_per_user(db, make_user, make_membership, now):
    user = make_user("upgrader@example.com")
    old = make_membership(user, TIER_PRO_MONTHLY, status="cancelled", start_date=now - timedelta(days=60))
    current = make_membership(user, TIER_PRO_MONTHLY, status="trialing")

    m = apply_subscription_event(db, user.id, "activated", tier=TIER_CHAMPIONSHIP_YEARLY, now=now)

    active = db.scalars(
        select(models.Membership).where(
            models.Membership.user_id == user.id,
            models.Membership.status.in_(("active", "trialing")),
        )
    ).all()
    assert [r.id for r in active] == [current.id]
    assert m.id == current.id
    assert m.tier == TIER_CHAMPIONSHIP_YEARLY

    # history is kept
    total = db.scalar(select(func.count(models.Membership.id)).where(models.Membership.user_id == user.id))
    assert total == 2
    db.refresh(old)
    assert old.status == "cancelled"


def test_store_rejects_a_second_entitled_row(db, make_user, make_membership):
    user = make_user("double@example.com")
    make_membership(user, TIER_PRO_MONTHLY, status="active")

    with pytest.raises(IntegrityError):
        make_membership(user, TIER_CHAMPIONSHIP_YEARLY, status="trialing")
    db.rollback()

    # non-entitled rows are unrestricted
    make_membership(user, TIER_PRO_MONTHLY, status="cancelled")
    make_membership(user, TIER_PRO_MONTHLY, status="expired")


def test_concurrent_first_activation_updates_the_winner(db, make_user, make_membership, now, monkeypatch):
    user = make_user("racer@example.com")
    winner = make_membership(user, TIER_PRO_MONTHLY, status="active")

    real_current = lifecycle.current_membership
    calls = []

    def _stale_first_read(db_, uid):
        # this writer read "no membership" before the other one committed
        calls.append(uid)
        return None if len(calls) == 1 else real_current(db_, uid)

    monkeypatch.setattr(lifecycle, "current_membership", _stale_first_read)

    m = apply_subscription_event(
        db, user.id, "activated", tier=TIER_CHAMPIONSHIP_YEARLY,
        stripe_subscription_id="sub_late", now=now,
    )

    assert m.id == winner.id
    assert m.tier == TIER_CHAMPIONSHIP_YEARLY
    assert m.stripe_subscription_id == "sub_late"
    assert db.scalar(select(func.count(models.Membership.id)).where(models.Membership.user_id == user.id)) == 1


def test_activation_without_end_date_keeps_existing_one(db, make_user, make_membership, now):
    user = make_user("keeper@example.com")
    ends = now + timedelta(days=20)
    make_membership(user, TIER_PRO_MONTHLY, end_date=ends)

    m = apply_subscription_event(db, user.id, "activated", tier=TIER_CHAMPIONSHIP_YEARLY, now=now)
    assert m.end_date == ends

    m = apply_subscription_event(db, user.id, "activated", clear_end_date=True, now=now)
    assert m.end_date is None
    assert m.tier == TIER_CHAMPIONSHIP_YEARLY


def test_cancel_for_superseded_subscription_is_ignored(db, make_user, now):
    user = make_user("switcher@example.com")
    apply_subscription_event(db, user.id, "activated", tier=TIER_PRO_MONTHLY, stripe_subscription_id="sub_A", now=now)
    apply_subscription_event(
        db, user.id, "activated", tier=TIER_CHAMPIONSHIP_YEARLY, stripe_subscription_id="sub_B", now=now
    )

    assert apply_subscription_event(db, user.id, "cancelled", stripe_subscription_id="sub_A", now=now) is None
    assert apply_subscription_event(db, user.id, "payment_failed", stripe_subscription_id="sub_A", now=now) is None

    current = db.scalar(
        select(models.Membership).where(models.Membership.user_id == user.id, models.Membership.status == "active")
    )
    assert current.tier == TIER_CHAMPIONSHIP_YEARLY
    assert current.payment_failed_at is None

    m = apply_subscription_event(db, user.id, "cancelled", stripe_subscription_id="sub_B", now=now)
    assert m.status == "cancelled"


def test_cancel_and_payment_failed(db, make_user, make_membership, now):
    user = make_user("canceller@example.com")
    make_membership(user, TIER_PRO_MONTHLY)

    m = apply_subscription_event(db, user.id, "payment_failed", now=now)
    assert m.payment_failed_at == now
    assert m.status == "active"

    m = apply_subscription_event(db, user.id, "cancelled", now=now)
    assert m.status == "cancelled"

    # nothing left to act on
    assert apply_subscription_event(db, user.id, "expired", now=now) is None


def test_unknown_event_rejected(db, make_user):
    user = make_user("x@example.com")
    with pytest.raises(ValueError):
        apply_subscription_event(db, user.id, "refunded")


def test_trial_then_renew_keeps_start(db, make_user, now):
    user = make_user("trialist@example.com")
    first = apply_subscription_event(db, user.id, "trial_started", tier=TIER_PRO_MONTHLY, now=now)
    assert first.status == "trialing"

    later = now + timedelta(days=14)
    renewed = apply_subscription_event(
        db, user.id, "renewed", start_date=later, end_date=later + timedelta(days=30), now=later
    )
    assert renewed.id == first.id
    assert renewed.status == "active"
    assert renewed.start_date == now
    assert renewed.end_date == later + timedelta(days=30)


# -------------------------------------------------
# Scheduled jobs
# -------------------------------------------------
def test_expire_lapsed_memberships(db, make_user, make_membership, now):
    lapsed = make_user("lapsed@example.com")
    current = make_user("current@example.com")
    open_ended = make_user("openended@example.com")
    make_membership(lapsed, TIER_PRO_MONTHLY, end_date=now - timedelta(hours=1))
    make_membership(current, TIER_PRO_MONTHLY, end_date=now + timedelta(days=3))
    make_membership(open_ended, TIER_PRO_MONTHLY, end_date=None)

    assert expire_lapsed_memberships(db, now=now) == [lapsed.id]
    assert expire_lapsed_memberships(db, now=now) == []


def test_reminder_sent_once_per_bucket(db, make_user, make_membership, now, sender):
    user = make_user("renewme@example.com", full_name="Jordan Lee")
    m = make_membership(user, TIER_PRO_MONTHLY, end_date=now + timedelta(days=30))

    first = send_renewal_reminders(db, now=now, send_email=sender)
    second = send_renewal_reminders(db, now=now, send_email=sender)

    assert first["reminders_sent"] == 1
    assert second["reminders_sent"] == 0
    assert len(sender.sent) == 1
    assert sender.sent[0]["to"] == "renewme@example.com"
    assert "30 Days" in sender.sent[0]["subject"]

    rows = db.scalars(
        select(models.MembershipRenewalReminder).where(models.MembershipRenewalReminder.membership_id == m.id)
    ).all()
    assert [r.reminder_type for r in rows] == ["30_days"]


def test_each_bucket_fires_on_its_day(db, make_user, make_membership, now, sender):
    user = make_user("buckets@example.com")
    m = make_membership(user, TIER_CHAMPIONSHIP_YEARLY, end_date=now + timedelta(days=30))

    for day_offset in range(0, 30):
        send_renewal_reminders(db, now=now + timedelta(days=day_offset), send_email=sender)

    types = sorted(
        db.scalars(
            select(models.MembershipRenewalReminder.reminder_type).where(
                models.MembershipRenewalReminder.membership_id == m.id
            )
        ).all()
    )
    assert types == ["1_day", "30_days", "7_days"]
    assert len(sender.sent) == 3


def test_no_reminder_outside_buckets_or_for_free(db, make_user, make_membership, now, sender):
    mid = make_user("mid@example.com")
    free = make_user("free@example.com")
    make_membership(mid, TIER_PRO_MONTHLY, end_date=now + timedelta(days=15))
    make_membership(free, TIER_FREE, end_date=now + timedelta(days=7))

    result = send_renewal_reminders(db, now=now, send_email=sender)
    assert result["reminders_sent"] == 0
    assert sender.sent == []


def test_failed_reminder_send_goes_to_outbox(db, make_user, make_membership, now, failing_sender):
    user = make_user("bounce@example.com")
    make_membership(user, TIER_PRO_MONTHLY, end_date=now + timedelta(days=7))

    send_renewal_reminders(db, now=now, send_email=failing_sender)
    send_renewal_reminders(db, now=now, send_email=failing_sender)

    outbox = db.scalars(select(models.EmailOutbox)).all()
    assert len(outbox) == 1
    assert outbox[0].template == "membership_renewal"
    assert outbox[0].status == "pending"
