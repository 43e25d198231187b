"""
Evaluation workflow: exclusive claims, assigned-coach completion and
advisory staleness alerts.
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from forswags import auth, models
from forswags.database import SessionLocal
from forswags.errors import AuthorizationError, ConflictError, NotFoundError
from forswags.evaluations import (
    assign_evaluation,
    check_stale_evaluations,
    claim_evaluation,
    complete_evaluation,
    create_evaluation,
    find_stale_evaluations,
    list_available,
)


@pytest.fixture
def athlete(make_user):
    return make_user("athlete@example.com", roles=(auth.ROLE_ATHLETE,), full_name="Riley Athlete")


def _coach(db, make_user, email, name, active=True):
    user = make_user(email, roles=(auth.ROLE_COACH,), full_name=name)
    db.add(models.CoachProfile(user_id=user.id, full_name=name, is_active=active))
    db.commit()
    return user


@pytest.fixture
def coach(db, make_user):
    return _coach(db, make_user, "coach1@example.com", "Coach One")


@pytest.fixture
def other_coach(db, make_user):
    return _coach(db, make_user, "coach2@example.com", "Coach Two")


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", roles=(auth.ROLE_ADMIN,), full_name="Ada Admin")


def _admin_alerts(db, admin_id):
    return db.scalars(
        select(models.Notification).where(
            models.Notification.user_id == admin_id,
            models.Notification.type == "admin_action",
        )
    ).all()


# -------------------------------------------------
# Creation
# -------------------------------------------------
def test_create_is_idempotent_on_payment_reference(db, athlete, coach, now):
    first = create_evaluation(db, athlete.id, payment_reference="cs_123", now=now)
    again = create_evaluation(db, athlete.id, payment_reference="cs_123", now=now)

    assert first.id == again.id
    assert first.status == "pending"
    assert first.coach_id is None
    assert db.scalar(select(func.count(models.Evaluation.id))) == 1

    # coaches hear about it once
    notes = db.scalars(select(models.Notification).where(models.Notification.user_id == coach.id)).all()
    assert len(notes) == 1
    assert notes[0].type == "new_evaluation"


def test_create_for_missing_athlete(db):
    with pytest.raises(NotFoundError):
        create_evaluation(db, 9999, payment_reference="cs_missing")


def test_new_evaluation_reaches_active_coaches_only(db, athlete, coach, make_user, now, sender):
    _coach(db, make_user, "benched@example.com", "Benched Coach", active=False)
    make_user("roleonly@example.com", roles=(auth.ROLE_COACH,))

    create_evaluation(db, athlete.id, payment_reference="cs_fanout", now=now, send_email=sender)

    assert [m["to"] for m in sender.sent] == ["coach1@example.com"]
    assert sender.sent[0]["subject"] == "New Evaluation Available"
    assert "Coach One" in sender.sent[0]["body"]
    assert "/coach/available-evaluations" in sender.sent[0]["body"]

    notified = db.scalars(
        select(models.Notification.user_id).where(models.Notification.type == "new_evaluation")
    ).all()
    assert notified == [coach.id]

    # replayed verification does not notify again
    create_evaluation(db, athlete.id, payment_reference="cs_fanout", now=now, send_email=sender)
    assert len(sender.sent) == 1


def test_new_evaluation_email_failure_is_queued(db, athlete, coach, now, failing_sender):
    ev = create_evaluation(db, athlete.id, now=now, send_email=failing_sender)

    assert ev.status == "pending"
    queued = db.scalar(select(models.EmailOutbox))
    assert queued.template == "new_evaluation_available"
    assert queued.to_email == "coach1@example.com"


# -------------------------------------------------
# Claim
# -------------------------------------------------
def test_claim_moves_to_in_progress(db, athlete, coach, now, sender):
    ev = create_evaluation(db, athlete.id, now=now)
    claimed = claim_evaluation(db, ev.id, coach.id, now=now, send_email=sender)

    assert claimed.status == "in_progress"
    assert claimed.coach_id == coach.id
    assert claimed.claimed_at == now
    assert list_available(db) == []

    assert len(sender.sent) == 1
    assert sender.sent[0]["to"] == "athlete@example.com"
    assert "Coach One" in sender.sent[0]["body"]


def test_second_claim_loses(db, athlete, coach, other_coach, now, sender):
    ev = create_evaluation(db, athlete.id, now=now)

    other = SessionLocal()
    try:
        # both coaches saw it in their list
        assert [e.id for e in list_available(other)] == [ev.id]

        claim_evaluation(db, ev.id, coach.id, now=now, send_email=sender)
        with pytest.raises(ConflictError) as exc:
            claim_evaluation(other, ev.id, other_coach.id, now=now, send_email=sender)
        assert exc.value.code == "ALREADY_CLAIMED"
    finally:
        other.close()

    db.refresh(ev)
    assert ev.coach_id == coach.id


def test_same_coach_cannot_claim_twice(db, athlete, coach, now, sender):
    ev = create_evaluation(db, athlete.id, now=now)
    claim_evaluation(db, ev.id, coach.id, now=now, send_email=sender)

    with pytest.raises(ConflictError):
        claim_evaluation(db, ev.id, coach.id, now=now, send_email=sender)


def test_claim_of_completed_is_invalid_state(db, athlete, coach, other_coach, now, sender):
    ev = create_evaluation(db, athlete.id, now=now)
    claim_evaluation(db, ev.id, coach.id, now=now, send_email=sender)
    complete_evaluation(db, ev.id, coach.id, feedback="Solid", now=now, send_email=sender)

    with pytest.raises(ConflictError) as exc:
        claim_evaluation(db, ev.id, other_coach.id, now=now, send_email=sender)
    assert exc.value.code == "INVALID_STATE"


def test_claim_missing_evaluation(db, coach):
    with pytest.raises(NotFoundError):
        claim_evaluation(db, 404, coach.id)


# -------------------------------------------------
# Complete
# -------------------------------------------------
def test_complete_by_assigned_coach(db, athlete, coach, now, sender):
    ev = create_evaluation(db, athlete.id, now=now)
    claim_evaluation(db, ev.id, coach.id, now=now, send_email=sender)

    done = complete_evaluation(
        db, ev.id, coach.id, feedback="Great release", scores={"speed": 8}, now=now, send_email=sender
    )

    assert done.status == "completed"
    assert done.completed_at == now
    assert done.scores == {"speed": 8}

    note = db.scalar(
        select(models.Notification).where(
            models.Notification.user_id == athlete.id,
            models.Notification.type == "evaluation_complete",
        )
    )
    assert note is not None
    assert note.title == "Evaluation Complete!"
    assert "Coach One" in note.message
    assert sender.sent[-1]["subject"] == "Your Evaluation is Complete"


def test_complete_by_other_coach_is_rejected(db, athlete, coach, other_coach, now, sender):
    ev = create_evaluation(db, athlete.id, now=now)
    claim_evaluation(db, ev.id, coach.id, now=now, send_email=sender)

    with pytest.raises(AuthorizationError) as exc:
        complete_evaluation(db, ev.id, other_coach.id, feedback="not mine", now=now, send_email=sender)
    assert exc.value.code == "NOT_ASSIGNED"

    db.refresh(ev)
    assert ev.status == "in_progress"


def test_complete_before_claim_is_invalid_state(db, athlete, coach, now, sender):
    ev = create_evaluation(db, athlete.id, now=now)
    with pytest.raises(ConflictError) as exc:
        complete_evaluation(db, ev.id, coach.id, feedback="early", now=now, send_email=sender)
    assert exc.value.code == "INVALID_STATE"


def test_completion_survives_notification_failure(db, athlete, coach, now, sender, raising_sender):
    ev = create_evaluation(db, athlete.id, now=now, send_email=sender)
    claim_evaluation(db, ev.id, coach.id, now=now, send_email=raising_sender)

    done = complete_evaluation(db, ev.id, coach.id, feedback="ok", now=now, send_email=raising_sender)
    assert done.status == "completed"

    queued = db.scalars(select(models.EmailOutbox.template).order_by(models.EmailOutbox.id)).all()
    assert queued == ["eval_started", "eval_complete"]


# -------------------------------------------------
# Staleness
# -------------------------------------------------
def test_stale_alerts_are_not_repeated(db, athlete, coach, admin, now, sender):
    unpicked = create_evaluation(db, athlete.id, now=now - timedelta(hours=49))
    slow = create_evaluation(db, athlete.id, now=now - timedelta(hours=60))
    claim_evaluation(db, slow.id, coach.id, now=now - timedelta(hours=50), send_email=sender)
    create_evaluation(db, athlete.id, now=now - timedelta(hours=2))

    first = check_stale_evaluations(db, now=now)
    second = check_stale_evaluations(db, now=now + timedelta(hours=1))

    assert first == {"unpicked": 1, "uncompleted": 1, "notifications_created": 2}
    assert second["notifications_created"] == 0

    alerts = _admin_alerts(db, admin.id)
    assert len(alerts) == 2
    titles = sorted(a.title for a in alerts)
    assert titles == ["Stale Evaluation - Not Completed", "Stale Evaluation - Not Picked Up"]
    assert all(a.link == "/admin/evaluations" for a in alerts)

    # advisory only
    db.refresh(unpicked)
    db.refresh(slow)
    assert unpicked.status == "pending"
    assert slow.status == "in_progress"


def test_staleness_without_admins_records_nothing(db, athlete, now):
    create_evaluation(db, athlete.id, now=now - timedelta(hours=72))

    result = check_stale_evaluations(db, now=now)
    assert result["unpicked"] == 1
    assert result["notifications_created"] == 0
    assert db.scalar(select(func.count(models.StaleEvaluationAlert.id))) == 0


def test_stale_alert_is_retried_when_notifications_fail(db, athlete, admin, now, monkeypatch):
    create_evaluation(db, athlete.id, now=now - timedelta(hours=72))

    def _broken(**kwargs):
        raise RuntimeError("notifications table unavailable")

    monkeypatch.setattr(models, "Notification", _broken)
    first = check_stale_evaluations(db, now=now)
    monkeypatch.undo()

    assert first["notifications_created"] == 0
    assert db.scalar(select(func.count(models.StaleEvaluationAlert.id))) == 0

    second = check_stale_evaluations(db, now=now + timedelta(hours=1))
    assert second["notifications_created"] == 1
    assert len(_admin_alerts(db, admin.id)) == 1
    assert db.scalar(select(func.count(models.StaleEvaluationAlert.id))) == 1


def test_reassignment_restarts_the_clock(db, athlete, coach, other_coach, admin, now, sender):
    ev = create_evaluation(db, athlete.id, now=now - timedelta(hours=100))
    claim_evaluation(db, ev.id, coach.id, now=now - timedelta(hours=90), send_email=sender)
    check_stale_evaluations(db, now=now)
    assert len(_admin_alerts(db, admin.id)) == 1

    assigned = assign_evaluation(db, ev.id, other_coach.id, admin_id=admin.id, now=now)
    assert assigned.coach_id == other_coach.id
    assert assigned.status == "in_progress"
    assert find_stale_evaluations(db, now=now) == []

    later = now + timedelta(hours=49)
    check_stale_evaluations(db, now=later)
    assert len(_admin_alerts(db, admin.id)) == 2

    coach_note = db.scalar(
        select(models.Notification).where(
            models.Notification.user_id == other_coach.id,
            models.Notification.type == "evaluation_assigned",
        )
    )
    assert coach_note is not None


def test_assign_rejects_non_coach_and_completed(db, athlete, coach, admin, now, sender):
    ev = create_evaluation(db, athlete.id, now=now)
    with pytest.raises(NotFoundError):
        assign_evaluation(db, ev.id, athlete.id, admin_id=admin.id, now=now)

    claim_evaluation(db, ev.id, coach.id, now=now, send_email=sender)
    complete_evaluation(db, ev.id, coach.id, feedback="done", now=now, send_email=sender)
    with pytest.raises(ConflictError):
        assign_evaluation(db, ev.id, coach.id, admin_id=admin.id, now=now)
