# forswags/routers/evaluations.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from forswags import auth, models, schemas
from forswags.database import get_db
from forswags.evaluations import (
    STATUS_COMPLETED,
    claim_evaluation,
    complete_evaluation,
    list_available,
)
from forswags.feature_gate import require_feature
from forswags.plans import FEATURE_EVALUATION_HISTORY

router = APIRouter(
    prefix="/evaluations",
    tags=["evaluations"],
    dependencies=[Depends(auth.get_current_user)],  # router-wide login requirement
)


# -------------------------------------------------
# COACH
# -------------------------------------------------
@router.get("/available", response_model=list[schemas.EvaluationOut])
def available_evaluations(
    db: Session = Depends(get_db),
    coach: models.User = Depends(auth.require_coach),
):
    return list_available(db)


@router.get("/assigned", response_model=list[schemas.EvaluationOut])
def assigned_evaluations(
    db: Session = Depends(get_db),
    coach: models.User = Depends(auth.require_coach),
):
    return db.scalars(
        select(models.Evaluation)
        .where(models.Evaluation.coach_id == coach.id)
        .order_by(models.Evaluation.claimed_at.desc())
    ).all()


@router.post("/{evaluation_id}/claim", response_model=schemas.EvaluationOut)
def claim(
    evaluation_id: int,
    db: Session = Depends(get_db),
    coach: models.User = Depends(auth.require_coach),
):
    return claim_evaluation(db, evaluation_id, coach.id)


@router.post("/{evaluation_id}/complete", response_model=schemas.EvaluationOut)
def complete(
    evaluation_id: int,
    payload: schemas.EvaluationCompleteIn,
    db: Session = Depends(get_db),
    coach: models.User = Depends(auth.require_coach),
):
    return complete_evaluation(db, evaluation_id, coach.id, feedback=payload.feedback, scores=payload.scores)


# -------------------------------------------------
# ATHLETE
# -------------------------------------------------
@router.get("/mine", response_model=list[schemas.EvaluationOut])
def my_evaluations(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    return db.scalars(
        select(models.Evaluation)
        .where(models.Evaluation.athlete_user_id == user.id)
        .order_by(models.Evaluation.purchased_at.desc())
    ).all()


@router.get("/history", response_model=list[schemas.EvaluationOut])
def evaluation_history(
    db: Session = Depends(get_db),
    user: models.User = Depends(require_feature(FEATURE_EVALUATION_HISTORY)),
):
    """Completed evaluations oldest first, for score progression charts."""
    return db.scalars(
        select(models.Evaluation)
        .where(
            models.Evaluation.athlete_user_id == user.id,
            models.Evaluation.status == STATUS_COMPLETED,
        )
        .order_by(models.Evaluation.completed_at.asc())
    ).all()
