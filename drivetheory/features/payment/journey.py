"""
Funnel tracking stored under ``metadata["journey"]`` of a payment.

The journey only moves forward (initial -> exam_started ->
practice_completed -> exam_completed); counters accumulate on every
recorded activity. Callers own the transaction: nothing here commits.
"""
import copy
import logging
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from drivetheory.features.payment.entitlement import EntitlementService
from drivetheory.features.payment.model import Payment
from drivetheory.models.enums import JourneyStatus

logger = logging.getLogger(__name__)

_ORDER = list(JourneyStatus)

_STAGE_TIMESTAMPS = {
    JourneyStatus.EXAM_STARTED: "exam_started_at",
    JourneyStatus.PRACTICE_COMPLETED: "practice_completed_at",
    JourneyStatus.EXAM_COMPLETED: "exam_completed_at",
}


def new_journey(now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    return {
        "status": JourneyStatus.INITIAL.value,
        "last_activity_at": now.isoformat(),
        "total_questions_attempted": 0,
        "correct_answers": 0,
        "time_spent_minutes": 0,
    }


def apply_stage(
    journey: Optional[dict],
    stage: JourneyStatus,
    questions_attempted: int = 0,
    correct_answers: int = 0,
    minutes_spent: float = 0,
    now: Optional[datetime] = None,
) -> dict:
    """Return a new journey dict with the stage and counters applied"""
    now = now or datetime.now()
    journey = copy.deepcopy(journey) if journey else new_journey(now)

    current = JourneyStatus(journey.get("status", JourneyStatus.INITIAL.value))
    if _ORDER.index(stage) > _ORDER.index(current):
        journey["status"] = stage.value
    # a stage is stamped the first time it is reached, even when a later stage came first
    stamp_key = _STAGE_TIMESTAMPS.get(stage)
    if stamp_key and not journey.get(stamp_key):
        journey[stamp_key] = now.isoformat()

    journey["last_activity_at"] = now.isoformat()
    journey["total_questions_attempted"] = journey.get("total_questions_attempted", 0) + questions_attempted
    journey["correct_answers"] = journey.get("correct_answers", 0) + correct_answers
    journey["time_spent_minutes"] = round(journey.get("time_spent_minutes", 0) + minutes_spent, 2)
    return journey


def record_activity(
    db: Session,
    user_id: int,
    stage: JourneyStatus,
    questions_attempted: int = 0,
    correct_answers: int = 0,
    minutes_spent: float = 0,
) -> Optional[Payment]:
    """Advance the journey on the payment currently granting access, if any"""
    payment = EntitlementService.get_active_payment(db, user_id)
    if payment is None:
        return None

    meta = dict(payment.meta or {})
    meta["journey"] = apply_stage(
        meta.get("journey"),
        stage,
        questions_attempted=questions_attempted,
        correct_answers=correct_answers,
        minutes_spent=minutes_spent,
    )
    # JSON columns only notice reassignment
    payment.meta = meta
    logger.info(
        "Journey for payment %s (user_id=%s) is now %s", payment.id, user_id, meta["journey"]["status"]
    )
    return payment
