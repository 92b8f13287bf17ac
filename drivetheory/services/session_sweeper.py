"""Periodic clean-up of sessions nobody will come back to.

Finalizes exams past their deadline and simulations whose heartbeat went
silent. The same checks also run lazily whenever a session is fetched, so
the sweep only bounds how long an abandoned row stays active.

Scheduled by Celery beat (see ``drivetheory.core.celery_app``):

    celery -A drivetheory.core.celery_app worker --beat
"""
import logging
from typing import Callable, Dict
from celery import shared_task
from sqlalchemy.orm import Session
from drivetheory.core.database import SessionLocal
from drivetheory.features.exam.service import ExamService
from drivetheory.features.simulation.service import SimulationService

logger = logging.getLogger(__name__)


def sweep_once(session_factory: Callable[[], Session] = SessionLocal) -> Dict[str, int]:
    db = session_factory()
    try:
        exams = ExamService.expire_overdue_exams(db)
        simulations = SimulationService.expire_stale_simulations(db)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    if exams or simulations:
        logger.info("Sweep finalized %s overdue exams and %s stale simulations", exams, simulations)
    return {"exams": exams, "simulations": simulations}


@shared_task(name="drivetheory.services.session_sweeper.sweep_sessions")
def sweep_sessions() -> Dict[str, int]:
    return sweep_once(SessionLocal)
