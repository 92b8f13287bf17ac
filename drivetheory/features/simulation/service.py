import hmac
import logging
from datetime import datetime, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from drivetheory.core.config import settings
from drivetheory.core.exceptions import (
    ActiveSimulationExistsError, ConflictError, InvalidAnswersError, PermissionDeniedError,
    QuestionBankEmptyError, RecoveryExpiredError, ServiceError, SessionCompletedError,
)
from drivetheory.features.exam.model import UNANSWERED
from drivetheory.features.exam.service import count_correct, percentage
from drivetheory.features.payment import journey
from drivetheory.features.question.service import QuestionService
from drivetheory.features.simulation.model import ExamSimulation, ExamSimulationLog, new_recovery_token
from drivetheory.features.simulation.schema import SimulationCreate
from drivetheory.models.enums import JourneyStatus, SimulationStatus
from typing import Optional, List

logger = logging.getLogger(__name__)


class SimulationService:
    """
    Practice sessions that move through their questions one at a time.

    A simulation is ``active`` from insertion until it is completed, either by
    the user, by advancing past the last question, or by being abandoned
    (no heartbeat for SIMULATION_STALE_MINUTES). Abandoned sessions end at
    their last activity, not at the moment the staleness is noticed.
    """

    @staticmethod
    def get_simulation_by_id(db: Session, simulation_id: int) -> Optional[ExamSimulation]:
        return db.query(ExamSimulation).filter(ExamSimulation.id == simulation_id).first()

    @staticmethod
    def get_user_simulations(db: Session, user_id: int) -> List[ExamSimulation]:
        return (
            db.query(ExamSimulation)
            .filter(ExamSimulation.user_id == user_id)
            .order_by(ExamSimulation.start_time.desc(), ExamSimulation.id.desc())
            .all()
        )

    @staticmethod
    def get_logs(db: Session, simulation_id: int) -> List[ExamSimulationLog]:
        return (
            db.query(ExamSimulationLog)
            .filter(ExamSimulationLog.simulation_id == simulation_id)
            .order_by(ExamSimulationLog.id.asc())
            .all()
        )

    @staticmethod
    def is_stale(simulation: ExamSimulation, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now()
        stale_after = timedelta(minutes=settings.SIMULATION_STALE_MINUTES)
        return not simulation.is_completed and now - simulation.last_active_at > stale_after

    @staticmethod
    def _finalize(db: Session, simulation: ExamSimulation, end_time: datetime, abandoned: bool = False):
        """Mark a simulation completed and score it; the caller commits"""
        questions = QuestionService.get_questions_in_order(db, simulation.questions)
        correct = count_correct(questions, simulation.answers)

        simulation.status = SimulationStatus.COMPLETED
        simulation.end_time = end_time
        simulation.score = percentage(correct, simulation.question_count)
        simulation.question_started_at = None

        if abandoned:
            logger.info(
                "Simulation %s abandoned: user_id=%s last_active_at=%s",
                simulation.id, simulation.user_id, simulation.last_active_at,
            )
            return

        attempted = sum(1 for a in simulation.answers if a != UNANSWERED)
        minutes = (end_time - simulation.start_time).total_seconds() / 60
        journey.record_activity(
            db, simulation.user_id, JourneyStatus.PRACTICE_COMPLETED,
            questions_attempted=attempted, correct_answers=correct, minutes_spent=minutes,
        )
        logger.info(
            "Simulation %s completed: user_id=%s score=%s correct=%s/%s",
            simulation.id, simulation.user_id, simulation.score, correct, simulation.question_count,
        )

    @staticmethod
    def expire_if_stale(db: Session, simulation: ExamSimulation) -> bool:
        if not SimulationService.is_stale(simulation):
            return False
        SimulationService._finalize(db, simulation, simulation.last_active_at, abandoned=True)
        db.commit()
        db.refresh(simulation)
        return True

    @staticmethod
    def expire_stale_simulations(db: Session) -> int:
        """Sweep: complete every simulation whose client stopped checking in"""
        cutoff = datetime.now() - timedelta(minutes=settings.SIMULATION_STALE_MINUTES)
        stale = (
            db.query(ExamSimulation)
            .filter(ExamSimulation.end_time == None, ExamSimulation.last_active_at < cutoff)
            .all()
        )
        for simulation in stale:
            SimulationService._finalize(db, simulation, simulation.last_active_at, abandoned=True)
        if stale:
            db.commit()
        return len(stale)

    @staticmethod
    def get_active_simulation(db: Session, user_id: int) -> Optional[ExamSimulation]:
        simulation = (
            db.query(ExamSimulation)
            .filter(ExamSimulation.user_id == user_id, ExamSimulation.end_time == None)
            .first()
        )
        if simulation and SimulationService.expire_if_stale(db, simulation):
            return None
        return simulation

    @staticmethod
    def active_check(db: Session, user_id: int) -> dict:
        simulation = SimulationService.get_active_simulation(db, user_id)
        if simulation is None:
            return {"active": False, "simulation_id": None, "recovery_token": None}
        return {"active": True, "simulation_id": simulation.id, "recovery_token": simulation.recovery_token}

    @staticmethod
    def start_simulation(db: Session, user_id: int, config: SimulationCreate) -> ExamSimulation:
        if SimulationService.get_active_simulation(db, user_id):
            raise ActiveSimulationExistsError("You already have an active simulation", user_id=user_id)

        if config.questions:
            question_ids = list(config.questions)
            known = set(QuestionService.get_question_ids(db))
            unknown = [qid for qid in question_ids if qid not in known]
            if unknown:
                raise ServiceError(f"Unknown question ids: {unknown}", user_id=user_id)
        else:
            question_ids = QuestionService.get_question_ids(db)
            if not question_ids:
                raise QuestionBankEmptyError("No questions are available yet", user_id=user_id)

        now = datetime.now()
        simulation = ExamSimulation(
            user_id=user_id,
            start_time=now,
            status=SimulationStatus.ACTIVE,
            questions=question_ids,
            answers=[UNANSWERED] * len(question_ids),
            current_question_index=0,
            question_started_at=now,
            time_per_question=config.time_per_question,
            show_feedback=config.show_feedback,
            show_timer=config.show_timer,
            allow_skip=config.allow_skip,
            allow_review=config.allow_review,
            last_active_at=now,
            recovery_token=new_recovery_token(),
            recovery_attempts=0,
        )
        db.add(simulation)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ActiveSimulationExistsError("You already have an active simulation", user_id=user_id)
        db.refresh(simulation)
        logger.info(
            "Simulation %s started: user_id=%s questions=%s", simulation.id, user_id, len(question_ids)
        )
        return simulation

    @staticmethod
    def _ensure_in_progress(db: Session, simulation: ExamSimulation):
        if simulation.is_completed:
            raise SessionCompletedError("Simulation is already completed", simulation_id=simulation.id)
        if SimulationService.expire_if_stale(db, simulation):
            raise RecoveryExpiredError(
                "Simulation expired after inactivity", simulation_id=simulation.id
            )

    @staticmethod
    def answer_question(
        db: Session, simulation: ExamSimulation, question_id: int, answer: int, time_spent: int = 0
    ) -> dict:
        """
        Record the answer for the current question.

        The log row and the answers update are committed together.
        """
        SimulationService._ensure_in_progress(db, simulation)

        index = simulation.current_question_index
        if question_id != simulation.current_question_id:
            raise ServiceError(
                "Question is not the current question of this simulation",
                simulation_id=simulation.id, question_id=question_id,
            )
        if simulation.answers[index] != UNANSWERED and not simulation.allow_review:
            raise ConflictError(
                "This question has already been answered", simulation_id=simulation.id
            )

        question = QuestionService.get_question_by_id(db, question_id)
        if question is None:
            raise ServiceError("Question no longer exists", simulation_id=simulation.id, question_id=question_id)
        if answer >= len(question.options):
            raise InvalidAnswersError("Answer is not one of the question's options", simulation_id=simulation.id)

        is_correct = answer == question.correct_answer
        db.add(ExamSimulationLog(
            simulation_id=simulation.id,
            user_id=simulation.user_id,
            question_id=question_id,
            question_index=index,
            time_spent=time_spent,
            is_correct=is_correct,
            answer=answer,
        ))
        answers = list(simulation.answers)
        answers[index] = answer
        simulation.answers = answers
        simulation.last_active_at = datetime.now()
        db.commit()

        result = {"is_correct": is_correct, "correct_answer": None}
        if simulation.show_feedback:
            result["correct_answer"] = question.correct_answer
        return result

    @staticmethod
    def advance(db: Session, simulation: ExamSimulation, timed_out: bool = False) -> ExamSimulation:
        """Move to the next question; moving past the last one completes the simulation"""
        SimulationService._ensure_in_progress(db, simulation)

        now = datetime.now()
        index = simulation.current_question_index
        unanswered = simulation.answers[index] == UNANSWERED
        timed_out = timed_out or simulation.question_timed_out(now)
        if unanswered and not simulation.allow_skip and not timed_out:
            raise ConflictError(
                "Skipping questions is disabled for this simulation", simulation_id=simulation.id
            )

        simulation.current_question_index = index + 1
        simulation.last_active_at = now
        if simulation.current_question_index >= simulation.question_count:
            SimulationService._finalize(db, simulation, now)
        else:
            simulation.question_started_at = now
        db.commit()
        db.refresh(simulation)
        if unanswered:
            logger.debug("Simulation %s skipped question index %s", simulation.id, index)
        return simulation

    @staticmethod
    def complete(db: Session, simulation: ExamSimulation) -> ExamSimulation:
        """Finish a session; one gone stale is closed as abandoned instead"""
        if simulation.is_completed:
            return simulation
        if SimulationService.expire_if_stale(db, simulation):
            return simulation
        SimulationService._finalize(db, simulation, datetime.now())
        db.commit()
        db.refresh(simulation)
        return simulation

    @staticmethod
    def _token_matches(simulation: ExamSimulation, token: str) -> bool:
        return bool(simulation.recovery_token) and hmac.compare_digest(simulation.recovery_token, token)

    @staticmethod
    def heartbeat(
        db: Session, simulation: ExamSimulation, recovery_token: str, time_remaining: Optional[int] = None
    ) -> ExamSimulation:
        if simulation.is_completed:
            raise SessionCompletedError("Simulation is already completed", simulation_id=simulation.id)
        if not SimulationService._token_matches(simulation, recovery_token):
            raise PermissionDeniedError("Invalid recovery token", simulation_id=simulation.id)
        if SimulationService.expire_if_stale(db, simulation):
            raise RecoveryExpiredError("Simulation expired after inactivity", simulation_id=simulation.id)

        simulation.last_active_at = datetime.now()
        if time_remaining is not None:
            simulation.time_remaining = time_remaining
        db.commit()
        db.refresh(simulation)
        return simulation

    @staticmethod
    def recover(db: Session, user_id: int, recovery_token: str) -> ExamSimulation:
        """Resume the active simulation after a disconnect, rotating its token"""
        simulation = (
            db.query(ExamSimulation)
            .filter(ExamSimulation.user_id == user_id, ExamSimulation.end_time == None)
            .first()
        )
        if simulation is None or not SimulationService._token_matches(simulation, recovery_token):
            raise RecoveryExpiredError("No recoverable simulation found", user_id=user_id)
        if SimulationService.expire_if_stale(db, simulation):
            raise RecoveryExpiredError("Simulation expired after inactivity", simulation_id=simulation.id)

        simulation.recovery_token = new_recovery_token()
        simulation.recovery_attempts = (simulation.recovery_attempts or 0) + 1
        simulation.last_active_at = datetime.now()
        db.commit()
        db.refresh(simulation)
        logger.info(
            "Simulation %s recovered: user_id=%s attempt=%s",
            simulation.id, user_id, simulation.recovery_attempts,
        )
        return simulation
