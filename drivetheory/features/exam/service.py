import logging
import random
from datetime import datetime, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from drivetheory.core.config import settings
from drivetheory.core.exceptions import (
    ActiveExamExistsError, ConflictError, ExamAlreadySubmittedError, InvalidAnswersError,
    QuestionBankEmptyError,
)
from drivetheory.features.exam.model import Exam, UNANSWERED
from drivetheory.features.payment import journey
from drivetheory.features.payment.entitlement import EntitlementService
from drivetheory.features.question.model import Question
from drivetheory.features.question.service import QuestionService
from drivetheory.models.enums import ExamSubmission, JourneyStatus
from typing import Optional, List, Tuple

logger = logging.getLogger(__name__)


def percentage(correct: int, total: int) -> int:
    """round(100 * correct / total), halves rounded up, in integer arithmetic"""
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


def count_correct(questions: List[Optional[Question]], answers: List[int]) -> int:
    """
    Count positions where answers[i] is the correct option of questions[i].

    Matching is strictly positional. A deleted question (None) or an
    unanswered slot never counts as correct.
    """
    correct = 0
    for question, answer in zip(questions, answers):
        if question is not None and answer != UNANSWERED and answer == question.correct_answer:
            correct += 1
    return correct


class ExamService:
    @staticmethod
    def get_exam_by_id(db: Session, exam_id: int) -> Optional[Exam]:
        return db.query(Exam).filter(Exam.id == exam_id).first()

    @staticmethod
    def get_user_exams(db: Session, user_id: int) -> List[Exam]:
        return (
            db.query(Exam)
            .filter(Exam.user_id == user_id)
            .order_by(Exam.start_time.desc(), Exam.id.desc())
            .all()
        )

    @staticmethod
    def _get_active_exam(db: Session, user_id: int) -> Optional[Exam]:
        return db.query(Exam).filter(Exam.user_id == user_id, Exam.end_time == None).first()

    @staticmethod
    def is_overdue(exam: Exam, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now()
        grace = timedelta(seconds=settings.EXAM_GRACE_SECONDS)
        return not exam.is_finalized and now > exam.deadline + grace

    @staticmethod
    def _finalize(db: Session, exam: Exam, answers: List[int], submitted_by: ExamSubmission) -> Exam:
        """Score and close an exam; the caller commits"""
        now = datetime.now()
        questions = QuestionService.get_questions_in_order(db, exam.questions)
        correct = count_correct(questions, answers)

        exam.answers = list(answers)
        exam.score = percentage(correct, exam.question_count)
        exam.end_time = now
        exam.submitted_by = submitted_by

        attempted = sum(1 for a in answers if a != UNANSWERED)
        minutes = (now - exam.start_time).total_seconds() / 60
        journey.record_activity(
            db, exam.user_id, JourneyStatus.EXAM_COMPLETED,
            questions_attempted=attempted, correct_answers=correct, minutes_spent=minutes,
        )
        logger.info(
            "Exam %s finalized (%s): user_id=%s score=%s correct=%s/%s",
            exam.id, submitted_by.value, exam.user_id, exam.score, correct, exam.question_count,
        )
        return exam

    @staticmethod
    def expire_if_overdue(db: Session, exam: Exam) -> bool:
        """Finalize an exam whose time ran out, scoring the answers saved so far"""
        if not ExamService.is_overdue(exam):
            return False
        ExamService._finalize(db, exam, exam.answers, ExamSubmission.TIMEOUT)
        db.commit()
        db.refresh(exam)
        return True

    @staticmethod
    def expire_overdue_exams(db: Session) -> int:
        """Sweep: finalize every exam past its deadline plus grace"""
        cutoff = datetime.now() - timedelta(
            minutes=settings.EXAM_DURATION_MINUTES, seconds=settings.EXAM_GRACE_SECONDS
        )
        overdue = db.query(Exam).filter(Exam.end_time == None, Exam.start_time < cutoff).all()
        for exam in overdue:
            ExamService._finalize(db, exam, exam.answers, ExamSubmission.TIMEOUT)
        if overdue:
            db.commit()
        return len(overdue)

    @staticmethod
    def get_current_exam(db: Session, user_id: int) -> Optional[Exam]:
        exam = ExamService._get_active_exam(db, user_id)
        if exam and ExamService.expire_if_overdue(db, exam):
            return None
        return exam

    @staticmethod
    def start_exam(db: Session, user_id: int) -> Exam:
        """Draw a fresh set of questions for a paying user with no exam in progress"""
        EntitlementService.require_valid_payment(db, user_id)

        if ExamService.get_current_exam(db, user_id):
            raise ActiveExamExistsError(
                "You already have an exam in progress. Resume it instead of starting a new one.",
                user_id=user_id,
            )

        question_ids = QuestionService.get_question_ids(db)
        if not question_ids:
            raise QuestionBankEmptyError("No questions are available yet", user_id=user_id)

        drawn = random.sample(question_ids, min(settings.EXAM_QUESTION_COUNT, len(question_ids)))
        exam = Exam(
            user_id=user_id,
            start_time=datetime.now(),
            end_time=None,
            questions=drawn,
            answers=[UNANSWERED] * len(drawn),
            score=None,
        )
        db.add(exam)
        journey.record_activity(db, user_id, JourneyStatus.EXAM_STARTED)
        try:
            db.commit()
        except IntegrityError:
            # a concurrent request won the race for the single active slot
            db.rollback()
            raise ActiveExamExistsError(
                "You already have an exam in progress. Resume it instead of starting a new one.",
                user_id=user_id,
            )
        db.refresh(exam)
        logger.info("Exam %s started: user_id=%s questions=%s", exam.id, user_id, len(drawn))
        return exam

    @staticmethod
    def get_exam_questions(db: Session, exam: Exam) -> List[dict]:
        """Questions of an exam in stored order, without correct answers"""
        questions = QuestionService.get_questions_in_order(db, exam.questions)
        return [
            {
                "index": index,
                "id": qid,
                "category": q.category if q else "",
                "question": q.question if q else "",
                "options": list(q.options) if q else [],
            }
            for index, (qid, q) in enumerate(zip(exam.questions, questions))
        ]

    @staticmethod
    def record_answer(db: Session, exam: Exam, index: int, answer: int) -> Exam:
        """Persist one answer so a refresh never loses work"""
        if exam.is_finalized:
            raise ExamAlreadySubmittedError("Exam has already been submitted", exam_id=exam.id)
        if ExamService.expire_if_overdue(db, exam):
            raise ExamAlreadySubmittedError("Exam time is over", exam_id=exam.id)
        if index < 0 or index >= exam.question_count:
            raise InvalidAnswersError(
                f"Question index must be between 0 and {exam.question_count - 1}", exam_id=exam.id
            )

        if answer != UNANSWERED:
            question = QuestionService.get_question_by_id(db, exam.questions[index])
            if question is not None and answer >= len(question.options):
                raise InvalidAnswersError("Answer is not one of the question's options", exam_id=exam.id)

        answers = list(exam.answers)
        answers[index] = answer
        exam.answers = answers
        db.commit()
        db.refresh(exam)
        return exam

    @staticmethod
    def submit_exam(db: Session, exam: Exam, answers: Optional[List[int]] = None) -> Exam:
        """
        Finalize an exam with the given answers (or the saved ones).

        A finalized exam is never rescored, and a wrong-length answers list
        leaves the exam untouched.
        """
        if exam.is_finalized:
            raise ExamAlreadySubmittedError("Exam has already been submitted", exam_id=exam.id)
        if ExamService.expire_if_overdue(db, exam):
            raise ExamAlreadySubmittedError("Exam time is over and it was submitted automatically", exam_id=exam.id)

        if answers is None:
            answers = list(exam.answers)
        if len(answers) != exam.question_count:
            raise InvalidAnswersError(
                f"Expected {exam.question_count} answers, got {len(answers)}", exam_id=exam.id
            )
        if any(a < UNANSWERED for a in answers):
            raise InvalidAnswersError("Answers must be option indexes or -1", exam_id=exam.id)

        ExamService._finalize(db, exam, answers, ExamSubmission.USER)
        db.commit()
        db.refresh(exam)
        return exam

    @staticmethod
    def review_exam(db: Session, exam: Exam) -> Tuple[int, List[dict]]:
        if not exam.is_finalized:
            raise ConflictError("Exam is still in progress", exam_id=exam.id)

        questions = QuestionService.get_questions_in_order(db, exam.questions)
        items = []
        correct = 0
        for index, (qid, question, answer) in enumerate(zip(exam.questions, questions, exam.answers)):
            is_correct = question is not None and answer == question.correct_answer
            correct += int(is_correct)
            items.append({
                "index": index,
                "question_id": qid,
                "category": question.category if question else None,
                "question": question.question if question else None,
                "options": list(question.options) if question else [],
                "answer": answer,
                "correct_answer": question.correct_answer if question else None,
                "is_correct": is_correct,
            })
        return correct, items
