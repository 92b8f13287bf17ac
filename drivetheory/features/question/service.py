import logging
from sqlalchemy.orm import Session
from drivetheory.features.question.model import Question
from drivetheory.features.question.schema import QuestionCreate, QuestionUpdate
from drivetheory.core.exceptions import ServiceError
from typing import Optional, List, Dict

logger = logging.getLogger(__name__)

class QuestionService:
    @staticmethod
    def get_questions(db: Session, category: Optional[str] = None) -> List[Question]:
        query = db.query(Question)
        if category:
            query = query.filter(Question.category == category)
        return query.order_by(Question.id.asc()).all()

    @staticmethod
    def get_categories(db: Session) -> List[str]:
        rows = db.query(Question.category).distinct().order_by(Question.category.asc()).all()
        return [row[0] for row in rows]

    @staticmethod
    def get_question_by_id(db: Session, question_id: int) -> Optional[Question]:
        return db.query(Question).filter(Question.id == question_id).first()

    @staticmethod
    def get_question_ids(db: Session) -> List[int]:
        return [row[0] for row in db.query(Question.id).order_by(Question.id.asc()).all()]

    @staticmethod
    def get_questions_in_order(db: Session, question_ids: List[int]) -> List[Optional[Question]]:
        """
        Load questions for a stored id list, keeping the list's order.

        The result is positional: item i belongs to question_ids[i]. Ids that
        no longer exist come back as None so positions never shift.
        """
        if not question_ids:
            return []
        found: Dict[int, Question] = {
            q.id: q for q in db.query(Question).filter(Question.id.in_(set(question_ids))).all()
        }
        return [found.get(qid) for qid in question_ids]

    @staticmethod
    def create_question(db: Session, question_data: QuestionCreate) -> Question:
        db_question = Question(**question_data.model_dump())
        db.add(db_question)
        db.commit()
        db.refresh(db_question)
        logger.info("Question %s created in category %s", db_question.id, db_question.category)
        return db_question

    @staticmethod
    def bulk_create_questions(db: Session, questions: List[QuestionCreate]) -> List[Question]:
        db_questions = [Question(**q.model_dump()) for q in questions]
        db.add_all(db_questions)
        db.commit()
        for q in db_questions:
            db.refresh(q)
        logger.info("Bulk import created %d questions", len(db_questions))
        return db_questions

    @staticmethod
    def update_question(db: Session, question_id: int, question_data: QuestionUpdate) -> Optional[Question]:
        question = QuestionService.get_question_by_id(db, question_id)
        if not question:
            return None

        update_data = question_data.model_dump(exclude_unset=True)
        options = update_data.get("options", question.options)
        correct_answer = update_data.get("correct_answer", question.correct_answer)
        if correct_answer >= len(options):
            raise ServiceError(
                "correct_answer must index one of the options", question_id=question_id
            )

        for field, value in update_data.items():
            setattr(question, field, value)

        db.commit()
        db.refresh(question)
        logger.info("Question %s updated: %s", question_id, sorted(update_data))
        return question

    @staticmethod
    def delete_question(db: Session, question_id: int) -> bool:
        question = QuestionService.get_question_by_id(db, question_id)
        if not question:
            return False

        db.delete(question)
        db.commit()
        logger.info("Question %s deleted", question_id)
        return True
