from datetime import datetime, timedelta
from sqlalchemy import Column, Integer, DateTime, ForeignKey, JSON, Index, Enum as SQLEnum, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from drivetheory.core.config import settings
from drivetheory.core.database import Base
from drivetheory.models.enums import ExamSubmission

UNANSWERED = -1

class Exam(Base):
    __tablename__ = "exams"
    __table_args__ = (
        # one in-progress exam per user
        Index(
            "uq_exams_active_user",
            "user_id",
            unique=True,
            sqlite_where=text("end_time IS NULL"),
            postgresql_where=text("end_time IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)  # NULL while the exam is in progress
    questions = Column(JSON, nullable=False)  # question ids in draw order
    answers = Column(JSON, nullable=False)  # answers[i] belongs to questions[i]
    score = Column(Integer, nullable=True)  # percentage, set on finalization
    submitted_by = Column(SQLEnum(ExamSubmission), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="exams")

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    @property
    def question_count(self) -> int:
        return len(self.questions or [])

    @property
    def deadline(self) -> datetime:
        return self.start_time + timedelta(minutes=settings.EXAM_DURATION_MINUTES)

    @property
    def time_remaining_seconds(self) -> int:
        if self.is_finalized:
            return 0
        return max(0, int((self.deadline - datetime.now()).total_seconds()))

    @property
    def passed(self) -> bool | None:
        if self.score is None:
            return None
        return self.score >= settings.PASSING_SCORE
