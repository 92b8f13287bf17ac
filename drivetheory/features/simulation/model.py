import secrets
from datetime import datetime, timedelta
from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, JSON, String, Index, Enum as SQLEnum, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from drivetheory.core.database import Base
from drivetheory.models.enums import SimulationStatus


def new_recovery_token() -> str:
    return secrets.token_urlsafe(32)


class ExamSimulation(Base):
    __tablename__ = "exam_simulations"
    __table_args__ = (
        # one in-progress simulation per user
        Index(
            "uq_exam_simulations_active_user",
            "user_id",
            unique=True,
            sqlite_where=text("end_time IS NULL"),
            postgresql_where=text("end_time IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    status = Column(SQLEnum(SimulationStatus), default=SimulationStatus.ACTIVE, nullable=False)
    questions = Column(JSON, nullable=False)
    answers = Column(JSON, nullable=False)
    current_question_index = Column(Integer, default=0, nullable=False)
    question_started_at = Column(DateTime, nullable=True)
    score = Column(Integer, nullable=True)

    time_per_question = Column(Integer, default=60, nullable=False)  # seconds
    show_feedback = Column(Boolean, default=True, nullable=False)
    show_timer = Column(Boolean, default=True, nullable=False)
    allow_skip = Column(Boolean, default=True, nullable=False)
    allow_review = Column(Boolean, default=True, nullable=False)

    # crash recovery
    time_remaining = Column(Integer, nullable=True)
    last_active_at = Column(DateTime, nullable=False)
    recovery_token = Column(String, nullable=True)
    recovery_attempts = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="simulations")
    logs = relationship("ExamSimulationLog", back_populates="simulation", cascade="all, delete-orphan")

    @property
    def is_completed(self) -> bool:
        return self.status == SimulationStatus.COMPLETED

    @property
    def question_count(self) -> int:
        return len(self.questions or [])

    @property
    def current_question_id(self):
        if self.current_question_index < self.question_count:
            return self.questions[self.current_question_index]
        return None

    @property
    def question_deadline(self):
        if not self.show_timer or self.question_started_at is None or self.is_completed:
            return None
        return self.question_started_at + timedelta(seconds=self.time_per_question)

    def question_timed_out(self, now: datetime = None) -> bool:
        deadline = self.question_deadline
        return deadline is not None and (now or datetime.now()) >= deadline


class ExamSimulationLog(Base):
    __tablename__ = "exam_simulation_logs"

    id = Column(Integer, primary_key=True, index=True)
    simulation_id = Column(Integer, ForeignKey("exam_simulations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    question_id = Column(Integer, nullable=False)
    question_index = Column(Integer, nullable=False)
    time_spent = Column(Integer, default=0, nullable=False)  # seconds
    is_correct = Column(Boolean, nullable=False)
    answer = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    simulation = relationship("ExamSimulation", back_populates="logs")
