from sqlalchemy import Column, Integer, String, Enum as SQLEnum, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from drivetheory.core.database import Base
from drivetheory.models.enums import UserRole

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    exams = relationship("Exam", back_populates="user")
    simulations = relationship("ExamSimulation", back_populates="user")
    payments = relationship("Payment", back_populates="user")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
