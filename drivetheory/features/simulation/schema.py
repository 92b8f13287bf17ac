from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from drivetheory.models.enums import SimulationStatus

class SimulationCreate(BaseModel):
    time_per_question: int = Field(60, gt=0)
    show_feedback: bool = True
    show_timer: bool = True
    allow_skip: bool = True
    allow_review: bool = True
    # omitted: every question in the bank
    questions: Optional[List[int]] = Field(None, min_length=1)

class SimulationAnswer(BaseModel):
    question_id: int
    answer: int = Field(..., ge=0)
    time_spent: int = Field(0, ge=0)

class SimulationAnswerResult(BaseModel):
    is_correct: bool
    correct_answer: Optional[int] = None

class SimulationAdvance(BaseModel):
    timed_out: bool = False

class Heartbeat(BaseModel):
    recovery_token: str
    time_remaining: Optional[int] = Field(None, ge=0)

class RecoverRequest(BaseModel):
    recovery_token: str

class SimulationResponse(BaseModel):
    id: int
    user_id: int
    status: SimulationStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    questions: List[int]
    answers: List[int]
    current_question_index: int
    current_question_id: Optional[int] = None
    question_started_at: Optional[datetime] = None
    question_deadline: Optional[datetime] = None
    time_per_question: int
    show_feedback: bool
    show_timer: bool
    allow_skip: bool
    allow_review: bool
    score: Optional[int] = None
    time_remaining: Optional[int] = None
    last_active_at: datetime
    recovery_token: Optional[str] = None
    recovery_attempts: int

    class Config:
        from_attributes = True

class ActiveCheckResponse(BaseModel):
    active: bool
    simulation_id: Optional[int] = None
    recovery_token: Optional[str] = None

class SimulationLogResponse(BaseModel):
    id: int
    question_id: int
    question_index: int
    time_spent: int
    is_correct: bool
    answer: int
    created_at: datetime

    class Config:
        from_attributes = True
