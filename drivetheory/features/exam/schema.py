from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from drivetheory.models.enums import ExamSubmission

class ExamSubmit(BaseModel):
    # omitted: score the answers already saved on the server
    answers: Optional[List[int]] = None

class AnswerUpdate(BaseModel):
    answer: int = Field(..., ge=-1)

class ExamResponse(BaseModel):
    id: int
    user_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    questions: List[int]
    answers: List[int]
    score: Optional[int] = None
    passed: Optional[bool] = None
    submitted_by: Optional[ExamSubmission] = None
    question_count: int
    deadline: datetime
    time_remaining_seconds: int

    class Config:
        from_attributes = True

class ExamQuestion(BaseModel):
    """A question as shown during an exam: no correct answer"""
    index: int
    id: int
    category: str
    question: str
    options: List[str]

class ExamReviewItem(BaseModel):
    index: int
    question_id: int
    category: Optional[str] = None
    question: Optional[str] = None
    options: List[str] = []
    answer: int
    correct_answer: Optional[int] = None
    is_correct: bool

class ExamReviewResponse(BaseModel):
    exam: ExamResponse
    correct_count: int
    items: List[ExamReviewItem]
