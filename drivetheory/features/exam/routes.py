from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
from drivetheory.core.database import get_db
from drivetheory.core.dependencies import get_current_user
from drivetheory.features.user.model import User
from drivetheory.features.exam.model import Exam
from drivetheory.features.exam.schema import (
    AnswerUpdate, ExamQuestion, ExamResponse, ExamReviewResponse, ExamSubmit,
)
from drivetheory.features.exam.service import ExamService

router = APIRouter()

def _get_owned_exam(db: Session, exam_id: int, current_user: User) -> Exam:
    exam = ExamService.get_exam_by_id(db, exam_id)
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    if exam.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="You do not have access to this exam")
    return exam

@router.post("", response_model=ExamResponse, status_code=status.HTTP_201_CREATED)
def start_exam(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Start a new timed exam"""
    return ExamService.start_exam(db, current_user.id)

@router.get("", response_model=List[ExamResponse])
def get_my_exams(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """All exams of the current user, newest first"""
    return ExamService.get_user_exams(db, current_user.id)

@router.get("/current", response_model=ExamResponse)
def get_current_exam(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """The exam in progress, if any"""
    exam = ExamService.get_current_exam(db, current_user.id)
    if not exam:
        raise HTTPException(status_code=404, detail="No exam in progress")
    return exam

@router.get("/{exam_id}", response_model=ExamResponse)
def get_exam(
    exam_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    exam = _get_owned_exam(db, exam_id, current_user)
    ExamService.expire_if_overdue(db, exam)
    return exam

@router.get("/{exam_id}/questions", response_model=List[ExamQuestion])
def get_exam_questions(
    exam_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Questions of the exam in order, without answers"""
    exam = _get_owned_exam(db, exam_id, current_user)
    return ExamService.get_exam_questions(db, exam)

@router.put("/{exam_id}/answers/{index}", response_model=ExamResponse)
def save_answer(
    exam_id: int,
    index: int,
    answer_data: AnswerUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Save the answer to one question (-1 clears it)"""
    exam = _get_owned_exam(db, exam_id, current_user)
    return ExamService.record_answer(db, exam, index, answer_data.answer)

@router.post("/{exam_id}/submit", response_model=ExamResponse)
def submit_exam(
    exam_id: int,
    submit_data: Optional[ExamSubmit] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Submit the exam and compute its score"""
    exam = _get_owned_exam(db, exam_id, current_user)
    return ExamService.submit_exam(db, exam, submit_data.answers if submit_data else None)

@router.get("/{exam_id}/review", response_model=ExamReviewResponse)
def review_exam(
    exam_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Per-question breakdown of a submitted exam"""
    exam = _get_owned_exam(db, exam_id, current_user)
    correct, items = ExamService.review_exam(db, exam)
    return {"exam": exam, "correct_count": correct, "items": items}
