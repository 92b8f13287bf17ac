from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from typing import List, Optional
from drivetheory.core.database import get_db
from drivetheory.core.dependencies import get_current_user, require_admin
from drivetheory.features.user.model import User
from drivetheory.features.question.schema import QuestionCreate, QuestionUpdate, QuestionResponse
from drivetheory.features.question.service import QuestionService
from drivetheory.features.audit.service import AuditService
from drivetheory.models.enums import AuditAction

router = APIRouter()

def _snapshot(question) -> dict:
    return QuestionResponse.model_validate(question).model_dump(mode="json")

@router.get("", response_model=List[QuestionResponse])
def list_questions(
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """All questions, optionally filtered by category"""
    return QuestionService.get_questions(db, category)

@router.get("/categories", response_model=List[str])
def list_categories(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return QuestionService.get_categories(db)

@router.get("/{question_id}", response_model=QuestionResponse)
def get_question(
    question_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    question = QuestionService.get_question_by_id(db, question_id)
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")
    return question

@router.post("", response_model=QuestionResponse, status_code=status.HTTP_201_CREATED)
def create_question(
    request: Request,
    question_data: QuestionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    question = QuestionService.create_question(db, question_data)
    AuditService.record(
        db, request, current_user, AuditAction.QUESTION_CREATED, "question", question.id,
        after=_snapshot(question),
    )
    return question

@router.post("/bulk", response_model=List[QuestionResponse], status_code=status.HTTP_201_CREATED)
def bulk_create_questions(
    request: Request,
    questions: List[QuestionCreate],
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Import many questions at once"""
    created = QuestionService.bulk_create_questions(db, questions)
    AuditService.record(
        db, request, current_user, AuditAction.QUESTIONS_IMPORTED, "question",
        after={"ids": [q.id for q in created]},
        message=f"Imported {len(created)} questions",
    )
    return created

@router.patch("/{question_id}", response_model=QuestionResponse)
def update_question(
    request: Request,
    question_id: int,
    question_data: QuestionUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    existing = QuestionService.get_question_by_id(db, question_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Question not found")
    before = _snapshot(existing)

    question = QuestionService.update_question(db, question_id, question_data)
    AuditService.record(
        db, request, current_user, AuditAction.QUESTION_UPDATED, "question", question_id,
        before=before, after=_snapshot(question),
    )
    return question

@router.delete("/{question_id}")
def delete_question(
    request: Request,
    question_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    existing = QuestionService.get_question_by_id(db, question_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Question not found")
    before = _snapshot(existing)

    QuestionService.delete_question(db, question_id)
    AuditService.record(
        db, request, current_user, AuditAction.QUESTION_DELETED, "question", question_id, before=before,
    )
    return {"message": "Question deleted"}
