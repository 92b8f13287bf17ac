from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime

class QuestionBase(BaseModel):
    category: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    correct_answer: int = Field(..., ge=0)

    @model_validator(mode="after")
    def check_correct_answer(self):
        if self.correct_answer >= len(self.options):
            raise ValueError("correct_answer must index one of the options")
        return self

class QuestionCreate(QuestionBase):
    pass

class QuestionUpdate(BaseModel):
    category: Optional[str] = Field(default=None, min_length=1)
    question: Optional[str] = Field(default=None, min_length=1)
    options: Optional[List[str]] = Field(default=None, min_length=2)
    correct_answer: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def reject_nulls(self):
        # every column is NOT NULL; an omitted field is left as it is
        nulls = sorted(f for f in self.model_fields_set if getattr(self, f) is None)
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self

class QuestionResponse(QuestionBase):
    id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
