from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from drivetheory.models.enums import AuditAction

class AuditLogResponse(BaseModel):
    id: int
    admin_id: int
    action: AuditAction
    target_type: str
    target_id: Optional[int] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
