from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from drivetheory.core.database import Base
from drivetheory.models.enums import AuditAction

class AdminAuditLog(Base):
    __tablename__ = "admin_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    target_type = Column(String, nullable=False)
    target_id = Column(Integer, nullable=True)
    # {"before": ..., "after": ..., "message": ...}
    details = Column(JSON, nullable=False, default=dict)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    admin = relationship("User")
