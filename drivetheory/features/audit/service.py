import logging
from fastapi import Request
from sqlalchemy.orm import Session
from drivetheory.features.audit.model import AdminAuditLog
from drivetheory.features.user.model import User
from drivetheory.models.enums import AuditAction
from typing import Optional, List

logger = logging.getLogger(__name__)


class AuditService:
    @staticmethod
    def record(
        db: Session,
        request: Request,
        admin: User,
        action: AuditAction,
        target_type: str,
        target_id: Optional[int] = None,
        before: Optional[dict] = None,
        after: Optional[dict] = None,
        message: Optional[str] = None,
    ) -> AdminAuditLog:
        """Store who changed what from where, with snapshots of the target"""
        details = {}
        if before is not None:
            details["before"] = before
        if after is not None:
            details["after"] = after
        if message:
            details["message"] = message

        entry = AdminAuditLog(
            admin_id=admin.id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent", "unknown"),
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        logger.info(
            "Admin %s %s %s %s", admin.id, action.value, target_type, target_id if target_id is not None else "",
        )
        return entry

    @staticmethod
    def get_logs(
        db: Session,
        action: Optional[AuditAction] = None,
        admin_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[AdminAuditLog]:
        query = db.query(AdminAuditLog)
        if action:
            query = query.filter(AdminAuditLog.action == action)
        if admin_id:
            query = query.filter(AdminAuditLog.admin_id == admin_id)
        return query.order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc()).limit(limit).all()
