from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from typing import List, Optional
from drivetheory.core.database import get_db
from drivetheory.core.dependencies import require_admin
from drivetheory.features.user.model import User
from drivetheory.features.user.schema import UserResponse
from drivetheory.features.user.service import UserService
from drivetheory.features.payment.schema import PaymentResponse, PaymentStatusUpdate
from drivetheory.features.payment.service import PaymentService
from drivetheory.features.audit.schema import AuditLogResponse
from drivetheory.features.audit.service import AuditService
from drivetheory.models.enums import AuditAction, PaymentStatus

router = APIRouter()

# ========== Users ==========

@router.get("/users", response_model=List[UserResponse])
def get_all_users_admin(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return UserService.get_all_users(db)

def _set_user_active(db: Session, request: Request, admin: User, user_id: int, is_active: bool) -> User:
    user = UserService.get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    before = {"is_active": user.is_active}

    user = UserService.set_active(db, user_id, is_active)
    AuditService.record(
        db, request, admin,
        AuditAction.USER_ACTIVATED if is_active else AuditAction.USER_DEACTIVATED,
        "user", user_id,
        before=before, after={"is_active": user.is_active},
    )
    return user

@router.post("/users/{user_id}/deactivate", response_model=UserResponse)
def deactivate_user(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Block an account from signing in"""
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    return _set_user_active(db, request, current_user, user_id, False)

@router.post("/users/{user_id}/activate", response_model=UserResponse)
def activate_user(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return _set_user_active(db, request, current_user, user_id, True)

# ========== Payments ==========

@router.get("/payments", response_model=List[PaymentResponse])
def get_all_payments_admin(
    status: Optional[PaymentStatus] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """All payments, optionally filtered by status"""
    return PaymentService.get_all_payments(db, status)

@router.patch("/payments/{payment_id}", response_model=PaymentResponse)
def update_payment_status_admin(
    request: Request,
    payment_id: int,
    status_data: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Manual status change, e.g. a refund"""
    existing = PaymentService.get_payment_by_id(db, payment_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Payment not found")
    before = {"status": existing.status.value}

    payment = PaymentService.update_status(db, payment_id, status_data.status, status_data.reason)
    AuditService.record(
        db, request, current_user, AuditAction.PAYMENT_STATUS_CHANGED, "payment", payment_id,
        before=before, after={"status": payment.status.value}, message=status_data.reason,
    )
    return payment

# ========== Audit log ==========

@router.get("/audit-logs", response_model=List[AuditLogResponse])
def get_audit_logs(
    action: Optional[AuditAction] = None,
    admin_id: Optional[int] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Most recent admin actions first"""
    return AuditService.get_logs(db, action, admin_id, min(max(limit, 1), 500))
