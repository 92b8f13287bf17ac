import logging
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from drivetheory.core.exceptions import PaymentRequiredError
from drivetheory.features.payment.model import Payment
from drivetheory.models.enums import PaymentStatus

logger = logging.getLogger(__name__)

class EntitlementService:
    """Whether a user currently holds paid access. Checked on every request, never cached."""

    @staticmethod
    def get_active_payment(db: Session, user_id: int, now: Optional[datetime] = None) -> Optional[Payment]:
        now = now or datetime.now()
        return (
            db.query(Payment)
            .filter(
                Payment.user_id == user_id,
                Payment.status == PaymentStatus.COMPLETED,
                Payment.valid_until > now,
            )
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .first()
        )

    @staticmethod
    def has_valid_payment(db: Session, user_id: int) -> bool:
        return EntitlementService.get_active_payment(db, user_id) is not None

    @staticmethod
    def require_valid_payment(db: Session, user_id: int) -> Payment:
        payment = EntitlementService.get_active_payment(db, user_id)
        if payment is None:
            logger.info("Entitlement check failed for user_id=%s", user_id)
            raise PaymentRequiredError("No active payment found", user_id=user_id)
        return payment
