import calendar
import logging
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
from drivetheory.core.config import settings
from drivetheory.core.exceptions import ConflictError, PaymentGatewayError, PermissionDeniedError, ServiceError
from drivetheory.features.payment.journey import new_journey
from drivetheory.features.payment.model import Payment
from drivetheory.models.enums import PackageType, PaymentMethod, PaymentStatus
from drivetheory.services.flutterwave import FlutterwaveClient, generate_tx_ref, user_id_from_tx_ref
from typing import Optional, List, Tuple

logger = logging.getLogger(__name__)

PACKAGE_PRICES = {
    PackageType.SINGLE: 200,
    PackageType.DAILY: 800,
    PackageType.WEEKLY: 4000,
    PackageType.MONTHLY: 10000,
}

PACKAGE_DURATIONS = {
    PackageType.SINGLE: "1 hour",
    PackageType.DAILY: "1 day",
    PackageType.WEEKLY: "7 days",
    PackageType.MONTHLY: "1 month",
}

# admin-driven status changes; gateway reconciliation has its own rules
ALLOWED_STATUS_CHANGES = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.COMPLETED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}


class PaymentService:
    @staticmethod
    def _add_months(d: datetime, months: int) -> datetime:
        """
        Add calendar months, clamping to the end of shorter months.
        e.g. 2024-01-31 + 1 month -> 2024-02-29
        """
        month_index = d.month - 1 + months
        year = d.year + month_index // 12
        month = month_index % 12 + 1
        day = min(d.day, calendar.monthrange(year, month)[1])
        return d.replace(year=year, month=month, day=day)

    @staticmethod
    def calculate_valid_until(package_type: PackageType, start: Optional[datetime] = None) -> datetime:
        start = start or datetime.now()
        if package_type == PackageType.SINGLE:
            return start + timedelta(hours=1)
        if package_type == PackageType.DAILY:
            return start + timedelta(days=1)
        if package_type == PackageType.WEEKLY:
            return start + timedelta(days=7)
        if package_type == PackageType.MONTHLY:
            return PaymentService._add_months(start, 1)
        raise ServiceError("Invalid package type", package_type=package_type)

    @staticmethod
    def get_packages() -> List[dict]:
        return [
            {
                "package_type": package_type,
                "price": price,
                "currency": settings.PAYMENT_CURRENCY,
                "duration": PACKAGE_DURATIONS[package_type],
            }
            for package_type, price in PACKAGE_PRICES.items()
        ]

    @staticmethod
    def get_payment_by_id(db: Session, payment_id: int) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.id == payment_id).first()

    @staticmethod
    def get_payment_by_tx_ref(db: Session, tx_ref: str) -> Optional[Payment]:
        """
        Find a payment by its current reference, or by one it was retried away from.

        A checkout abandoned by a retry can still be paid at the gateway, so a
        superseded reference keeps resolving to its payment.
        """
        payment = db.query(Payment).filter(Payment.tx_ref == tx_ref).first()
        if payment:
            return payment

        user_id = user_id_from_tx_ref(tx_ref)
        if user_id is None:
            return None
        for candidate in PaymentService.get_user_payments(db, user_id):
            if tx_ref in (candidate.meta or {}).get("previous_tx_refs", []):
                return candidate
        return None

    @staticmethod
    def get_user_payments(db: Session, user_id: int) -> List[Payment]:
        return (
            db.query(Payment)
            .filter(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .all()
        )

    @staticmethod
    def get_all_payments(db: Session, status: Optional[PaymentStatus] = None) -> List[Payment]:
        query = db.query(Payment)
        if status:
            query = query.filter(Payment.status == status)
        return query.order_by(Payment.created_at.desc(), Payment.id.desc()).all()

    @staticmethod
    def _start_checkout(
        db: Session,
        payment: Payment,
        user,
        payment_method: PaymentMethod,
        gateway: FlutterwaveClient,
    ) -> str:
        """Ask the gateway for a checkout link; a gateway failure marks the payment failed"""
        try:
            result = gateway.initiate_payment(
                amount=payment.amount,
                user=user,
                package_type=payment.package_type.value,
                tx_ref=payment.tx_ref,
                redirect_url=settings.PAYMENT_REDIRECT_URL,
                payment_method=payment_method.value,
            )
        except PaymentGatewayError as e:
            meta = dict(payment.meta or {})
            meta["failure_reason"] = e.message
            payment.meta = meta
            payment.status = PaymentStatus.FAILED
            db.commit()
            logger.warning("Checkout for payment %s (user_id=%s) failed: %s", payment.id, user.id, e.message)
            raise

        meta = dict(payment.meta or {})
        meta["checkout_link"] = result["link"]
        payment.meta = meta
        db.commit()
        db.refresh(payment)
        return result["link"]

    @staticmethod
    def create_checkout(
        db: Session,
        user,
        package_type: PackageType,
        payment_method: PaymentMethod,
        gateway: FlutterwaveClient,
    ) -> Tuple[Payment, str]:
        """Create a pending payment and start a gateway checkout for it"""
        amount = PACKAGE_PRICES.get(package_type)
        if amount is None:
            raise ServiceError("Invalid package type", package_type=package_type)

        now = datetime.now()
        tx_ref = generate_tx_ref(user.id)
        payment = Payment(
            user_id=user.id,
            amount=amount,
            package_type=package_type,
            status=PaymentStatus.PENDING,
            valid_until=PaymentService.calculate_valid_until(package_type, now),
            tx_ref=tx_ref,
            meta={
                "tx_ref": tx_ref,
                "payment_method": payment_method.value,
                "retry_count": 0,
                "journey": new_journey(now),
            },
        )
        db.add(payment)
        db.commit()
        db.refresh(payment)
        logger.info(
            "Payment %s created: user_id=%s package=%s amount=%s tx_ref=%s",
            payment.id, user.id, package_type.value, amount, tx_ref,
        )

        link = PaymentService._start_checkout(db, payment, user, payment_method, gateway)
        return payment, link

    @staticmethod
    def retry_payment(
        db: Session,
        user,
        payment_id: int,
        payment_method: PaymentMethod,
        gateway: FlutterwaveClient,
    ) -> Optional[Tuple[Payment, str]]:
        """Reissue a transaction reference for a failed or abandoned checkout"""
        payment = PaymentService.get_payment_by_id(db, payment_id)
        if not payment:
            return None
        if payment.user_id != user.id:
            raise PermissionDeniedError("Payment belongs to another user", payment_id=payment_id)
        if payment.status not in (PaymentStatus.FAILED, PaymentStatus.PENDING):
            raise ConflictError(
                f"Payment is {payment.status.value} and cannot be retried", payment_id=payment_id
            )

        if payment.status == PaymentStatus.PENDING and payment.tx_ref:
            # the open checkout may have been paid after the user gave up on it
            try:
                payment = PaymentService.reconcile(db, payment.tx_ref, gateway, verification_method="retry")
            except PaymentGatewayError as e:
                logger.warning("Could not verify tx_ref=%s before retry: %s", payment.tx_ref, e.message)
            if payment.status == PaymentStatus.COMPLETED:
                raise ConflictError("Payment has already been completed", payment_id=payment_id)

        meta = dict(payment.meta or {})
        previous = meta.get("previous_tx_refs", [])
        if payment.tx_ref:
            previous = previous + [payment.tx_ref]
        tx_ref = generate_tx_ref(user.id)
        while tx_ref in previous:
            # references are millisecond based; a quick retry must not reuse one
            tx_ref = generate_tx_ref(user.id)
        meta.update({
            "tx_ref": tx_ref,
            "previous_tx_refs": previous,
            "payment_method": payment_method.value,
            "retry_count": meta.get("retry_count", 0) + 1,
            "last_retry": datetime.now().isoformat(),
        })
        meta.pop("failure_reason", None)
        payment.meta = meta
        payment.tx_ref = tx_ref
        payment.status = PaymentStatus.PENDING
        payment.valid_until = PaymentService.calculate_valid_until(payment.package_type)
        db.commit()
        db.refresh(payment)
        logger.info("Payment %s retried (attempt %s) with tx_ref=%s", payment.id, meta["retry_count"], tx_ref)

        link = PaymentService._start_checkout(db, payment, user, payment_method, gateway)
        return payment, link

    @staticmethod
    def reconcile(
        db: Session,
        tx_ref: str,
        gateway: FlutterwaveClient,
        verification_method: str,
    ) -> Optional[Payment]:
        """
        Bring a payment in line with the gateway's view of its transaction.

        Webhook and redirect callbacks both land here and may arrive in any
        order or more than once, so completed and refunded payments are
        returned untouched. A reference superseded by a retry can only
        complete the payment; its failure says nothing about the open checkout.
        """
        payment = PaymentService.get_payment_by_tx_ref(db, tx_ref)
        if not payment:
            logger.warning("Reconcile (%s): no payment for tx_ref=%s", verification_method, tx_ref)
            return None
        if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            return payment

        superseded = tx_ref != payment.tx_ref
        result = gateway.verify_payment(tx_ref)
        gateway_status = (result.get("status") or "").lower()
        now = datetime.now()
        meta = dict(payment.meta or {})
        meta["last_checked_at"] = now.isoformat()
        if not superseded:
            meta["gateway_status"] = gateway_status

        if gateway_status == "successful":
            paid_amount = result.get("amount") or 0
            currency = result.get("currency") or settings.PAYMENT_CURRENCY
            if paid_amount < payment.amount or currency != settings.PAYMENT_CURRENCY:
                reason = (
                    f"Amount mismatch: paid {paid_amount} {currency}, expected {payment.amount} {settings.PAYMENT_CURRENCY}"
                )
                logger.warning("Payment %s amount mismatch on tx_ref=%s: %s", payment.id, tx_ref, reason)
                if not superseded:
                    payment.status = PaymentStatus.FAILED
                    meta["failure_reason"] = reason
            else:
                payment.status = PaymentStatus.COMPLETED
                meta["transaction_id"] = result.get("id")
                meta["verified_at"] = now.isoformat()
                meta["verification_method"] = verification_method
                meta["paid_tx_ref"] = tx_ref
                if result.get("payment_type"):
                    meta["payment_method"] = result["payment_type"]
                meta.pop("failure_reason", None)
                logger.info(
                    "Payment %s completed via %s (user_id=%s tx_ref=%s)",
                    payment.id, verification_method, payment.user_id, tx_ref,
                )
        elif gateway_status == "failed" and not superseded:
            payment.status = PaymentStatus.FAILED
            meta["failure_reason"] = (
                result.get("processor_response") or result.get("message") or "Payment failed"
            )
            logger.info("Payment %s failed at gateway: %s", payment.id, meta["failure_reason"])

        payment.meta = meta
        db.commit()
        db.refresh(payment)
        return payment

    @staticmethod
    def update_status(db: Session, payment_id: int, new_status: PaymentStatus, reason: Optional[str] = None) -> Optional[Payment]:
        """Admin status change (refunds, manual confirmation)"""
        payment = PaymentService.get_payment_by_id(db, payment_id)
        if not payment:
            return None
        if new_status == payment.status:
            return payment
        if new_status not in ALLOWED_STATUS_CHANGES[payment.status]:
            raise ConflictError(
                f"Cannot change payment from {payment.status.value} to {new_status.value}",
                payment_id=payment_id,
            )

        meta = dict(payment.meta or {})
        history = meta.get("status_history", [])
        meta["status_history"] = history + [{
            "from": payment.status.value,
            "to": new_status.value,
            "at": datetime.now().isoformat(),
            "reason": reason,
        }]
        if new_status == PaymentStatus.REFUNDED:
            meta["refunded_at"] = datetime.now().isoformat()
        payment.meta = meta
        payment.status = new_status
        db.commit()
        db.refresh(payment)
        logger.info("Payment %s status changed to %s by admin", payment_id, new_status.value)
        return payment
