import hmac
import logging
from fastapi import APIRouter, Body, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
from drivetheory.core.config import settings
from drivetheory.core.database import get_db
from drivetheory.core.dependencies import get_current_user
from drivetheory.features.user.model import User
from drivetheory.features.payment.entitlement import EntitlementService
from drivetheory.features.payment.schema import (
    CheckoutRequest, CheckoutResponse, PackageResponse, PaymentResponse, RetryRequest,
)
from drivetheory.features.payment.service import PaymentService
from drivetheory.services.flutterwave import FlutterwaveClient, get_payment_gateway

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/packages", response_model=List[PackageResponse])
def list_packages():
    """Package catalogue"""
    return PaymentService.get_packages()

@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
def checkout(
    request_data: CheckoutRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: FlutterwaveClient = Depends(get_payment_gateway),
):
    """Create a pending payment and return the gateway checkout link"""
    payment, link = PaymentService.create_checkout(
        db, current_user, request_data.package_type, request_data.payment_method, gateway
    )
    return {"payment": payment, "link": link, "tx_ref": payment.tx_ref}

@router.post("/retry", response_model=CheckoutResponse)
def retry_payment(
    request_data: RetryRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: FlutterwaveClient = Depends(get_payment_gateway),
):
    result = PaymentService.retry_payment(
        db, current_user, request_data.payment_id, request_data.payment_method, gateway
    )
    if not result:
        raise HTTPException(status_code=404, detail="Payment not found")
    payment, link = result
    return {"payment": payment, "link": link, "tx_ref": payment.tx_ref}

@router.get("/status", response_model=PaymentResponse)
def payment_status(
    tx_ref: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: FlutterwaveClient = Depends(get_payment_gateway),
):
    """Browser redirect callback: verify the transaction with the gateway"""
    payment = PaymentService.get_payment_by_tx_ref(db, tx_ref)
    if not payment or payment.user_id != current_user.id:
        raise HTTPException(status_code=404, detail="Payment not found")
    return PaymentService.reconcile(db, tx_ref, gateway, verification_method="redirect")

@router.post("/webhook")
def payment_webhook(
    payload: Dict[str, Any] = Body(...),
    verif_hash: Optional[str] = Header(default=None, alias="verif-hash"),
    db: Session = Depends(get_db),
    gateway: FlutterwaveClient = Depends(get_payment_gateway),
):
    """Server-to-server notification from the gateway"""
    expected = settings.FLUTTERWAVE_WEBHOOK_HASH
    if not expected or not verif_hash or not hmac.compare_digest(verif_hash, expected):
        logger.warning("Rejected payment webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    data = payload.get("data") or {}
    tx_ref = data.get("tx_ref") or data.get("txRef")
    if not tx_ref:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="tx_ref missing")

    # the gateway is asked again rather than trusting the webhook body
    payment = PaymentService.reconcile(db, tx_ref, gateway, verification_method="webhook")
    return {"status": "ok", "payment_status": payment.status.value if payment else None}

@router.get("/history", response_model=List[PaymentResponse])
def payment_history(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return PaymentService.get_user_payments(db, current_user.id)

@router.get("/active", response_model=PaymentResponse)
def active_payment(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """The payment currently granting exam access"""
    payment = EntitlementService.get_active_payment(db, current_user.id)
    if not payment:
        raise HTTPException(status_code=404, detail="No active payment found")
    return payment
