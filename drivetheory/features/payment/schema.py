from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from drivetheory.models.enums import PaymentStatus, PackageType, PaymentMethod

class PackageResponse(BaseModel):
    package_type: PackageType
    price: int
    currency: str
    duration: str

class CheckoutRequest(BaseModel):
    package_type: PackageType
    payment_method: PaymentMethod = PaymentMethod.MOBILE_MONEY

class RetryRequest(BaseModel):
    payment_id: int
    payment_method: PaymentMethod = PaymentMethod.MOBILE_MONEY

class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus
    reason: Optional[str] = None

class PaymentResponse(BaseModel):
    id: int
    user_id: int
    amount: int
    package_type: PackageType
    status: PaymentStatus
    valid_until: datetime
    tx_ref: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True

class CheckoutResponse(BaseModel):
    payment: PaymentResponse
    link: str
    tx_ref: str
