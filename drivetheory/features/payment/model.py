from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from drivetheory.core.database import Base
from drivetheory.models.enums import PaymentStatus, PackageType

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    package_type = Column(SQLEnum(PackageType), nullable=False)
    status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    valid_until = Column(DateTime, nullable=False)
    # gateway reference of the latest checkout attempt, mirrored in meta["tx_ref"]
    tx_ref = Column(String, unique=True, index=True, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="payments")

    @property
    def journey(self) -> dict | None:
        return (self.meta or {}).get("journey")
