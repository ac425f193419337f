import enum

from sqlalchemy import Column, Integer, String, Float, TIMESTAMP, ForeignKey, JSON, Enum, func
from sqlalchemy.orm import relationship
from db.init import Base

class EstimateStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"

class EstimatePaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PAID_ON_FILE = "PAID_ON_FILE"

ESTIMATE_TRANSITIONS = {
    EstimateStatus.DRAFT: {EstimateStatus.SENT, EstimateStatus.CANCELLED},
    EstimateStatus.SENT: {EstimateStatus.DRAFT, EstimateStatus.ACCEPTED, EstimateStatus.ACTIVE, EstimateStatus.CANCELLED},
    EstimateStatus.ACCEPTED: {EstimateStatus.SENT, EstimateStatus.ACTIVE, EstimateStatus.PAUSED, EstimateStatus.CANCELLED},
    EstimateStatus.ACTIVE: {EstimateStatus.PAUSED, EstimateStatus.CANCELLED},
    EstimateStatus.PAUSED: {EstimateStatus.ACTIVE, EstimateStatus.CANCELLED},
    EstimateStatus.CANCELLED: {EstimateStatus.DRAFT, EstimateStatus.SENT},
}

# Targets a customer may request on their own estimate. DELETE dismisses it.
CUSTOMER_STATUS_TARGETS = {"ACCEPTED", "PAUSED", "CANCELLED", "DELETE"}

# Only these statuses can be paid for through the estimate checkout.
CHECKOUT_ELIGIBLE_STATUSES = (EstimateStatus.SENT, EstimateStatus.ACCEPTED, EstimateStatus.ACTIVE)

def can_transition_estimate(current: EstimateStatus, target: EstimateStatus) -> bool:
    current = EstimateStatus(current)
    target = EstimateStatus(target)
    if current == target:
        return True
    return target in ESTIMATE_TRANSITIONS[current]

class CustomEstimate(Base):
    __tablename__ = "custom_estimates"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by_email = Column(String(255), nullable=True)
    status = Column(Enum(EstimateStatus, native_enum=False, length=20), default=EstimateStatus.DRAFT, nullable=False)
    payment_status = Column(
        Enum(EstimatePaymentStatus, native_enum=False, length=20),
        default=EstimatePaymentStatus.PENDING,
        nullable=False,
    )

    addresses = Column(JSON, nullable=False)
    line_items = Column(JSON, nullable=False)
    monthly_adjustment = Column(Float, default=0.0)
    subtotal = Column(Float, default=0.0)
    total = Column(Float, default=0.0)
    preferred_service_day = Column(String(10), nullable=True)
    notes = Column(String(2000), nullable=True)
    admin_notes = Column(String(2000), nullable=True)

    stripe_subscription_id = Column(String(255), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    accepted_at = Column(TIMESTAMP, nullable=True)
    paid_at = Column(TIMESTAMP, nullable=True)
    dismissed_at = Column(TIMESTAMP, nullable=True)

    user = relationship("User")

    def to_dict(self, include_admin_notes: bool = True):
        data = {
            "id": self.id,
            "userId": self.user_id,
            "createdByEmail": self.created_by_email,
            "status": EstimateStatus(self.status).value,
            "paymentStatus": EstimatePaymentStatus(self.payment_status).value,
            "addresses": self.addresses or [],
            "lineItems": self.line_items or [],
            "monthlyAdjustment": self.monthly_adjustment,
            "subtotal": self.subtotal,
            "total": self.total,
            "preferredServiceDay": self.preferred_service_day,
            "notes": self.notes,
            "stripeSubscriptionId": self.stripe_subscription_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "acceptedAt": self.accepted_at.isoformat() if self.accepted_at else None,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
        }
        if include_admin_notes:
            data["adminNotes"] = self.admin_notes
        return data
