import enum

from sqlalchemy import Column, Integer, String, Float, TIMESTAMP, ForeignKey, JSON, Enum, func
from db.init import Base

SERVICE_DAYS = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")

class CheckoutStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"

# A verified payment may still complete a session the customer abandoned
# earlier; COMPLETED never moves.
CHECKOUT_TRANSITIONS = {
    CheckoutStatus.PENDING: {CheckoutStatus.COMPLETED, CheckoutStatus.CANCELLED},
    CheckoutStatus.CANCELLED: {CheckoutStatus.COMPLETED},
    CheckoutStatus.COMPLETED: set(),
}

def can_transition_checkout(current: CheckoutStatus, target: CheckoutStatus) -> bool:
    return target in CHECKOUT_TRANSITIONS.get(CheckoutStatus(current), set())

class CheckoutSession(Base):
    """
    Pending checkout: a snapshot of what the customer selected, kept until
    Stripe reports the outcome and the result is folded into a Subscription.
    """
    __tablename__ = "checkout_sessions"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    stripe_session_id = Column(String(255), nullable=True, index=True)
    status = Column(Enum(CheckoutStatus, native_enum=False, length=20), default=CheckoutStatus.PENDING, nullable=False)

    plan_id = Column(String(100), nullable=True)
    plan_name = Column(String(255), nullable=True)
    address_id = Column(Integer, nullable=True)
    address_label = Column(String(100), nullable=True)
    address_street = Column(String(255), nullable=False)
    address_city = Column(String(100), nullable=False)
    address_state = Column(String(2), nullable=False)
    address_postal_code = Column(String(20), nullable=False)
    address_summary = Column(String(500))
    services = Column(JSON, nullable=False)
    monthly_total = Column(Float, nullable=True)
    access_notes = Column(String(1000), nullable=True)
    preferred_service_day = Column(String(10), nullable=True)

    stripe_status = Column(String(50), nullable=True)
    stripe_payment_status = Column(String(50), nullable=True)
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True)

    completed_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())

class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # Upsert key for checkout finalization; NULLs do not collide.
    stripe_subscription_id = Column(String(255), unique=True, nullable=True)
    # Last checkout that wrote this row
    checkout_session_id = Column(Integer, ForeignKey("checkout_sessions.id"), nullable=True, index=True)
    status = Column(Enum(SubscriptionStatus, native_enum=False, length=20), default=SubscriptionStatus.ACTIVE, nullable=False)

    plan_id = Column(String(100), nullable=True)
    plan_name = Column(String(255), nullable=True)
    address_id = Column(Integer, nullable=True)
    address_label = Column(String(100), nullable=True)
    address_street = Column(String(255), nullable=False)
    address_city = Column(String(100), nullable=False)
    address_state = Column(String(2), nullable=False)
    address_postal_code = Column(String(20), nullable=False)
    services = Column(JSON, nullable=False)
    monthly_total = Column(Float, nullable=True)
    access_notes = Column(String(1000), nullable=True)
    preferred_service_day = Column(String(10), nullable=True)

    stripe_status = Column(String(50), nullable=True)
    stripe_payment_status = Column(String(50), nullable=True)
    stripe_customer_id = Column(String(255), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "planId": self.plan_id,
            "planName": self.plan_name,
            "addressId": self.address_id,
            "addressLabel": self.address_label,
            "addressStreet": self.address_street,
            "addressCity": self.address_city,
            "addressState": self.address_state,
            "addressPostalCode": self.address_postal_code,
            "preferredServiceDay": self.preferred_service_day,
            "services": self.services or [],
            "monthlyTotal": self.monthly_total,
            "accessNotes": self.access_notes,
            "status": SubscriptionStatus(self.status).value,
            "stripeStatus": self.stripe_status,
            "stripePaymentStatus": self.stripe_payment_status,
            "stripeSubscriptionId": self.stripe_subscription_id,
        }
