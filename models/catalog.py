from sqlalchemy import Column, Integer, String, Float, Boolean, TIMESTAMP, JSON, func
from db.init import Base

class Service(Base):
    __tablename__ = "services"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500))
    price = Column(Float, nullable=False)
    unit = Column(String(50), default="per month")
    savings = Column(String(255), nullable=True)
    active = Column(Boolean, default=True)
    created_at = Column(TIMESTAMP, server_default=func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "unit": self.unit,
            "savings": self.savings,
        }

class Quote(Base):
    """Anonymous quote-builder submission, remembered through the quoteId cookie."""
    __tablename__ = "quotes"
    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    email = Column(String(255))
    phone = Column(String(30), nullable=True)
    street = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(2), nullable=True)
    postal_code = Column(String(20), nullable=True)
    notes = Column(String(2000), nullable=True)
    services = Column(JSON)
    estimated_total = Column(Float, default=0.0)
    created_at = Column(TIMESTAMP, server_default=func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
            "notes": self.notes,
            "services": self.services or [],
            "estimatedTotal": self.estimated_total,
        }
