from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from dotenv import load_dotenv
import os

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set in environment (.env)")

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=300
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

DEFAULT_SERVICES = [
    {
        "name": "Curbside Classic",
        "description": "Weekly trash can roll-out and return with reminder texts.",
        "price": 19.99,
        "unit": "per month",
    },
    {
        "name": "Home Care Basic",
        "description": "Weekly trash help plus twice-monthly yard freshness.",
        "price": 44.99,
        "unit": "per month",
    },
    {
        "name": "Home Care Plus",
        "description": "Premium curbside concierge service with seasonal extras.",
        "price": 57.59,
        "unit": "per month",
    },
    {
        "name": "One-Time Deep Clean",
        "description": "Single-visit bin cleaning and sanitation for two cans.",
        "price": 29.0,
        "unit": "per visit",
    },
]

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db():
    # Import models here to register them with Base
    from models import user, catalog, subscription, custom_estimate  # noqa: F401
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_services(db)
    finally:
        db.close()

def seed_services(db):
    """Insert the default catalog when no active service exists. Returns the active services."""
    from models.catalog import Service

    services = db.query(Service).filter(Service.active.is_(True)).order_by(Service.name).all()
    if services:
        return services

    for data in DEFAULT_SERVICES:
        db.add(Service(**data))
    db.commit()
    return db.query(Service).filter(Service.active.is_(True)).order_by(Service.name).all()
