from sqlalchemy import create_engine, Column, Integer, String, DateTime, Text
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime, timezone
from config import settings


def _utcnow():
    return datetime.now(timezone.utc)


connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Database Models
class IssuanceAttempt(Base):
    __tablename__ = "issuance_attempts"

    id = Column(Integer, primary_key=True, index=True)

    # local: license written to a directory on this machine
    # remote: provisioning run over adb
    kind = Column(String(20), nullable=False)

    # Target
    device_code = Column(String(255))
    device_id = Column(String(255))
    target = Column(Text)

    # Outcome
    serial_number = Column(String(64))
    result = Column(String(20), nullable=False)  # success, failed
    error_message = Column(Text)

    attempted_at = Column(DateTime, default=_utcnow, index=True)


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
