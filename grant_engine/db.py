from datetime import datetime, timezone

from sqlalchemy import (
    create_engine,
    Column,
    String,
    Integer,
    Float,
    DateTime,
    Boolean,
    Text,
    ForeignKey,
    Index,
    JSON,
)
from sqlalchemy.orm import sessionmaker, declarative_base, relationship
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Stores naive UTC, hands back aware UTC.
    SQLite has no timezone support, so everything is normalized here.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


# ---------- DB setup ----------

def create_db_engine(url: str):
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}  # sweeper thread + request threads
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def create_session_factory(engine):
    # Rows leave the store as detached snapshots, so nothing is expired on commit.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine):
    """Create tables if they don't exist."""
    Base.metadata.create_all(bind=engine)


# ---------- Catalog models (owned by collaborators, read here) ----------

class Person(Base):
    __tablename__ = "people"

    id = Column(Integer, primary_key=True, index=True)
    display_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    role = Column(String, nullable=True)   # "patient" | "doctor"


class MedicalRecord(Base):
    """
    A patient's record. Only the shareable attributes are modelled;
    file storage lives elsewhere.
    """
    __tablename__ = "medical_records"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("people.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    record_type = Column(String, nullable=True)

    blood_group = Column(String, nullable=True)
    blood_pressure = Column(String, nullable=True)
    heart_rate = Column(Integer, nullable=True)
    temperature = Column(Float, nullable=True)
    weight = Column(Float, nullable=True)
    diagnosis_condition = Column(Text, nullable=True)
    medication = Column(Text, nullable=True)

    owner = relationship("Person")


# Field identifiers a grant scope may name, mapped to record columns.
RECORD_FIELDS = {
    "title": "title",
    "description": "description",
    "recordType": "record_type",
    "bloodGroup": "blood_group",
    "bloodPressure": "blood_pressure",
    "heartRate": "heart_rate",
    "temperature": "temperature",
    "weight": "weight",
    "diagnosisCondition": "diagnosis_condition",
    "medication": "medication",
}


# ---------- Grants ----------

class GrantRow(Base):
    __tablename__ = "grants"
    __table_args__ = (
        Index("ix_grants_key_granted_at", "owner_id", "grantee_id", "resource_id", "granted_at"),
        Index("ix_grants_sweep", "is_granted", "revoked_at", "expires_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False)
    grantee_id = Column(Integer, nullable=False, index=True)
    resource_id = Column(Integer, nullable=False, index=True)

    scope = Column(JSON(none_as_null=True), nullable=True)  # None -> full record, else list[str]
    access_level = Column(String, nullable=False)     # READ | WRITE | FULL_ACCESS
    is_granted = Column(Boolean, nullable=False, default=False)

    granted_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=True)
    revoked_at = Column(UTCDateTime, nullable=True)

    duration_hours = Column(Integer, nullable=True)
    warned_at = Column(UTCDateTime, nullable=True)
    revoke_reason = Column(String, nullable=True)     # owner | expired | resource_deleted | superseded
