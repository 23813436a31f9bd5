"""SQLAlchemy ORM models for database tables."""
import uuid

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Enum, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID as PostgreSQL_UUID
from sqlalchemy.types import CHAR, TypeDecorator

from rental_access.domain.models import RentalTier, ViewingMode
from rental_access.infrastructure.database import Base
from rental_access.utils import utcnow


class GUID(TypeDecorator):
    """Platform-independent GUID type.

    Uses PostgreSQL UUID, otherwise CHAR(32), storing as stringified hex.
    """
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PostgreSQL_UUID(as_uuid=True))
        else:
            return dialect.type_descriptor(CHAR(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return str(value)
        else:
            if not isinstance(value, uuid.UUID):
                return "%.32x" % uuid.UUID(value).int
            else:
                return "%.32x" % value.int

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        else:
            if not isinstance(value, uuid.UUID):
                value = uuid.UUID(value)
            return value


class RentalModel(Base):
    """SQLAlchemy model for rentals table. Rows are never deleted."""

    __tablename__ = "rentals"

    rental_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID(), nullable=False, index=True)
    film_id = Column(Integer, nullable=False, index=True)
    access_token = Column(String(64), nullable=True, unique=True)
    tier = Column(Enum(RentalTier, name="rental_tier"), nullable=False, default=RentalTier.STANDARD)
    rented_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    viewing_mode = Column(
        Enum(ViewingMode, name="viewing_mode"),
        nullable=False,
        default=ViewingMode.UNSET,
    )
    watch_progress_percent = Column(Integer, nullable=False, default=0)
    watch_completed_at = Column(DateTime, nullable=True)
    rewind_claimed = Column(Boolean, nullable=False, default=False)
    return_requested = Column(Boolean, nullable=False, default=False)
    extension_used = Column(Boolean, nullable=False, default=False)
    returned_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # A title has exactly one playable copy
        Index(
            "uq_rentals_active_film",
            "film_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("idx_rentals_active_expires", "is_active", "expires_at"),
        Index("idx_rentals_user_active", "user_id", "is_active"),
    )


class RentalEventModel(Base):
    """SQLAlchemy model for rental audit events."""

    __tablename__ = "rental_events"

    event_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    rental_id = Column(GUID(), nullable=False, index=True)
    ts = Column(DateTime, nullable=False, default=utcnow, index=True)
    type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=True)


class CreditAccountModel(Base):
    """Per-user credit balance."""

    __tablename__ = "credit_accounts"

    user_id = Column(GUID(), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
    )


class CreditLedgerEntryModel(Base):
    """Signed journal of every balance change."""

    __tablename__ = "credit_ledger_entries"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID(), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String(32), nullable=False)
    rental_id = Column(GUID(), nullable=True, index=True)
    ts = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_ledger_reason_rental", "reason", "rental_id"),
        # A rental debit is refunded at most once
        Index(
            "uq_ledger_refund_rental",
            "rental_id",
            unique=True,
            postgresql_where=text("reason = 'refund'"),
            sqlite_where=text("reason = 'refund'"),
        ),
    )
