"""User model."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Uuid
from sqlalchemy.orm import relationship

from challenge_gate.core.database import Base
from challenge_gate.utils.datetime_utils import utc_now_lambda


class User(Base):
    """Account that is logging in."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    uid = Column(String(64), unique=True, nullable=False, index=True)  # Login name
    email = Column(String(255), nullable=True)
    display_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utc_now_lambda, nullable=False)

    # Relationships
    provider_states = relationship(
        "TwoFactorProviderState", back_populates="user", cascade="all, delete-orphan"
    )
    totp_secret = relationship(
        "TotpSecret", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    backup_codes = relationship(
        "BackupCode", back_populates="user", cascade="all, delete-orphan"
    )
