"""Two-factor provider state models."""

import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from challenge_gate.core.database import Base
from challenge_gate.services.encryption_service import EncryptedString
from challenge_gate.utils.datetime_utils import utc_now_lambda


class TwoFactorProviderState(Base):
    """Per-user enabled/disabled flag for one provider id.

    Rows may name providers that are not registered in this deployment;
    those surface as ``provider_missing`` on the user's provider set.
    """

    __tablename__ = "twofactor_providers"
    __table_args__ = (UniqueConstraint("user_id", "provider_id", name="uq_twofactor_user_provider"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_id = Column(String(64), nullable=False)
    enabled = Column(Boolean, default=False, nullable=False)
    updated_at = Column(DateTime, default=utc_now_lambda, onupdate=utc_now_lambda, nullable=False)

    user = relationship("User", back_populates="provider_states")


class TotpState(str, enum.Enum):
    """Lifecycle of a TOTP secret."""

    CREATED = "created"  # Generated during setup, first code not yet confirmed
    ENABLED = "enabled"


class TotpSecret(Base):
    """TOTP seed for a user (encrypted at rest)."""

    __tablename__ = "twofactor_totp_secrets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    secret = Column(EncryptedString(512), nullable=False)
    state = Column(SQLEnum(TotpState), default=TotpState.CREATED, nullable=False)

    # Time step of the last accepted code, used to reject replays
    last_counter = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utc_now_lambda, nullable=False)
    updated_at = Column(DateTime, default=utc_now_lambda, onupdate=utc_now_lambda, nullable=False)

    user = relationship("User", back_populates="totp_secret")


class BackupCode(Base):
    """One single-use backup code (argon2 hash only)."""

    __tablename__ = "twofactor_backup_codes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String(255), nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utc_now_lambda, nullable=False)
    used_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="backup_codes")
