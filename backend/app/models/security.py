"""Security-related persistence models."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.utils.datetime_utils import utc_now


class LoginAttempt(Base):
    """Failed-login counter and temporary block for one network address."""

    __tablename__ = "login_attempts"

    id = Column(Integer, primary_key=True, index=True)
    ip_address = Column(String(64), unique=True, nullable=False)
    failed_attempts = Column(Integer, default=0, nullable=False)
    last_attempt_at = Column(DateTime, default=utc_now, nullable=False)
    blocked_until = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_login_attempts_last_attempt", "last_attempt_at"),
        CheckConstraint("failed_attempts >= 0", name="chk_login_attempts_failed"),
    )


class RevokedToken(Base):
    """Session token revoked before its natural expiry."""

    __tablename__ = "revoked_tokens"

    id = Column(Integer, primary_key=True, index=True)
    token_fingerprint = Column(String(64), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reason = Column(String(20), nullable=False, default="logout")
    revoked_at = Column(DateTime, default=utc_now, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_revoked_tokens_expires_at", "expires_at"),
        CheckConstraint("reason IN ('logout', 'security', 'expired')", name="chk_revoked_token_reason"),
    )


class PasswordResetToken(Base):
    """Single-use password recovery token. Only the SHA-256 of the secret is stored."""

    __tablename__ = "password_reset_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)
    ip_address = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    user = relationship("User", back_populates="reset_tokens")

    __table_args__ = (
        Index("idx_password_reset_tokens_user_used", "user_id", "used"),
        Index("idx_password_reset_tokens_expires_at", "expires_at"),
    )
