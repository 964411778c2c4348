from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.studio.models import Base
from app.studio.utils import utcnow

PURPOSES = ("registration", "password_reset")


class OtpChallenge(Base):
    """
    One issued verification code. Reissuing creates a new row with the next
    `sequence`; only the highest sequence per identifier is ever checked.
    """

    __tablename__ = "otp_challenges"
    __table_args__ = (
        UniqueConstraint("identifier", "sequence", name="uq_otp_identifier_sequence"),
        Index("idx_otp_identifier", "identifier"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    handle: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    identifier: Mapped[str] = mapped_column(String(320), nullable=False)  # normalized email
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)

    code_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    cooldown_until: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Registration keeps the wizard's identity step; password reset targets an account.
    draft_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    target_author_id: Mapped[int | None] = mapped_column(ForeignKey("authors.id", ondelete="CASCADE"), nullable=True)

    # Issued on successful verification, spent by the follow-up action.
    grant_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    grant_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    grant_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
