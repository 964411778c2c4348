from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.studio.models import Base
from app.studio.modules.authors.models import Author
from app.studio.utils import utcnow

KINDS = ("kyc", "payment_method")
STATUSES = ("pending", "approved", "rejected")


class VerificationSubmission(Base):
    """
    One version of an author's KYC or payout-method submission.

    Resubmitting after a rejection inserts version n+1; rejected rows are
    never rewritten. The highest version per (author, kind) is current.
    """

    __tablename__ = "verification_submissions"
    __table_args__ = (
        UniqueConstraint("author_id", "kind", "version", name="uq_submission_author_kind_version"),
        Index("idx_submission_status", "kind", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("authors.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # kyc: cin_number, doc_front, doc_back, selfie (blob keys)
    # payment_method: provider, phone_number, account_holder_name
    fields: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    rejection_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    author: Mapped[Author] = relationship("Author", lazy="selectin")
