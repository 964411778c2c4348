from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.studio.models import Base
from app.studio.modules.authors.models import Author
from app.studio.utils import utcnow

# draft -> pending -> published | rejected; rejected -> pending; published -> archived
CONTENT_STATUSES = ("draft", "pending", "published", "rejected", "archived")


class ReviewState:
    """Columns shared by every reviewable content type."""

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    rejection_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # Incremented on each submit-for-review; keys review records and notifications.
    review_round: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)


class Story(ReviewState, Base):
    __tablename__ = "stories"
    __table_args__ = (Index("idx_stories_status", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("authors.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    synopsis: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    genre_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cover_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    author: Mapped[Author] = relationship("Author", lazy="selectin")
    chapters: Mapped[list["Chapter"]] = relationship(
        "Chapter",
        back_populates="story",
        cascade="all, delete-orphan",
        order_by="Chapter.number",
    )


class Chapter(ReviewState, Base):
    __tablename__ = "chapters"
    __table_args__ = (
        UniqueConstraint("story_id", "number", name="uq_chapter_story_number"),
        Index("idx_chapters_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    story_id: Mapped[int] = mapped_column(ForeignKey("stories.id", ondelete="CASCADE"), nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)

    title: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    content: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    story: Mapped[Story] = relationship("Story", back_populates="chapters", lazy="selectin")


class ContentReview(Base):
    """
    One review round of a story or chapter: opened by submit-for-review,
    closed by the moderator's decision.
    """

    __tablename__ = "content_reviews"
    __table_args__ = (
        UniqueConstraint("content_type", "content_id", "round", name="uq_content_review_round"),
        Index("idx_content_review_target", "content_type", "content_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)  # "story" | "chapter"
    content_id: Mapped[int] = mapped_column(Integer, nullable=False)
    round: Mapped[int] = mapped_column(Integer, nullable=False)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    decision: Mapped[str | None] = mapped_column(String(16), nullable=True)  # published | rejected
    rejection_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    admin_edits: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
