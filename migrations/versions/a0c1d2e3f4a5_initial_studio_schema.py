"""initial studio schema

Revision ID: a0c1d2e3f4a5
Revises:
Create Date: 2026-10-19 09:12:40.118302

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = 'a0c1d2e3f4a5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _review_state_columns() -> list[sa.Column]:
    return [
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("rejection_reason", sa.String(512), nullable=True),
        sa.Column("review_round", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("submitted_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        )

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column(
                "permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
            ),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_type", sa.String(16), nullable=True),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("actor_email", sa.String(320), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )

    if "authors" not in existing_tables:
        op.create_table(
            "authors",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("pseudo", sa.String(64), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("phone_number", sa.String(32), nullable=True),
            sa.Column("biography", sa.Text(), nullable=True),
            sa.Column("speciality", sa.String(128), nullable=True),
            sa.Column("status", sa.String(16), nullable=False, server_default="active"),
            sa.Column("email_verified_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("last_login_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("password_changed_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
        )

    if "otp_challenges" not in existing_tables:
        op.create_table(
            "otp_challenges",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("handle", sa.String(64), nullable=False, unique=True),
            sa.Column("identifier", sa.String(320), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("purpose", sa.String(32), nullable=False),
            sa.Column("code_hash", sa.String(255), nullable=False),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("issued_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("cooldown_until", sa.DateTime(timezone=False), nullable=False),
            sa.Column("consumed_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("draft_payload", sa.JSON(), nullable=True),
            sa.Column(
                "target_author_id", sa.Integer(), sa.ForeignKey("authors.id", ondelete="CASCADE"), nullable=True
            ),
            sa.Column("grant_hash", sa.String(255), nullable=True),
            sa.Column("grant_expires_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("grant_used_at", sa.DateTime(timezone=False), nullable=True),
            sa.UniqueConstraint("identifier", "sequence", name="uq_otp_identifier_sequence"),
        )
        op.create_index("idx_otp_identifier", "otp_challenges", ["identifier"])

    if "verification_submissions" not in existing_tables:
        op.create_table(
            "verification_submissions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("author_id", sa.Integer(), sa.ForeignKey("authors.id", ondelete="CASCADE"), nullable=False),
            sa.Column("kind", sa.String(32), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("fields", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("rejection_reason", sa.String(512), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column(
                "reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            sa.UniqueConstraint("author_id", "kind", "version", name="uq_submission_author_kind_version"),
        )
        op.create_index("idx_submission_status", "verification_submissions", ["kind", "status"])

    if "stories" not in existing_tables:
        op.create_table(
            "stories",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("author_id", sa.Integer(), sa.ForeignKey("authors.id", ondelete="CASCADE"), nullable=False),
            sa.Column("title", sa.JSON(), nullable=False),
            sa.Column("synopsis", sa.JSON(), nullable=False),
            sa.Column("genre_id", sa.Integer(), nullable=True),
            sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("cover_url", sa.String(512), nullable=True),
            sa.Column("archived_at", sa.DateTime(timezone=False), nullable=True),
            *_review_state_columns(),
        )
        op.create_index("idx_stories_status", "stories", ["status"])

    if "chapters" not in existing_tables:
        op.create_table(
            "chapters",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("story_id", sa.Integer(), sa.ForeignKey("stories.id", ondelete="CASCADE"), nullable=False),
            sa.Column("number", sa.Integer(), nullable=False),
            sa.Column("title", sa.JSON(), nullable=False),
            sa.Column("content", sa.JSON(), nullable=False),
            *_review_state_columns(),
            sa.UniqueConstraint("story_id", "number", name="uq_chapter_story_number"),
        )
        op.create_index("idx_chapters_status", "chapters", ["status"])

    if "content_reviews" not in existing_tables:
        op.create_table(
            "content_reviews",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("content_type", sa.String(16), nullable=False),
            sa.Column("content_id", sa.Integer(), nullable=False),
            sa.Column("round", sa.Integer(), nullable=False),
            sa.Column("submitted_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("decision", sa.String(16), nullable=True),
            sa.Column("rejection_reason", sa.String(512), nullable=True),
            sa.Column("admin_edits", sa.JSON(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column(
                "reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            sa.UniqueConstraint("content_type", "content_id", "round", name="uq_content_review_round"),
        )
        op.create_index("idx_content_review_target", "content_reviews", ["content_type", "content_id"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("recipient_type", sa.String(16), nullable=False),
            sa.Column("recipient_id", sa.Integer(), nullable=True),
            sa.Column("type", sa.String(64), nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("action_url", sa.String(512), nullable=True),
            sa.Column("source_type", sa.String(64), nullable=True),
            sa.Column("source_id", sa.Integer(), nullable=True),
            sa.Column("transition_version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("dedupe_key", sa.String(255), nullable=False, unique=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        )
        op.create_index(
            "idx_notifications_recipient", "notifications", ["recipient_type", "recipient_id", "is_read"]
        )


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "notifications",
        "content_reviews",
        "chapters",
        "stories",
        "verification_submissions",
        "otp_challenges",
        "authors",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
