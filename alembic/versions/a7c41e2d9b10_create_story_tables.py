"""create story tables

Revision ID: a7c41e2d9b10
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = 'a7c41e2d9b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STATUS_VALUES = (
    "'draft', 'setting_expansion', 'characters_extracted', "
    "'text_approved', 'generating_images', 'completed'"
)
STEP_VALUES = "'details', 'setting', 'characters', 'review', 'images', 'complete'"


def upgrade() -> None:
    # stories: pages, characters and image history embedded as JSONB
    op.create_table(
        "stories",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("setting", sa.Text, nullable=False),
        sa.Column("expanded_setting", sa.Text, nullable=True),
        sa.Column("characters", sa.Text, nullable=False),
        sa.Column("extracted_characters", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("plot", sa.Text, nullable=False),
        sa.Column("age_group", sa.String(8), nullable=False),
        sa.Column("total_pages", sa.Integer, nullable=False),
        sa.Column("pages", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("core_image_url", sa.Text, nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("is_bookmarked", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("current_revision", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(f"status IN ({STATUS_VALUES})", name="ck_stories_status"),
        sa.CheckConstraint("age_group IN ('3-5', '6-8', '9-12')", name="ck_stories_age_group"),
        sa.CheckConstraint("total_pages BETWEEN 5 AND 50", name="ck_stories_total_pages"),
    )
    op.create_index("idx_stories_user_id_created_at", "stories", ["user_id", "created_at"])

    # story_revisions: append-only snapshots
    op.create_table(
        "story_revisions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("story_id", UUID(as_uuid=True), sa.ForeignKey("stories.id", ondelete="CASCADE"), nullable=False),
        sa.Column("revision_number", sa.Integer, nullable=False),
        sa.Column("step_completed", sa.String(20), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("snapshot", JSONB, nullable=False),
        sa.Column("parent_revision", sa.Integer, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("story_id", "revision_number", name="uq_story_revisions_number"),
        sa.CheckConstraint(f"step_completed IN ({STEP_VALUES})", name="ck_story_revisions_step"),
        sa.CheckConstraint(f"status IN ({STATUS_VALUES})", name="ck_story_revisions_status"),
    )

    # Triggers for auto-updating updated_at
    op.execute("""
        CREATE OR REPLACE FUNCTION public.update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER update_stories_updated_at
            BEFORE UPDATE ON stories
            FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS update_stories_updated_at ON stories;")
    op.drop_table("story_revisions")
    op.drop_index("idx_stories_user_id_created_at", table_name="stories")
    op.drop_table("stories")
