"""initial video critique schema: submissions, reviews, comments, notifications

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        'submissions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('athlete_uid', sa.Text(), nullable=False),
        sa.Column('coach_uid', sa.Text(), nullable=True),
        sa.Column('media_ref', sa.Text(), nullable=False),
        sa.Column('skill_tag', sa.Text(), nullable=False),
        sa.Column('athlete_context', sa.Text(), nullable=True),
        sa.Column('athlete_goals', sa.Text(), nullable=True),
        sa.Column('specific_questions', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), server_default='pending', nullable=False),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('review_id', sa.Uuid(), nullable=True),
        sa.Column('decline_reason', sa.Text(), nullable=True),
        sa.Column('declined_by', sa.Text(), nullable=True),
        sa.Column('sla_deadline', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sla_breach', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('comment_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'claimed', 'completed', 'declined')",
            name='ck_submissions_status',
        ),
        sa.CheckConstraint(
            "(status != 'pending' OR coach_uid IS NULL) AND (status != 'claimed' OR coach_uid IS NOT NULL)",
            name='ck_submissions_claim_owner',
        ),
    )
    op.create_index('ix_submissions_status_created_at', 'submissions', ['status', 'created_at'])
    op.create_index('ix_submissions_athlete_uid_created_at', 'submissions', ['athlete_uid', 'created_at'])
    op.create_index('ix_submissions_coach_uid_created_at', 'submissions', ['coach_uid', 'created_at'])

    op.create_table(
        'reviews',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('submission_id', sa.Uuid(), nullable=False),
        sa.Column('coach_uid', sa.Text(), nullable=False),
        sa.Column('rubric_scores', JSONType, nullable=False),
        sa.Column('annotations', JSONType, nullable=False),
        sa.Column('drill_recommendations', JSONType, nullable=False),
        sa.Column('overall_feedback', sa.Text(), nullable=True),
        sa.Column('next_steps', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), server_default='draft', nullable=False),
        sa.Column('athlete_satisfaction', sa.Integer(), nullable=True),
        sa.Column('athlete_feedback', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['submission_id'], ['submissions.id'], ),
        sa.UniqueConstraint('submission_id', name='uq_reviews_submission_id'),
        sa.CheckConstraint("status IN ('draft', 'published')", name='ck_reviews_status'),
    )
    op.create_index('ix_reviews_coach_uid_status', 'reviews', ['coach_uid', 'status'])

    op.create_table(
        'comments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('review_id', sa.Uuid(), nullable=False),
        sa.Column('submission_id', sa.Uuid(), nullable=False),
        sa.Column('parent_comment_id', sa.Uuid(), nullable=True),
        sa.Column('author_uid', sa.Text(), nullable=False),
        sa.Column('author_role', sa.Text(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('media_timestamp_s', sa.Integer(), nullable=True),
        sa.Column('edited', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('edited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['review_id'], ['reviews.id'], ),
        sa.ForeignKeyConstraint(['submission_id'], ['submissions.id'], ),
        sa.ForeignKeyConstraint(['parent_comment_id'], ['comments.id'], ),
    )
    op.create_index('ix_comments_review_id_created_at', 'comments', ['review_id', 'created_at'])
    op.create_index('ix_comments_parent_comment_id', 'comments', ['parent_comment_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recipient_uid', sa.Text(), nullable=False),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('submission_id', sa.Uuid(), nullable=True),
        sa.Column('review_id', sa.Uuid(), nullable=True),
        sa.Column('comment_id', sa.Uuid(), nullable=True),
        sa.Column('read', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_notifications_recipient_read_created',
        'notifications',
        ['recipient_uid', 'read', 'created_at'],
    )


def downgrade() -> None:
    op.drop_index('ix_notifications_recipient_read_created', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_comments_parent_comment_id', table_name='comments')
    op.drop_index('ix_comments_review_id_created_at', table_name='comments')
    op.drop_table('comments')
    op.drop_index('ix_reviews_coach_uid_status', table_name='reviews')
    op.drop_table('reviews')
    op.drop_index('ix_submissions_coach_uid_created_at', table_name='submissions')
    op.drop_index('ix_submissions_athlete_uid_created_at', table_name='submissions')
    op.drop_index('ix_submissions_status_created_at', table_name='submissions')
    op.drop_table('submissions')
