"""create issue tables

Revision ID: 3b9d1c0a7f21
Revises: 
Create Date: 2026-10-19 09:12:04.518233

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b9d1c0a7f21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, issues and issue_images."""
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='USER'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'issues',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('title', sa.String(length=100), nullable=False),
        sa.Column('description', sa.String(length=500)),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('location', sa.String(length=255)),
        sa.Column('category', sa.String(length=50)),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='MEDIUM'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='NEW'),
        sa.Column(
            'user_id',
            sa.String(length=32),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_issues_priority', 'issues', ['priority'])
    op.create_index('ix_issues_status', 'issues', ['status'])
    op.create_index('ix_issues_user_id', 'issues', ['user_id'])
    op.create_index('ix_issues_created_at', 'issues', ['created_at'])
    op.create_index('ix_issues_latitude_longitude', 'issues', ['latitude', 'longitude'])

    op.create_table(
        'issue_images',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'issue_id',
            sa.String(length=32),
            sa.ForeignKey('issues.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('url', sa.String(length=1024), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_issue_images_id', 'issue_images', ['id'])
    op.create_index('ix_issue_images_issue_id', 'issue_images', ['issue_id'])


def downgrade() -> None:
    """Drop the issue tables."""
    op.drop_table('issue_images')
    op.drop_table('issues')
    op.drop_table('users')
