"""Initial schema: dataset and dataset_event

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the dataset catalog tables."""

    op.create_table(
        'dataset',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('owner', sa.String(255), nullable=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('file_type', sa.String(20), nullable=False),
        sa.Column('content_type', sa.String(255), nullable=True),
        sa.Column('uri', sa.Text(), nullable=False),
        sa.Column('columns', sa.JSON(), nullable=True),
        sa.Column('row_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processing_status', sa.String(20), nullable=False,
                  server_default='pending'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempt_id', sa.Uuid(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('is_public', sa.Boolean(), nullable=False,
                  server_default=sa.false()),
        sa.Column('upload_date', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('last_modified', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
        sa.CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed')",
            name='check_dataset_processing_status'),
        sa.CheckConstraint(
            "file_type IN ('csv', 'json', 'excel')", name='check_dataset_file_type'),
        sa.CheckConstraint('row_count >= 0', name='check_dataset_row_count'),
        sa.CheckConstraint('file_size >= 0', name='check_dataset_file_size'),
    )
    op.create_index('ix_dataset_owner', 'dataset', ['owner'])
    op.create_index('ix_dataset_file_type', 'dataset', ['file_type'])
    op.create_index('ix_dataset_processing_status', 'dataset', ['processing_status'])
    op.create_index('idx_dataset_owner_created_at', 'dataset', ['owner', 'created_at'])

    op.create_table(
        'dataset_event',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('dataset_id', sa.Uuid(),
                  sa.ForeignKey('dataset.id', ondelete='CASCADE'), nullable=False),
        sa.Column('request_id', sa.String(255), nullable=True),
        sa.Column('stage', sa.String(100), nullable=False),
        sa.Column('detail', sa.JSON(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
    )
    op.create_index('ix_dataset_event_dataset_id', 'dataset_event', ['dataset_id'])
    op.create_index('ix_dataset_event_stage', 'dataset_event', ['stage'])
    op.create_index('idx_dataset_event_created_at', 'dataset_event', ['created_at'])


def downgrade() -> None:
    """Drop the dataset catalog tables."""
    op.drop_index('idx_dataset_event_created_at', table_name='dataset_event')
    op.drop_index('ix_dataset_event_stage', table_name='dataset_event')
    op.drop_index('ix_dataset_event_dataset_id', table_name='dataset_event')
    op.drop_table('dataset_event')

    op.drop_index('idx_dataset_owner_created_at', table_name='dataset')
    op.drop_index('ix_dataset_processing_status', table_name='dataset')
    op.drop_index('ix_dataset_file_type', table_name='dataset')
    op.drop_index('ix_dataset_owner', table_name='dataset')
    op.drop_table('dataset')
