"""CSV processing jobs

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum types
    op.execute("CREATE TYPE csvstatus AS ENUM ('queued', 'processing', 'completed', 'failed')")

    op.create_table(
        'csv_processing_jobs',
        sa.Column('job_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', sa.String(64), nullable=False, index=True),
        sa.Column('file_name', sa.String(500), nullable=False),
        sa.Column('file_size', sa.BigInteger(), default=0),
        sa.Column('created_by', sa.String(64), nullable=False),
        sa.Column('headers', postgresql.JSONB()),
        sa.Column('csv_status', postgresql.ENUM('queued', 'processing', 'completed', 'failed', name='csvstatus', create_type=False), nullable=False, server_default='queued', index=True),
        sa.Column('total_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
    )

    # The scheduler polls for the oldest queued job
    op.create_index('ix_csv_jobs_status_created', 'csv_processing_jobs', ['csv_status', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_csv_jobs_status_created', table_name='csv_processing_jobs')
    op.drop_table('csv_processing_jobs')

    # Drop enum types
    op.execute("DROP TYPE csvstatus")
