"""create extraction tables

Revision ID: a3c7e1f20b14
Revises:
Create Date: 2026-01-12 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a3c7e1f20b14'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _audit_columns():
	return [
		sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.text('false')),
		sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
		sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
		sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
	]


def upgrade() -> None:
	"""Upgrade schema."""
	op.create_table(
		'extraction_jobs',
		sa.Column('id', sa.String(length=36), nullable=False),
		*_audit_columns(),
		sa.Column('user_id', sa.String(length=64), nullable=False),
		sa.Column('kind', sa.String(length=16), nullable=False),
		sa.Column('storage_path', sa.String(length=512), nullable=False, server_default='pending'),
		sa.Column('status', sa.String(length=16), nullable=False, server_default='created'),
		sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
		sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
		sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
		sa.Column('processing_started_at', sa.DateTime(timezone=True), nullable=True),
		sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
		sa.Column('last_error', sa.Text(), nullable=True),
		sa.Column('needs_review_reason', sa.Text(), nullable=True),
		sa.PrimaryKeyConstraint('id')
	)
	op.create_index('ix_extraction_jobs_user_id', 'extraction_jobs', ['user_id'], unique=False)
	op.create_index('ix_extraction_jobs_kind', 'extraction_jobs', ['kind'], unique=False)
	op.create_index('ix_extraction_jobs_status', 'extraction_jobs', ['status'], unique=False)
	op.create_index('ix_extraction_jobs_processing_started_at', 'extraction_jobs', ['processing_started_at'], unique=False)
	op.create_index('ix_extraction_jobs_status_created_at', 'extraction_jobs', ['status', 'created_at'], unique=False)
	op.create_index('ix_extraction_jobs_user_status', 'extraction_jobs', ['user_id', 'status'], unique=False)

	op.create_table(
		'callsheet_results',
		sa.Column('id', sa.Integer(), nullable=False),
		*_audit_columns(),
		sa.Column('job_id', sa.String(length=36), nullable=False),
		sa.Column('date_value', sa.String(length=10), nullable=False),
		sa.Column('project_value', sa.String(length=160), nullable=False),
		sa.Column('producer_value', sa.String(length=160), nullable=True),
		sa.Column('production_companies', sa.JSON(), nullable=False),
		sa.ForeignKeyConstraint(['job_id'], ['extraction_jobs.id'], ondelete='CASCADE'),
		sa.PrimaryKeyConstraint('id')
	)
	op.create_index('ix_callsheet_results_job_id', 'callsheet_results', ['job_id'], unique=True)

	op.create_table(
		'invoice_results',
		sa.Column('id', sa.Integer(), nullable=False),
		*_audit_columns(),
		sa.Column('job_id', sa.String(length=36), nullable=False),
		sa.Column('total_amount', sa.Float(), nullable=False),
		sa.Column('currency', sa.String(length=8), nullable=False),
		sa.Column('invoice_number', sa.String(length=64), nullable=True),
		sa.Column('invoice_date', sa.String(length=10), nullable=True),
		sa.Column('vendor_name', sa.String(length=120), nullable=True),
		sa.Column('purpose', sa.String(length=120), nullable=True),
		sa.ForeignKeyConstraint(['job_id'], ['extraction_jobs.id'], ondelete='CASCADE'),
		sa.PrimaryKeyConstraint('id')
	)
	op.create_index('ix_invoice_results_job_id', 'invoice_results', ['job_id'], unique=True)

	op.create_table(
		'callsheet_locations',
		sa.Column('id', sa.Integer(), nullable=False),
		*_audit_columns(),
		sa.Column('job_id', sa.String(length=36), nullable=False),
		sa.Column('address_raw', sa.String(length=300), nullable=False),
		sa.Column('label_source', sa.String(length=32), nullable=False, server_default='EXTRACTED'),
		sa.Column('evidence_text', sa.Text(), nullable=True),
		sa.Column('formatted_address', sa.String(length=512), nullable=True),
		sa.Column('lat', sa.Float(), nullable=True),
		sa.Column('lng', sa.Float(), nullable=True),
		sa.Column('place_id', sa.String(length=256), nullable=True),
		sa.Column('geocode_quality', sa.String(length=32), nullable=True),
		sa.ForeignKeyConstraint(['job_id'], ['extraction_jobs.id'], ondelete='CASCADE'),
		sa.PrimaryKeyConstraint('id')
	)
	op.create_index('ix_callsheet_locations_job_id', 'callsheet_locations', ['job_id'], unique=False)

	op.create_table(
		'ai_usage_events',
		sa.Column('id', sa.Integer(), nullable=False),
		sa.Column('user_id', sa.String(length=64), nullable=False),
		sa.Column('kind', sa.String(length=16), nullable=False),
		sa.Column('job_id', sa.String(length=36), nullable=False),
		sa.Column('run_at', sa.DateTime(timezone=True), nullable=False),
		sa.Column('status', sa.String(length=16), nullable=False, server_default='done'),
		sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
		sa.PrimaryKeyConstraint('id'),
		sa.UniqueConstraint('kind', 'job_id', 'run_at', name='uq_ai_usage_events_kind_job_run')
	)
	op.create_index('ix_ai_usage_events_user_id', 'ai_usage_events', ['user_id'], unique=False)
	op.create_index('ix_ai_usage_events_job_id', 'ai_usage_events', ['job_id'], unique=False)
	op.create_index('ix_ai_usage_events_run_at', 'ai_usage_events', ['run_at'], unique=False)

	op.create_table(
		'profiles',
		sa.Column('user_id', sa.String(length=64), nullable=False),
		*_audit_columns(),
		sa.Column('plan_tier', sa.String(length=16), nullable=False, server_default='basic'),
		sa.PrimaryKeyConstraint('user_id')
	)


def downgrade() -> None:
	"""Downgrade schema."""
	op.drop_table('profiles')
	op.drop_index('ix_ai_usage_events_run_at', table_name='ai_usage_events')
	op.drop_index('ix_ai_usage_events_job_id', table_name='ai_usage_events')
	op.drop_index('ix_ai_usage_events_user_id', table_name='ai_usage_events')
	op.drop_table('ai_usage_events')
	op.drop_index('ix_callsheet_locations_job_id', table_name='callsheet_locations')
	op.drop_table('callsheet_locations')
	op.drop_index('ix_invoice_results_job_id', table_name='invoice_results')
	op.drop_table('invoice_results')
	op.drop_index('ix_callsheet_results_job_id', table_name='callsheet_results')
	op.drop_table('callsheet_results')
	op.drop_index('ix_extraction_jobs_user_status', table_name='extraction_jobs')
	op.drop_index('ix_extraction_jobs_status_created_at', table_name='extraction_jobs')
	op.drop_index('ix_extraction_jobs_processing_started_at', table_name='extraction_jobs')
	op.drop_index('ix_extraction_jobs_status', table_name='extraction_jobs')
	op.drop_index('ix_extraction_jobs_kind', table_name='extraction_jobs')
	op.drop_index('ix_extraction_jobs_user_id', table_name='extraction_jobs')
	op.drop_table('extraction_jobs')
