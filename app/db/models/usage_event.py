from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from sqlalchemy.sql import func

from app.db.base_class import Base


class AiUsageEvent(Base):
	"""Append-only ledger of AI extractions; rows are inserted, never updated."""
	__tablename__ = "ai_usage_events"
	__table_args__ = (
		UniqueConstraint("kind", "job_id", "run_at", name="uq_ai_usage_events_kind_job_run"),
	)

	id = Column(Integer, primary_key=True, index=True)
	user_id = Column(String(64), nullable=False, index=True)
	kind = Column(String(16), nullable=False)
	job_id = Column(String(36), nullable=False, index=True)
	run_at = Column(DateTime(timezone=True), nullable=False, index=True)
	status = Column(String(16), nullable=False, default="done")
	created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
