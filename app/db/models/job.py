import uuid

from sqlalchemy import Column, Integer, String, Text, DateTime, Index
from sqlalchemy.orm import relationship
from app.db.base_class import AuditMixin, Base


class ExtractionJob(Base, AuditMixin):
	__tablename__ = "extraction_jobs"
	__table_args__ = (
		Index("ix_extraction_jobs_status_created_at", "status", "created_at"),
		Index("ix_extraction_jobs_user_status", "user_id", "status"),
	)

	id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
	user_id = Column(String(64), nullable=False, index=True)
	kind = Column(String(16), nullable=False, index=True)  # callsheet | invoice
	storage_path = Column(String(512), nullable=False, default="pending")
	status = Column(String(16), nullable=False, index=True, default="created")
	retry_count = Column(Integer, nullable=False, default=0)
	max_retries = Column(Integer, nullable=False, default=3)
	next_retry_at = Column(DateTime(timezone=True), nullable=True)
	processing_started_at = Column(DateTime(timezone=True), nullable=True, index=True)
	finished_at = Column(DateTime(timezone=True), nullable=True)
	last_error = Column(Text, nullable=True)
	needs_review_reason = Column(Text, nullable=True)

	callsheet_result = relationship("CallsheetResult", back_populates="job", uselist=False, cascade="all, delete-orphan")
	invoice_result = relationship("InvoiceResult", back_populates="job", uselist=False, cascade="all, delete-orphan")
	locations = relationship("CallsheetLocation", back_populates="job", cascade="all, delete-orphan")
