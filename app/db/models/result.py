from sqlalchemy import Column, ForeignKey, Integer, String, Float, JSON
from sqlalchemy.orm import relationship
from app.db.base_class import AuditMixin, Base


class CallsheetResult(Base, AuditMixin):
	__tablename__ = "callsheet_results"

	id = Column(Integer, primary_key=True, index=True)
	job_id = Column(String(36), ForeignKey("extraction_jobs.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
	date_value = Column(String(10), nullable=False)
	project_value = Column(String(160), nullable=False)
	producer_value = Column(String(160), nullable=True)
	production_companies = Column(JSON, nullable=False, default=list)

	job = relationship("ExtractionJob", back_populates="callsheet_result")


class InvoiceResult(Base, AuditMixin):
	__tablename__ = "invoice_results"

	id = Column(Integer, primary_key=True, index=True)
	job_id = Column(String(36), ForeignKey("extraction_jobs.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
	total_amount = Column(Float, nullable=False)
	currency = Column(String(8), nullable=False, default="EUR")
	invoice_number = Column(String(64), nullable=True)
	invoice_date = Column(String(10), nullable=True)
	vendor_name = Column(String(120), nullable=True)
	purpose = Column(String(120), nullable=True)

	job = relationship("ExtractionJob", back_populates="invoice_result")
