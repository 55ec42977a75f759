from sqlalchemy import Column, ForeignKey, Integer, String, Float, Text
from sqlalchemy.orm import relationship
from app.db.base_class import AuditMixin, Base


class CallsheetLocation(Base, AuditMixin):
	__tablename__ = "callsheet_locations"

	id = Column(Integer, primary_key=True, index=True)
	job_id = Column(String(36), ForeignKey("extraction_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
	address_raw = Column(String(300), nullable=False)
	label_source = Column(String(32), nullable=False, default="EXTRACTED")  # EXTRACTED | SCRIPT_EXTRACTED
	evidence_text = Column(Text, nullable=True)
	formatted_address = Column(String(512), nullable=True)
	lat = Column(Float, nullable=True)
	lng = Column(Float, nullable=True)
	place_id = Column(String(256), nullable=True)
	geocode_quality = Column(String(32), nullable=True)

	job = relationship("ExtractionJob", back_populates="locations")
