"""Repositories for extraction results and callsheet locations."""

from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session

from app.repositories.base import BaseRepository
from app.db.models.result import CallsheetResult, InvoiceResult
from app.db.models.location import CallsheetLocation
from app.schemas.job import JobKind


class CallsheetResultRepository(BaseRepository[CallsheetResult]):
	def __init__(self, db: Session, correlation_id: Optional[str] = None):
		super().__init__(db, CallsheetResult, correlation_id)

	def get_by_job(self, job_id: str) -> Optional[CallsheetResult]:
		return self.db.query(self.model).filter(self.model.job_id == job_id).first()

	def upsert(self, job_id: str, fields: Dict[str, Any]) -> CallsheetResult:
		"""One result row per job; a re-run overwrites it."""
		row = self.get_by_job(job_id)
		if row is None:
			return self.create(fields, job_id=job_id)
		for k, v in fields.items():
			setattr(row, k, v)
		self.db.flush()
		self._log_operation("upsert_update", job_id=job_id)
		return row


class InvoiceResultRepository(BaseRepository[InvoiceResult]):
	def __init__(self, db: Session, correlation_id: Optional[str] = None):
		super().__init__(db, InvoiceResult, correlation_id)

	def get_by_job(self, job_id: str) -> Optional[InvoiceResult]:
		return self.db.query(self.model).filter(self.model.job_id == job_id).first()

	def upsert(self, job_id: str, fields: Dict[str, Any]) -> InvoiceResult:
		row = self.get_by_job(job_id)
		if row is None:
			return self.create(fields, job_id=job_id)
		for k, v in fields.items():
			setattr(row, k, v)
		self.db.flush()
		self._log_operation("upsert_update", job_id=job_id)
		return row


class LocationRepository(BaseRepository[CallsheetLocation]):
	def __init__(self, db: Session, correlation_id: Optional[str] = None):
		super().__init__(db, CallsheetLocation, correlation_id)

	def list_by_job(self, job_id: str) -> List[CallsheetLocation]:
		return self.db.query(self.model).filter(
			self.model.job_id == job_id,
			self.model.is_deleted == False
		).order_by(self.model.id.asc()).all()

	def replace_for_job(self, job_id: str, rows: List[Dict[str, Any]]) -> List[CallsheetLocation]:
		"""Drop the job's previous locations and insert `rows`."""
		deleted = self.db.query(self.model).filter(self.model.job_id == job_id).delete(synchronize_session=False)
		created = [self.model(job_id=job_id, **row) for row in rows]
		self.db.add_all(created)
		self.db.flush()
		self._log_operation("replace_for_job", job_id=job_id, removed=deleted, inserted=len(created))
		return created


class ResultRepository:
	"""Kind-aware facade over the two result tables."""

	def __init__(self, db: Session, correlation_id: Optional[str] = None):
		self.callsheets = CallsheetResultRepository(db, correlation_id)
		self.invoices = InvoiceResultRepository(db, correlation_id)
		self.locations = LocationRepository(db, correlation_id)

	def _for(self, kind: JobKind):
		return self.callsheets if JobKind(kind) == JobKind.CALLSHEET else self.invoices

	def get_by_job(self, kind: JobKind, job_id: str):
		return self._for(kind).get_by_job(job_id)

	def exists(self, kind: JobKind, job_id: str) -> bool:
		return self.get_by_job(kind, job_id) is not None

	def upsert(self, kind: JobKind, job_id: str, fields: Dict[str, Any]):
		return self._for(kind).upsert(job_id, fields)
