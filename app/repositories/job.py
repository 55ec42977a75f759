"""Job repository: reads and conditional status transitions for extraction jobs.

Every status change is a single `UPDATE ... WHERE status IN (...)`, so two
writers racing on the same job cannot both win. The rowcount says who did.
"""

from datetime import datetime
from typing import Optional, Dict, Any, Iterable, List

from sqlalchemy import update, func
from sqlalchemy.orm import Session

from app.repositories.base import BaseRepository
from app.db.base_class import utcnow
from app.db.models.job import ExtractionJob
from app.schemas.job import ClaimedJob, JobKind, JobStatus, CANCELABLE_STATUSES, PENDING_STORAGE_PATH


def _values(statuses: Iterable[JobStatus]) -> List[str]:
	return [JobStatus(s).value for s in statuses]


class JobRepository(BaseRepository[ExtractionJob]):
	"""Repository for ExtractionJob entity operations."""

	def __init__(self, db: Session, correlation_id: Optional[str] = None):
		super().__init__(db, ExtractionJob, correlation_id)

	def get_by_id_and_user(self, job_id: str, user_id: str) -> Optional[ExtractionJob]:
		"""Get job by ID ensuring ownership by user."""
		result = self.db.query(self.model).filter(
			self.model.id == job_id,
			self.model.user_id == user_id,
			self.model.is_deleted == False
		).first()
		self._log_operation("get_by_id_and_user", job_id=job_id, user_id=user_id, found=result is not None)
		return result

	def get_fresh(self, job_id: str) -> Optional[ExtractionJob]:
		"""Re-read a job from the database, overwriting any identity-mapped copy."""
		return self.db.query(self.model).populate_existing().filter(self.model.id == job_id).first()

	def get_status(self, job_id: str) -> Optional[str]:
		return self.db.query(self.model.status).filter(self.model.id == job_id).scalar()

	def transition(
		self,
		job_id: str,
		from_statuses: Iterable[JobStatus],
		values: Dict[str, Any],
		user_id: Optional[str] = None,
	) -> bool:
		"""Apply `values` only while the job is in one of `from_statuses`.

		Returns True when this call changed the row.
		"""
		allowed = _values(from_statuses)
		stmt = (
			update(self.model)
			.where(self.model.id == job_id, self.model.status.in_(allowed), self.model.is_deleted == False)
			.values(**values)
			.execution_options(synchronize_session=False)
		)
		if user_id is not None:
			stmt = stmt.where(self.model.user_id == user_id)
		changed = self.db.execute(stmt).rowcount == 1
		self._log_operation(
			"transition",
			job_id=job_id,
			from_statuses=allowed,
			to_status=values.get("status"),
			changed=changed
		)
		return changed

	def claim(self, job_id: str, now: Optional[datetime] = None) -> Optional[ClaimedJob]:
		"""Atomically move a queued job to processing.

		Returns None when the job is missing or no longer queued (another
		worker got it first, or it was cancelled).
		"""
		started_at = now or utcnow()
		if not self.transition(job_id, [JobStatus.QUEUED], {
			"status": JobStatus.PROCESSING.value,
			"processing_started_at": started_at,
			"finished_at": None,
		}):
			return None
		job = self.get_fresh(job_id)
		return ClaimedJob.model_validate(job) if job is not None else None

	def cancel(self, job_id: str, user_id: Optional[str] = None) -> bool:
		return self.transition(job_id, CANCELABLE_STATUSES, {
			"status": JobStatus.CANCELLED.value,
			"finished_at": utcnow(),
			"next_retry_at": None,
		}, user_id=user_id)

	def finish(self, job_id: str, status: JobStatus, **fields: Any) -> bool:
		"""Terminal transition for the current attempt; only from processing."""
		values = {"status": JobStatus(status).value, "finished_at": utcnow()}
		values.update(fields)
		return self.transition(job_id, [JobStatus.PROCESSING], values)

	def requeue(self, job_id: str, from_statuses: Iterable[JobStatus], user_id: Optional[str] = None) -> bool:
		"""Send a job back to the queue as a new attempt."""
		return self.transition(job_id, from_statuses, {
			"status": JobStatus.QUEUED.value,
			"retry_count": self.model.retry_count + 1,
			"last_error": None,
			"needs_review_reason": None,
			"next_retry_at": None,
			"processing_started_at": None,
			"finished_at": None,
		}, user_id=user_id)

	def set_storage_path(self, job_id: str, user_id: str, storage_path: str) -> bool:
		return self.transition(job_id, [JobStatus.CREATED], {"storage_path": storage_path}, user_id=user_id)

	def fetch_queued(
		self,
		limit: int,
		kind: Optional[JobKind] = None,
		job_id: Optional[str] = None,
		user_id: Optional[str] = None,
	) -> List[ExtractionJob]:
		"""Queued jobs, oldest first."""
		query = self.db.query(self.model).filter(
			self.model.status == JobStatus.QUEUED.value,
			self.model.is_deleted == False,
			self.model.storage_path != PENDING_STORAGE_PATH
		)
		if kind is not None:
			query = query.filter(self.model.kind == JobKind(kind).value)
		if job_id is not None:
			query = query.filter(self.model.id == job_id)
		if user_id is not None:
			query = query.filter(self.model.user_id == user_id)
		results = query.order_by(self.model.created_at.asc(), self.model.id.asc()).limit(limit).all()
		self._log_operation("fetch_queued", count=len(results), limit=limit, kind=kind, job_id=job_id)
		return results

	def find_processing_started_before(self, cutoff: datetime, limit: int = 100) -> List[ExtractionJob]:
		"""Processing jobs whose attempt began before `cutoff` (stuck candidates)."""
		results = self.db.query(self.model).filter(
			self.model.status == JobStatus.PROCESSING.value,
			self.model.is_deleted == False,
			self.model.processing_started_at.isnot(None),
			self.model.processing_started_at < cutoff
		).order_by(self.model.processing_started_at.asc()).limit(limit).all()
		self._log_operation("find_processing_started_before", count=len(results))
		return results

	def find_failed_due_for_retry(self, now: datetime, limit: int = 100) -> List[ExtractionJob]:
		"""Failed jobs with a scheduled retry that is due. Terminal failures have no schedule."""
		results = self.db.query(self.model).filter(
			self.model.status == JobStatus.FAILED.value,
			self.model.is_deleted == False,
			self.model.retry_count < self.model.max_retries,
			self.model.next_retry_at.isnot(None),
			self.model.next_retry_at <= now
		).order_by(self.model.next_retry_at.asc()).limit(limit).all()
		self._log_operation("find_failed_due_for_retry", count=len(results))
		return results

	def count_processing_since(self, user_id: str, since: datetime) -> int:
		return self.db.query(func.count(self.model.id)).filter(
			self.model.user_id == user_id,
			self.model.status == JobStatus.PROCESSING.value,
			self.model.processing_started_at >= since
		).scalar() or 0

	def count_done_started_since(self, user_id: str, since: datetime) -> int:
		return self.db.query(func.count(self.model.id)).filter(
			self.model.user_id == user_id,
			self.model.status == JobStatus.DONE.value,
			self.model.processing_started_at >= since
		).scalar() or 0
