from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, List

from sqlalchemy.orm import Session

from app.core.config import settings
from app.services.base import BaseService
from app.services.exceptions import (
	InfrastructureError,
	InvalidJobStateError,
	JobNotFoundError,
	QuotaExceededError,
)
from app.services.quota_services import QuotaService
from app.services.retry_policy import (
	DEFAULT_RETRY_STRATEGY,
	RetryStrategy,
	ensure_utc,
	is_stuck,
	next_retry_at,
	should_retry,
)
from app.services.storage_services import DocumentStore, bucket_for
from app.repositories.job import JobRepository
from app.repositories.result import ResultRepository
from app.db.models.job import ExtractionJob
from app.schemas.job import (
	CancelJobResult,
	CallsheetResultRead,
	ClaimedJob,
	CreateJobInput,
	CreateJobResult,
	InvoiceResultRead,
	JobKind,
	JobRead,
	JobStatus,
	JobStatusRead,
	LocationRead,
	PENDING_STORAGE_PATH,
	RETRYABLE_STATUSES,
)

DEFAULT_FILENAMES = {
	JobKind.CALLSHEET: "document.pdf",
	JobKind.INVOICE: "invoice.pdf",
}


class JobService(BaseService):
	"""Job lifecycle: creation, user transitions and queue maintenance."""

	def __init__(
		self,
		job_repo: JobRepository,
		result_repo: ResultRepository,
		quota_service: QuotaService,
		correlation_id: Optional[str] = None,
	):
		super().__init__(correlation_id)
		self._set_repositories(job_repo=job_repo, result_repo=result_repo)
		self.quota_service = quota_service

	def _get_owned(self, job_id: str, user_id: str) -> ExtractionJob:
		job = self.job_repo.get_by_id_and_user(job_id, user_id)
		if job is None:
			raise JobNotFoundError(job_id, user_id=user_id, correlation_id=self.correlation_id)
		return job

	def _ensure_quota(self, user_id: str) -> None:
		decision = self.quota_service.check_monthly_quota(user_id)
		if not decision.allowed:
			raise QuotaExceededError(decision.limit, decision.used, reason=decision.reason, correlation_id=self.correlation_id)

	# ------------------------------------------------------------------
	# User-facing operations
	# ------------------------------------------------------------------

	def create_job(self, user_id: str, input_data: CreateJobInput, db: Session, store: DocumentStore) -> CreateJobResult:
		"""Insert a `created` job and return a signed URL to upload its document."""
		job = self.run_in_transaction(db, lambda: self.job_repo.create({
			"user_id": user_id,
			"kind": input_data.kind.value,
			"storage_path": PENDING_STORAGE_PATH,
			"status": JobStatus.CREATED.value,
			"max_retries": DEFAULT_RETRY_STRATEGY.max_retries,
		}), name="create_job")
		job_id = job.id

		filename = input_data.filename or DEFAULT_FILENAMES[input_data.kind]
		path = f"{user_id}/{job_id}/{filename}"
		try:
			upload_url = store.create_upload_url(
				bucket_for(input_data.kind),
				path,
				timedelta(minutes=settings.UPLOAD_URL_EXPIRE_MINUTES),
			)
		except Exception as e:
			raise InfrastructureError(
				message=f"Failed to create upload URL for job {job_id}: {e}",
				error_code="UPLOAD_URL_FAILED",
				correlation_id=self.correlation_id,
				details={"job_id": job_id},
			) from e

		# Backfill is best-effort; the client can still set the path explicitly
		try:
			self.run_in_transaction(db, lambda: self.job_repo.set_storage_path(job_id, user_id, path), name="backfill_storage_path")
		except Exception as e:
			self.logger.warning(
				"Storage path backfill failed",
				extra={"correlation_id": self.correlation_id, "job_id": job_id, "error": str(e)}
			)

		self.log_operation("create_job", job_id=job_id, user_id=user_id, kind=input_data.kind.value)
		return CreateJobResult(job_id=job_id, storage_path=path, upload_url=upload_url)

	def set_storage_path(self, job_id: str, user_id: str, storage_path: str, db: Session) -> JobRead:
		job = self._get_owned(job_id, user_id)
		if not self.run_in_transaction(db, lambda: self.job_repo.set_storage_path(job_id, user_id, storage_path)):
			raise InvalidJobStateError(job_id, job.status, "given a new storage path", correlation_id=self.correlation_id)
		return JobRead.model_validate(self.job_repo.get_fresh(job_id))

	def queue_job(self, job_id: str, user_id: str, db: Session) -> JobRead:
		"""Queue a new job, or re-queue a failed / needs_review / out_of_quota one.

		Re-queueing counts as a retry. Both paths are admitted against the
		monthly quota first.
		"""
		job = self._get_owned(job_id, user_id)
		status = JobStatus(job.status)

		if status == JobStatus.CREATED:
			if job.storage_path == PENDING_STORAGE_PATH:
				raise InvalidJobStateError(job_id, status.value, "queued before its upload path is set", correlation_id=self.correlation_id)
			self._ensure_quota(user_id)
			changed = self.run_in_transaction(db, lambda: self.job_repo.transition(
				job_id, [JobStatus.CREATED], {"status": JobStatus.QUEUED.value}, user_id=user_id
			), name="queue_job")
		elif status in RETRYABLE_STATUSES:
			self._ensure_quota(user_id)
			changed = self.run_in_transaction(db, lambda: self.job_repo.requeue(
				job_id, RETRYABLE_STATUSES, user_id=user_id
			), name="retry_job")
		else:
			changed = False

		if not changed:
			current = self.job_repo.get_status(job_id)
			raise InvalidJobStateError(job_id, current, "queued", correlation_id=self.correlation_id)

		self.log_operation("queue_job", job_id=job_id, user_id=user_id, from_status=status.value)
		return JobRead.model_validate(self.job_repo.get_fresh(job_id))

	def cancel_job(self, job_id: str, user_id: str, db: Session) -> CancelJobResult:
		"""Cancel a job that has not finished. Cancelling a finished job changes nothing."""
		self._get_owned(job_id, user_id)
		cancelled = self.run_in_transaction(db, lambda: self.job_repo.cancel(job_id, user_id=user_id), name="cancel_job")
		job = self.job_repo.get_fresh(job_id)
		self.log_operation("cancel_job", job_id=job_id, user_id=user_id, cancelled=cancelled, status=job.status)
		return CancelJobResult(cancelled=cancelled, job=JobRead.model_validate(job))

	def get_job_status(self, job_id: str, user_id: str) -> JobStatusRead:
		job = self._get_owned(job_id, user_id)
		kind = JobKind(job.kind)
		results = None
		locations: List[LocationRead] = []

		row = self.result_repo.get_by_job(kind, job_id)
		if row is not None:
			schema = CallsheetResultRead if kind == JobKind.CALLSHEET else InvoiceResultRead
			results = schema.model_validate(row).model_dump()
		if kind == JobKind.CALLSHEET:
			locations = [LocationRead.model_validate(loc) for loc in self.result_repo.locations.list_by_job(job_id)]

		return JobStatusRead(job=JobRead.model_validate(job), results=results, locations=locations)

	# ------------------------------------------------------------------
	# Worker-facing operations
	# ------------------------------------------------------------------

	def claim(self, job_id: str, db: Session) -> Optional[ClaimedJob]:
		"""Atomically take a queued job. None means someone else has it (or it is gone)."""
		claimed = self.run_in_transaction(db, lambda: self.job_repo.claim(job_id), name="claim")
		self.log_operation("claim", job_id=job_id, claimed=claimed is not None)
		return claimed

	def recover_stuck_jobs(
		self,
		db: Session,
		now: Optional[datetime] = None,
		strategy: RetryStrategy = DEFAULT_RETRY_STRATEGY,
	) -> List[str]:
		"""Fail jobs that have been processing past the stuck timeout.

		Jobs with retries left get a `next_retry_at`; the others fail for good.
		"""
		current = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
		cutoff = current - timedelta(minutes=strategy.stuck_timeout_minutes)
		recovered: List[str] = []

		for job in self.job_repo.find_processing_started_before(cutoff):
			if not is_stuck(job.processing_started_at, strategy.stuck_timeout_minutes, current):
				continue
			if job.retry_count < job.max_retries:
				fields = {
					"last_error": "Job stuck in processing, will retry",
					"next_retry_at": next_retry_at(job.retry_count, current, strategy),
				}
			else:
				fields = {
					"last_error": "Job stuck in processing, exceeded max retries",
					"next_retry_at": None,
				}
			job_id = job.id
			if self.run_in_transaction(db, lambda: self.job_repo.finish(job_id, JobStatus.FAILED, **fields), name="recover_stuck"):
				recovered.append(job_id)

		if recovered:
			self.logger.warning(
				"Recovered stuck jobs",
				extra={"correlation_id": self.correlation_id, "count": len(recovered), "job_ids": recovered}
			)
		return recovered

	def requeue_due_retries(
		self,
		db: Session,
		now: Optional[datetime] = None,
		limit: int = 100,
		user_id: Optional[str] = None,
	) -> List[str]:
		"""Move failed jobs whose retry time has come back to the queue."""
		current = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
		requeued: List[str] = []

		for job in self.job_repo.find_failed_due_for_retry(current, limit=limit):
			if user_id is not None and job.user_id != user_id:
				continue
			if not should_retry(job.retry_count, job.max_retries, job.next_retry_at, current):
				continue
			job_id = job.id
			if self.run_in_transaction(db, lambda: self.job_repo.requeue(job_id, [JobStatus.FAILED]), name="auto_retry"):
				requeued.append(job_id)

		if requeued:
			self.log_operation("requeue_due_retries", count=len(requeued), job_ids=requeued)
		return requeued
