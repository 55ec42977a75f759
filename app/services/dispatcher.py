"""Batch dispatcher: one invocation claims and runs a bounded batch of queued jobs.

Each job runs in its own worker thread with its own database session; the
conditional claim is the only coordination between concurrent dispatchers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from app.core.cache import Cache
from app.core.config import settings
from app.gemini.services import ExtractionModel
from app.services.extraction_services import ExtractionPipeline
from app.services.geocoding_services import Geocoder
from app.services.job_services import JobService
from app.services.quota_services import QuotaService
from app.services.storage_services import DocumentStore
from app.repositories.job import JobRepository
from app.repositories.profile import ProfileRepository
from app.repositories.result import ResultRepository
from app.repositories.usage import UsageEventRepository
from app.schemas.job import BatchSummary, JobKind, JobOutcome

logger = logging.getLogger("app.dispatcher")


def build_job_service(db: Session, correlation_id: Optional[str] = None) -> JobService:
	job_repo = JobRepository(db, correlation_id)
	quota_service = QuotaService(
		job_repo=job_repo,
		usage_repo=UsageEventRepository(db, correlation_id),
		profile_repo=ProfileRepository(db, correlation_id),
		correlation_id=correlation_id,
	)
	return JobService(
		job_repo=job_repo,
		result_repo=ResultRepository(db, correlation_id),
		quota_service=quota_service,
		correlation_id=correlation_id,
	)


class BatchDispatcher:
	def __init__(
		self,
		session_factory: Callable[[], Session],
		store: DocumentStore,
		model: ExtractionModel,
		geocoder: Optional[Geocoder] = None,
		cache: Optional[Cache] = None,
		correlation_id: Optional[str] = None,
	):
		self.session_factory = session_factory
		self.store = store
		self.model = model
		self.geocoder = geocoder
		self.cache = cache
		self.correlation_id = correlation_id

	def _prepare(
		self,
		max_jobs: int,
		kind: Optional[JobKind],
		job_id: Optional[str],
		user_id: Optional[str],
	) -> List[str]:
		"""Recovery sweep, due retries, then the FIFO fetch. Returns job ids."""
		db = self.session_factory()
		try:
			jobs = build_job_service(db, self.correlation_id)
			jobs.recover_stuck_jobs(db)
			jobs.requeue_due_retries(db, user_id=user_id)
			queued = jobs.job_repo.fetch_queued(max_jobs, kind=kind, job_id=job_id, user_id=user_id)
			return [job.id for job in queued]
		finally:
			db.close()

	def _process_one(self, job_id: str, skip_geocode: bool) -> Optional[JobOutcome]:
		db = self.session_factory()
		try:
			claimed = build_job_service(db, self.correlation_id).claim(job_id, db)
			if claimed is None:
				return None
			pipeline = ExtractionPipeline(
				db,
				store=self.store,
				model=self.model,
				geocoder=self.geocoder,
				cache=self.cache,
				skip_geocode=skip_geocode,
				correlation_id=self.correlation_id,
			)
			return pipeline.run(claimed)
		except Exception as e:
			# Claim or session failures; the pipeline handles its own errors
			logger.exception(
				"Job processing aborted",
				extra={"correlation_id": self.correlation_id, "job_id": job_id}
			)
			return JobOutcome(id=job_id, status="failed", error=str(e) or type(e).__name__)
		finally:
			db.close()

	async def run_batch(
		self,
		max_jobs: Optional[int] = None,
		kind: Optional[JobKind] = None,
		job_id: Optional[str] = None,
		user_id: Optional[str] = None,
		skip_geocode: bool = False,
	) -> BatchSummary:
		limit = max(1, max_jobs or settings.WORKER_MAX_JOBS)
		job_ids = await asyncio.to_thread(self._prepare, limit, kind, job_id, user_id)

		if not job_ids:
			logger.info("No jobs queued", extra={"correlation_id": self.correlation_id})
			return BatchSummary(processed=0, details=[], message="No jobs queued or ready for retry")

		logger.info(
			"Dispatching batch",
			extra={"correlation_id": self.correlation_id, "count": len(job_ids), "kind": kind}
		)
		outcomes = await asyncio.gather(*[
			asyncio.to_thread(self._process_one, jid, skip_geocode) for jid in job_ids
		])
		details = [o for o in outcomes if o is not None]

		logger.info(
			"Batch finished",
			extra={
				"correlation_id": self.correlation_id,
				"processed": len(details),
				"skipped": len(job_ids) - len(details)
			}
		)
		return BatchSummary(processed=len(details), details=details)
