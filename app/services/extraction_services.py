"""Per-job extraction pipeline.

Runs one claimed job to a terminal status for the current attempt:
quota re-check, result cache, download, model call, parse, validate,
geocode, persist. Every terminal write is conditional on the job still being
`processing`, so a cancellation that lands mid-flight is never overwritten.

Nothing raised inside `run` escapes it: failures become the job's status.
"""

from __future__ import annotations

import mimetypes
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.cache import Cache, get_cache
from app.core.config import settings
from app.gemini.parsing import parse_model_output
from app.gemini.prompts import build_instruction
from app.gemini.services import ExtractionModel
from app.services.base import BaseService
from app.services.exceptions import DocumentTooLargeError
from app.services.geocoding_services import Geocoder
from app.services.quota_services import QuotaService
from app.services.retry_policy import cache_key, next_retry_at
from app.services.storage_services import DocumentStore, bucket_for
from app.repositories.job import JobRepository
from app.repositories.profile import ProfileRepository
from app.repositories.result import ResultRepository
from app.repositories.usage import UsageEventRepository
from app.schemas.extraction import (
	CallsheetExtraction,
	Extraction,
	ExtractionRejected,
	InvoiceExtraction,
	validate_extraction,
)
from app.schemas.job import ClaimedJob, JobKind, JobOutcome, JobStatus

INVALID_RESULT_ERROR = "empty/invalid extraction result"


def guess_mime_type(path: str) -> str:
	"""PDF by extension, known image types by extension, JPEG otherwise."""
	lowered = path.lower()
	if lowered.endswith(".pdf"):
		return "application/pdf"
	guessed, _ = mimetypes.guess_type(lowered)
	if guessed and guessed.startswith("image/"):
		return guessed
	return "image/jpeg"


def extraction_cache_key(claimed: ClaimedJob) -> str:
	return f"extraction:{claimed.kind.value}:{cache_key(claimed.user_id, claimed.storage_path)}"


def callsheet_fields(extraction: CallsheetExtraction) -> Dict[str, Any]:
	companies = list(extraction.production_companies)
	return {
		"date_value": extraction.date,
		"project_value": extraction.project_name,
		"producer_value": companies[0] if companies else None,
		"production_companies": companies,
	}


def invoice_fields(extraction: InvoiceExtraction) -> Dict[str, Any]:
	return {
		"total_amount": extraction.total_amount,
		"currency": extraction.currency,
		"invoice_number": extraction.invoice_number,
		"invoice_date": extraction.invoice_date,
		"vendor_name": extraction.vendor_name,
		"purpose": extraction.purpose,
	}


class ExtractionPipeline(BaseService):
	"""Processes claimed jobs on one database session (one worker thread)."""

	def __init__(
		self,
		db: Session,
		store: DocumentStore,
		model: ExtractionModel,
		geocoder: Optional[Geocoder] = None,
		cache: Optional[Cache] = None,
		skip_geocode: bool = False,
		correlation_id: Optional[str] = None,
	):
		super().__init__(correlation_id)
		self.db = db
		self.store = store
		self.model = model
		self.geocoder = geocoder
		self.cache = cache if cache is not None else get_cache()
		self.skip_geocode = skip_geocode
		self._set_repositories(
			job_repo=JobRepository(db, correlation_id),
			result_repo=ResultRepository(db, correlation_id),
		)
		self.quota_service = QuotaService(
			job_repo=self.job_repo,
			usage_repo=UsageEventRepository(db, correlation_id),
			profile_repo=ProfileRepository(db, correlation_id),
			correlation_id=correlation_id,
		)

	# ------------------------------------------------------------------
	# Status writes
	# ------------------------------------------------------------------

	def _finish(self, claimed: ClaimedJob, status: JobStatus, **fields: Any) -> bool:
		return self.run_in_transaction(
			self.db,
			lambda: self.job_repo.finish(claimed.id, status, **fields),
			name=f"finish_{status.value}",
		)

	def _outcome(self, claimed: ClaimedJob, status: str, error: Optional[str] = None, **extra: Any) -> JobOutcome:
		return JobOutcome(id=claimed.id, status=status, error=error, retries=claimed.retry_count, **extra)

	def _cancelled(self, claimed: ClaimedJob, stage: str) -> JobOutcome:
		self.log_operation("job_cancelled", job_id=claimed.id, stage=stage)
		return self._outcome(claimed, "cancelled")

	def _superseded(self, claimed: ClaimedJob, stage: str) -> JobOutcome:
		"""Report the status that took the job out of `processing` under this worker.

		A user cancel and the stuck-job sweep both do this; the outcome names
		whichever actually happened.
		"""
		job = self.job_repo.get_fresh(claimed.id)
		if job is None:
			return self._outcome(claimed, "failed", error="job no longer exists")
		if job.status == JobStatus.CANCELLED.value:
			return self._cancelled(claimed, stage)
		self.logger.warning(
			"Job left processing before this worker finished",
			extra={"correlation_id": self.correlation_id, "job_id": claimed.id, "stage": stage, "status": job.status}
		)
		status = "success" if job.status == JobStatus.DONE.value else job.status
		return self._outcome(
			claimed,
			status,
			error=job.last_error or job.needs_review_reason,
			next_retry_at=job.next_retry_at,
		)

	def _is_cancelled(self, claimed: ClaimedJob) -> bool:
		return self.job_repo.get_status(claimed.id) == JobStatus.CANCELLED.value

	def _fail_terminal(self, claimed: ClaimedJob, message: str) -> JobOutcome:
		"""Fail without scheduling a retry; the same input would fail the same way."""
		if not self._finish(claimed, JobStatus.FAILED, last_error=message, next_retry_at=None):
			return self._superseded(claimed, "fail_terminal")
		self.logger.warning(
			"Job failed permanently",
			extra={"correlation_id": self.correlation_id, "job_id": claimed.id, "error": message}
		)
		return self._outcome(claimed, "failed", error=message)

	def _fail_with_retry(self, claimed: ClaimedJob, message: str) -> JobOutcome:
		self.db.rollback()
		retry_at = next_retry_at(claimed.retry_count) if claimed.retry_count < claimed.max_retries else None
		try:
			changed = self._finish(claimed, JobStatus.FAILED, last_error=message[:2000], next_retry_at=retry_at)
		except Exception as e:
			self.logger.error(
				"Could not record job failure",
				extra={"correlation_id": self.correlation_id, "job_id": claimed.id, "error": str(e)}
			)
			return self._outcome(claimed, "failed", error=message, next_retry_at=retry_at)
		if not changed:
			return self._superseded(claimed, "fail")
		self.logger.error(
			"Job failed",
			extra={
				"correlation_id": self.correlation_id,
				"job_id": claimed.id,
				"error": message,
				"retry_count": claimed.retry_count,
				"next_retry_at": retry_at.isoformat() if retry_at else None
			}
		)
		return self._outcome(claimed, "failed", error=message, next_retry_at=retry_at)

	# ------------------------------------------------------------------
	# Steps
	# ------------------------------------------------------------------

	def _download(self, claimed: ClaimedJob) -> bytes:
		max_bytes = settings.MAX_DOCUMENT_BYTES
		data = self.store.download(bucket_for(claimed.kind), claimed.storage_path, max_bytes=max_bytes)
		if len(data) > max_bytes:
			raise DocumentTooLargeError(claimed.storage_path, len(data), max_bytes, correlation_id=self.correlation_id)
		return data

	def _cached_payload(self, key: str) -> Optional[Dict[str, Any]]:
		try:
			value = self.cache.get(key)
		except Exception as e:
			self.logger.warning("Extraction cache read failed", extra={"correlation_id": self.correlation_id, "error": str(e)})
			return None
		return value if isinstance(value, dict) else None

	def _store_payload(self, key: str, payload: Dict[str, Any]) -> None:
		try:
			self.cache.set(key, payload, ttl=settings.EXTRACTION_CACHE_TTL_SECONDS)
		except Exception as e:
			self.logger.warning("Extraction cache write failed", extra={"correlation_id": self.correlation_id, "error": str(e)})

	def _geocode_one(self, claimed: ClaimedJob, address: str) -> Dict[str, Any]:
		try:
			return self.geocoder.geocode(address) or {}
		except Exception as e:
			self.logger.warning(
				"Geocoding failed, keeping raw address",
				extra={"correlation_id": self.correlation_id, "job_id": claimed.id, "error": str(e)}
			)
			return {}

	def _geocode_locations(self, claimed: ClaimedJob, addresses: List[str]) -> List[Dict[str, Any]]:
		"""Geocode all addresses concurrently; order follows `addresses`."""
		if self.geocoder is None or self.skip_geocode or not addresses:
			results: List[Dict[str, Any]] = [{} for _ in addresses]
		else:
			workers = max(1, min(settings.GEOCODE_CONCURRENCY, len(addresses)))
			with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="geocode") as executor:
				results = list(executor.map(lambda address: self._geocode_one(claimed, address), addresses))

		rows = []
		for address, geo in zip(addresses, results):
			rows.append({
				"address_raw": address,
				"label_source": "EXTRACTED",
				"evidence_text": address,
				"formatted_address": geo.get("formatted_address"),
				"lat": geo.get("lat"),
				"lng": geo.get("lng"),
				"place_id": geo.get("place_id"),
				"geocode_quality": geo.get("quality"),
			})
		return rows

	def _persist(self, claimed: ClaimedJob, extraction: Extraction, locations: List[Dict[str, Any]]) -> bool:
		"""Write results and move the job to done in one transaction.

		Returns False (and writes nothing) when the job left `processing`.
		"""
		def op() -> bool:
			if not self.job_repo.finish(claimed.id, JobStatus.DONE, last_error=None, next_retry_at=None, needs_review_reason=None):
				return False
			if claimed.kind == JobKind.CALLSHEET:
				self.result_repo.upsert(claimed.kind, claimed.id, callsheet_fields(extraction))
				self.result_repo.locations.replace_for_job(claimed.id, locations)
			else:
				self.result_repo.upsert(claimed.kind, claimed.id, invoice_fields(extraction))
			return True

		return self.run_in_transaction(self.db, op, name="persist_results")

	# ------------------------------------------------------------------
	# Entry point
	# ------------------------------------------------------------------

	def run(self, claimed: ClaimedJob) -> JobOutcome:
		self.log_operation("job_start", job_id=claimed.id, kind=claimed.kind.value, retry_count=claimed.retry_count)
		try:
			return self._run(claimed)
		except Exception as e:
			self.logger.exception(
				"Unexpected pipeline error",
				extra={"correlation_id": self.correlation_id, "job_id": claimed.id}
			)
			return self._fail_with_retry(claimed, str(e) or type(e).__name__)

	def _run(self, claimed: ClaimedJob) -> JobOutcome:
		# Quota: this job already holds one reserved slot
		decision = self.quota_service.check_monthly_quota(claimed.user_id)
		if not decision.allowed:
			reason = decision.reason or "monthly_quota_exceeded"
			if not self._finish(claimed, JobStatus.OUT_OF_QUOTA, needs_review_reason=reason):
				return self._superseded(claimed, "quota")
			self.log_operation("job_out_of_quota", job_id=claimed.id, reason=reason)
			return self._outcome(claimed, "out_of_quota", error=reason)

		# A previous attempt already stored results
		if self.result_repo.exists(claimed.kind, claimed.id):
			if not self._finish(claimed, JobStatus.DONE, last_error=None, next_retry_at=None):
				return self._superseded(claimed, "cached_result")
			self.log_operation("job_cached_done", job_id=claimed.id)
			return self._outcome(claimed, "success", cached=True)

		try:
			data = self._download(claimed)
		except DocumentTooLargeError as e:
			return self._fail_terminal(claimed, e.message)
		except Exception as e:
			return self._fail_with_retry(claimed, f"Failed to download document: {e}")

		mime_type = guess_mime_type(claimed.storage_path)
		instruction, schema = build_instruction(claimed.kind)

		if self._is_cancelled(claimed):
			return self._cancelled(claimed, "pre_model")

		key = extraction_cache_key(claimed)
		payload = self._cached_payload(key)
		from_cache = payload is not None
		if payload is None:
			text = self.model.generate(instruction, data, mime_type, schema, job_id=claimed.id)
			payload = parse_model_output(text)
			if payload is None:
				return self._fail_terminal(claimed, INVALID_RESULT_ERROR)

		validated = validate_extraction(claimed.kind, payload)
		if isinstance(validated, ExtractionRejected):
			reason = validated.reason
			if not self._finish(claimed, JobStatus.NEEDS_REVIEW, needs_review_reason=reason):
				return self._superseded(claimed, "validation")
			self.log_operation("job_needs_review", job_id=claimed.id, reason=reason)
			return self._outcome(claimed, "needs_review", error=reason)

		if self._is_cancelled(claimed):
			return self._cancelled(claimed, "pre_save")

		locations: List[Dict[str, Any]] = []
		if claimed.kind == JobKind.CALLSHEET:
			locations = self._geocode_locations(claimed, list(validated.locations))

		if not self._persist(claimed, validated, locations):
			return self._superseded(claimed, "persist")

		if not from_cache:
			self.quota_service.record_usage(
				self.db, claimed.user_id, claimed.kind.value, claimed.id,
				run_at=claimed.processing_started_at or datetime.now(timezone.utc),
			)
			self._store_payload(key, payload)

		self.log_operation("job_done", job_id=claimed.id, locations=len(locations), cached=from_cache)
		return self._outcome(claimed, "success", cached=from_cache)
