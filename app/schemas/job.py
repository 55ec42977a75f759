from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, ConfigDict, Field, field_validator
from .mixin import TimestampModel


class JobKind(str, Enum):
	CALLSHEET = "callsheet"
	INVOICE = "invoice"


class JobStatus(str, Enum):
	CREATED = "created"
	QUEUED = "queued"
	PROCESSING = "processing"
	DONE = "done"
	NEEDS_REVIEW = "needs_review"
	FAILED = "failed"
	OUT_OF_QUOTA = "out_of_quota"
	CANCELLED = "cancelled"


PENDING_STORAGE_PATH = "pending"

# Statuses a user may cancel from
CANCELABLE_STATUSES = (
	JobStatus.CREATED,
	JobStatus.QUEUED,
	JobStatus.PROCESSING,
	JobStatus.FAILED,
)

# Terminal for the current attempt, re-enterable through an explicit retry
RETRYABLE_STATUSES = (
	JobStatus.FAILED,
	JobStatus.NEEDS_REVIEW,
	JobStatus.OUT_OF_QUOTA,
)


class ClaimedJob(BaseModel):
	"""Snapshot of a job taken at claim time; safe to pass across worker threads."""
	model_config = ConfigDict(from_attributes=True, frozen=True)

	id: str
	user_id: str
	kind: JobKind
	storage_path: str
	retry_count: int = 0
	max_retries: int = 3
	processing_started_at: Optional[datetime] = None


class JobRead(TimestampModel):
	model_config = ConfigDict(from_attributes=True)

	id: str
	kind: JobKind
	status: JobStatus
	storage_path: str
	retry_count: int
	max_retries: int
	next_retry_at: Optional[datetime] = None
	processing_started_at: Optional[datetime] = None
	finished_at: Optional[datetime] = None
	last_error: Optional[str] = None
	needs_review_reason: Optional[str] = None


class CallsheetResultRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	date_value: str
	project_value: str
	producer_value: Optional[str] = None
	production_companies: List[str] = []


class InvoiceResultRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	total_amount: float
	currency: str
	invoice_number: Optional[str] = None
	invoice_date: Optional[str] = None
	vendor_name: Optional[str] = None
	purpose: Optional[str] = None


class LocationRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	address_raw: str
	label_source: str
	formatted_address: Optional[str] = None
	lat: Optional[float] = None
	lng: Optional[float] = None
	place_id: Optional[str] = None
	geocode_quality: Optional[str] = None


class JobStatusRead(BaseModel):
	job: JobRead
	results: Optional[Dict[str, Any]] = None
	locations: List[LocationRead] = []


class CreateJobInput(BaseModel):
	"""Input for creating a job together with its signed upload URL."""
	kind: JobKind
	filename: Optional[str] = Field(default=None, max_length=200)

	@field_validator("filename")
	@classmethod
	def sanitize_filename(cls, v: Optional[str]) -> Optional[str]:
		if v is None:
			return v
		# Keep only the basename; the object key is built server-side
		name = v.replace("\\", "/").rsplit("/", 1)[-1].strip()
		return name or None


class CreateJobResult(BaseModel):
	job_id: str
	storage_path: str
	upload_url: Optional[str] = None


class SetStoragePathInput(BaseModel):
	storage_path: str = Field(..., min_length=1, max_length=512)

	@field_validator("storage_path")
	@classmethod
	def validate_storage_path(cls, v: str) -> str:
		v = v.strip()
		if v == PENDING_STORAGE_PATH or ".." in v.split("/"):
			raise ValueError("Invalid storage path")
		return v


class JobOutcome(BaseModel):
	"""Per-job entry of a batch summary."""
	id: str
	status: str  # success | failed | needs_review | out_of_quota | cancelled
	error: Optional[str] = None
	retries: int = 0
	next_retry_at: Optional[datetime] = None
	cached: bool = False


class BatchSummary(BaseModel):
	processed: int = 0
	details: List[JobOutcome] = []
	message: Optional[str] = None


class CancelJobResult(BaseModel):
	cancelled: bool
	job: JobRead
