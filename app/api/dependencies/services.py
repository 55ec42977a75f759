"""Service dependency providers for FastAPI dependency injection."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session, sessionmaker
from typing import Optional

from app.api.dependencies.database import get_db
from app.core.cache import Cache, get_cache
from app.db.session import SessionLocal
from app.gemini.services import ExtractionModel, GeminiExtractionModel
from app.services.dispatcher import BatchDispatcher
from app.services.geocoding_services import Geocoder, GoogleGeocoder
from app.services.job_services import JobService
from app.services.quota_services import QuotaService
from app.services.storage_services import DocumentStore, MinioDocumentStore
from app.repositories.job import JobRepository
from app.repositories.profile import ProfileRepository
from app.repositories.result import ResultRepository
from app.repositories.usage import UsageEventRepository


def get_correlation_id(request: Request) -> Optional[str]:
	"""Extract or generate correlation ID for logging and tracing."""
	from app.core.observability import generate_correlation_id
	cid = getattr(request.state, "correlation_id", None)
	if not cid:
		cid = generate_correlation_id(request.headers.get("X-Correlation-ID"))
		setattr(request.state, "correlation_id", cid)
	return cid


# Repository Dependencies
def get_job_repository(
	db: Session = Depends(get_db),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> JobRepository:
	"""Provide JobRepository instance."""
	return JobRepository(db=db, correlation_id=correlation_id)


def get_result_repository(
	db: Session = Depends(get_db),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> ResultRepository:
	return ResultRepository(db=db, correlation_id=correlation_id)


def get_usage_repository(
	db: Session = Depends(get_db),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> UsageEventRepository:
	return UsageEventRepository(db=db, correlation_id=correlation_id)


def get_profile_repository(
	db: Session = Depends(get_db),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> ProfileRepository:
	return ProfileRepository(db=db, correlation_id=correlation_id)


# Collaborators
def get_session_factory() -> sessionmaker:
	"""Session factory for work that runs outside the request session (worker threads)."""
	return SessionLocal


def get_document_store(
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> DocumentStore:
	return MinioDocumentStore(correlation_id=correlation_id)


def get_extraction_model(
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> ExtractionModel:
	return GeminiExtractionModel(correlation_id=correlation_id)


def get_geocoder(
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> Geocoder:
	return GoogleGeocoder(correlation_id=correlation_id)


def get_app_cache() -> Cache:
	return get_cache()


# Service Dependencies
def get_quota_service(
	job_repo: JobRepository = Depends(get_job_repository),
	usage_repo: UsageEventRepository = Depends(get_usage_repository),
	profile_repo: ProfileRepository = Depends(get_profile_repository),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> QuotaService:
	"""Provide QuotaService instance with the ledger, job and profile repositories."""
	return QuotaService(
		job_repo=job_repo,
		usage_repo=usage_repo,
		profile_repo=profile_repo,
		correlation_id=correlation_id
	)


def get_job_service(
	job_repo: JobRepository = Depends(get_job_repository),
	result_repo: ResultRepository = Depends(get_result_repository),
	quota_service: QuotaService = Depends(get_quota_service),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> JobService:
	"""Provide JobService instance.

	Args:
		job_repo: Job repository from dependency injection
		result_repo: Result repository from dependency injection
		quota_service: Quota service used for queue admission
		correlation_id: Optional correlation ID from request headers

	Returns:
		Configured JobService instance
	"""
	return JobService(
		job_repo=job_repo,
		result_repo=result_repo,
		quota_service=quota_service,
		correlation_id=correlation_id
	)


def get_dispatcher(
	session_factory: sessionmaker = Depends(get_session_factory),
	store: DocumentStore = Depends(get_document_store),
	model: ExtractionModel = Depends(get_extraction_model),
	geocoder: Geocoder = Depends(get_geocoder),
	cache: Cache = Depends(get_app_cache),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> BatchDispatcher:
	"""Provide a BatchDispatcher; each job it runs gets a fresh session from the factory."""
	return BatchDispatcher(
		session_factory=session_factory,
		store=store,
		model=model,
		geocoder=geocoder,
		cache=cache,
		correlation_id=correlation_id
	)
