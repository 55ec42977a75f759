from fastapi import Depends
from app.api.router import create_router
from sqlalchemy.orm import Session
from app.api.dependencies.auth import CurrentUser, get_current_user
from app.api.dependencies.database import get_db
from app.api.dependencies.services import get_correlation_id, get_document_store, get_job_service
from app.core.rate_limit import queue_rate_limiter
from app.services.job_services import JobService
from app.services.storage_services import DocumentStore
from app.schemas.job import (
	CancelJobResult,
	CreateJobInput,
	CreateJobResult,
	JobRead,
	JobStatusRead,
	SetStoragePathInput,
)


router = create_router(name="jobs")


@router.post("", status_code=201, response_model=CreateJobResult)
def create_job(
	input_data: CreateJobInput,
	db: Session = Depends(get_db),
	current_user: CurrentUser = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
	store: DocumentStore = Depends(get_document_store),
):
	"""
	Create an extraction job and return a signed URL to upload its document.
	"""
	return job_service.create_job(current_user.id, input_data, db, store)


@router.get("/{job_id}", response_model=JobStatusRead)
def get_job_status(
	job_id: str,
	current_user: CurrentUser = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
):
	return job_service.get_job_status(job_id, current_user.id)


@router.post("/{job_id}/storage-path", response_model=JobRead)
def set_storage_path(
	job_id: str,
	input_data: SetStoragePathInput,
	db: Session = Depends(get_db),
	current_user: CurrentUser = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
):
	return job_service.set_storage_path(job_id, current_user.id, input_data.storage_path, db)


@router.post("/{job_id}/queue", response_model=JobRead)
def queue_job(
	job_id: str,
	db: Session = Depends(get_db),
	current_user: CurrentUser = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
	correlation_id: str = Depends(get_correlation_id),
):
	"""
	Queue a created job, or retry a failed / needs_review / out_of_quota one.
	"""
	# Each queue call can turn into a paid model call
	queue_rate_limiter.enforce(current_user.id, correlation_id=correlation_id)
	return job_service.queue_job(job_id, current_user.id, db)


@router.post("/{job_id}/cancel", response_model=CancelJobResult)
def cancel_job(
	job_id: str,
	db: Session = Depends(get_db),
	current_user: CurrentUser = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
):
	return job_service.cancel_job(job_id, current_user.id, db)
