from typing import Optional

from fastapi import Depends, Query, Request
from app.api.router import create_router
from app.api.dependencies.services import get_correlation_id, get_dispatcher
from app.core.config import settings
from app.core.rate_limit import worker_rate_limiter
from app.core.security import verify_worker_secret
from app.services.dispatcher import BatchDispatcher
from app.services.exceptions import InfrastructureError, WorkerAuthError
from app.schemas.job import BatchSummary, JobKind

router = create_router(name="worker")


def require_worker_secret(request: Request, correlation_id: str = Depends(get_correlation_id)) -> None:
	if settings.requires_worker_secret and not settings.WORKER_SECRET:
		raise InfrastructureError(
			message="WORKER_SECRET is not configured",
			error_code="WORKER_SECRET_MISSING",
			correlation_id=correlation_id,
		)
	if not verify_worker_secret(request.headers.get("authorization")):
		raise WorkerAuthError(correlation_id=correlation_id)


@router.api_route("", methods=["GET", "POST"], response_model=BatchSummary, dependencies=[Depends(require_worker_secret)])
async def run_extraction_worker(
	request: Request,
	max_jobs: Optional[int] = Query(None, ge=1, le=50),
	kind: Optional[JobKind] = Query(None),
	job_id: Optional[str] = Query(None),
	user_id: Optional[str] = Query(None),
	skip_geocode: bool = Query(False),
	dispatcher: BatchDispatcher = Depends(get_dispatcher),
	correlation_id: str = Depends(get_correlation_id),
):
	"""
	Run one batch: recover stuck jobs, re-queue due retries, then claim and
	process up to `max_jobs` queued jobs.
	"""
	client = request.client.host if request.client else "unknown"
	worker_rate_limiter.enforce(client, correlation_id=correlation_id)
	return await dispatcher.run_batch(
		max_jobs=max_jobs,
		kind=kind,
		job_id=job_id,
		user_id=user_id,
		skip_geocode=skip_geocode,
	)
