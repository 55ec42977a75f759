# main.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.endpoints import jobs, quota, worker
from app.core.config import settings
from app.core.observability import RequestLoggingMiddleware
from app.services.exceptions import ServiceError
# Import all models to ensure relationships are properly resolved
from app.db import base  # This imports all models

logging.basicConfig(
	level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("app")

app = FastAPI(title="Document Extraction Service")
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
	if not exc.correlation_id:
		exc.correlation_id = getattr(request.state, "correlation_id", None)
	level = logging.ERROR if exc.http_status.value >= 500 else logging.INFO
	logger.log(level, str(exc), extra={"correlation_id": exc.correlation_id, "error_code": exc.error_code})
	return JSONResponse(status_code=exc.http_status.value, content=exc.to_dict(), headers=exc.headers or None)


app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
app.include_router(quota.router, prefix="/quota", tags=["quota"])
app.include_router(worker.router, prefix="/extraction-worker", tags=["worker"])


@app.get("/health", tags=["health"])
def health():
	return {"status": "ok", "environment": settings.ENVIRONMENT}
