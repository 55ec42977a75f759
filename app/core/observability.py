from __future__ import annotations

import logging
import time
import uuid
from random import random
from typing import Callable, Optional, Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.background import BackgroundTask

from app.core.config import settings
from app.db.session import SessionLocal
from app.repositories.request_log import RequestLogRepository

logger = logging.getLogger("app.observability")


def generate_correlation_id(existing: Optional[str]) -> str:
	if existing and existing.strip():
		return existing.strip()[:64]
	return str(uuid.uuid4())


def _sampled_out() -> bool:
	rate = float(settings.LOG_SAMPLE_RATE)
	return rate < 1.0 and random() > rate


class RequestLoggingMiddleware(BaseHTTPMiddleware):
	"""Stamp every response with X-Correlation-ID and store a request_logs row.

	The row is written in a background task after the response is sent, so
	telemetry never adds latency or errors to the request.
	"""

	async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
		correlation_id = generate_correlation_id(request.headers.get("X-Correlation-ID"))
		request.state.correlation_id = correlation_id

		start_ns = time.monotonic_ns()
		response = await call_next(request)
		duration_ms = int((time.monotonic_ns() - start_ns) / 1_000_000)

		response.headers["X-Correlation-ID"] = correlation_id
		if settings.ENABLE_REQUEST_LOGGING and not _sampled_out():
			payload = _build_inbound_payload(request, correlation_id, response.status_code, duration_ms)
			response.background = BackgroundTask(_insert_log, "inbound", payload)
		return response


def _build_inbound_payload(request: Request, correlation_id: str, status_code: int, duration_ms: int) -> dict:
	# Route template is unavailable for 404s
	route = request.scope.get("route")
	path_template = getattr(route, "path", None) if route is not None else None

	xff = request.headers.get("x-forwarded-for")
	client_ip = (xff.split(",")[0].strip() if xff else (request.client.host if request.client else None))

	auth_header = (request.headers.get("authorization") or "").lower()
	auth_type = "bearer" if auth_header.startswith("bearer ") else "none"

	return {
		"correlation_id": correlation_id,
		"connection_type": "http",
		"method": request.method,
		"path_template": path_template or request.url.path,
		"status_code": status_code,
		"duration_ms": duration_ms,
		"client_ip": client_ip,
		"user_agent": request.headers.get("user-agent") or "",
		"auth_type": auth_type,
		"user_id": getattr(request.state, "user_id", None),
		"job_id": request.path_params.get("job_id") if request.path_params else None,
	}


def _insert_log(direction: str, payload: dict) -> None:
	db = None
	try:
		db = SessionLocal()
		repo = RequestLogRepository(db)
		if direction == "inbound":
			repo.insert_inbound(payload)
		else:
			repo.insert_outbound(payload)
	except Exception as e:
		# Telemetry must never affect the caller
		if db is not None:
			db.rollback()
		logger.warning(
			"Failed to store request log",
			extra={"correlation_id": payload.get("correlation_id"), "direction": direction, "error": str(e)}
		)
	finally:
		if db is not None:
			db.close()


def log_outbound_call(
	provider: str,
	target: str,
	operation: str,
	correlation_id: Optional[str],
	call: Callable[[], Any],
	job_id: Optional[str] = None,
) -> Any:
	"""Execute an outbound call (gemini, minio, geocoding) and record its duration.

	Args:
		provider: External provider name (e.g., gemini, minio)
		target: Target entity (e.g., model name, object key)
		operation: Operation name
		correlation_id: Correlation ID for linkage
		call: Callable that performs the operation
		job_id: Job the call was made for, when there is one

	Returns:
		Result of `call()`
	"""
	if not settings.ENABLE_OUTBOUND_LOGGING:
		return call()

	start_ns = time.monotonic_ns()
	error_code: Optional[str] = None
	try:
		return call()
	except Exception as e:
		error_code = type(e).__name__
		raise
	finally:
		duration_ms = int((time.monotonic_ns() - start_ns) / 1_000_000)
		logger.info(
			f"Outbound call: {provider}.{operation}",
			extra={
				"correlation_id": correlation_id,
				"provider": provider,
				"target": target,
				"job_id": job_id,
				"duration_ms": duration_ms,
				"error_code": error_code
			}
		)
		_insert_log("outbound", {
			"correlation_id": correlation_id or str(uuid.uuid4()),
			"provider": provider,
			"target": f"{operation}:{target}",
			"job_id": job_id,
			"duration_ms": duration_ms,
			"error_code": error_code,
		})
