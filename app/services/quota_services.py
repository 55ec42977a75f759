"""Monthly AI quota: usage ledger reads, in-flight reservations and admission."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.services.base import BaseService
from app.services.retry_policy import ensure_utc
from app.repositories.job import JobRepository
from app.repositories.profile import ProfileRepository
from app.repositories.usage import UsageEventRepository
from app.schemas.quota import QuotaDecision, QuotaRead


DEFAULT_PLAN = "basic"

# ai_jobs_per_month per plan tier
PLAN_LIMITS = {
	"basic": 5,
	"pro": 60,
}


def plan_limit(plan_tier: Optional[str]) -> int:
	return PLAN_LIMITS.get((plan_tier or DEFAULT_PLAN).strip().lower(), PLAN_LIMITS[DEFAULT_PLAN])


def month_window_start(now: Optional[datetime] = None) -> datetime:
	"""First instant of the current calendar month, UTC."""
	current = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
	return current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def evaluate_quota(limit: int, used: int, processing: int, bypass: bool = False) -> QuotaDecision:
	"""Admission rule: deny when done usage hits the limit or usage plus reservations exceeds it."""
	reserved = used + processing
	denied = used >= limit or reserved > limit
	if denied and not bypass:
		return QuotaDecision(
			allowed=False,
			limit=limit,
			used=used,
			remaining=0,
			processing=processing,
			reason=f"monthly_quota_exceeded:{limit}/{limit}:reserved={reserved}:done={used}:processing={processing}",
		)
	return QuotaDecision(
		allowed=True,
		limit=limit,
		used=used,
		remaining=max(0, limit - reserved),
		processing=processing,
	)


class QuotaService(BaseService):
	"""Quota checks are advisory: concurrent admissions can overshoot by the
	number of jobs that pass the check inside the same reservation window."""

	def __init__(
		self,
		job_repo: JobRepository,
		usage_repo: UsageEventRepository,
		profile_repo: ProfileRepository,
		correlation_id: Optional[str] = None,
	):
		super().__init__(correlation_id)
		self._set_repositories(job_repo=job_repo, usage_repo=usage_repo, profile_repo=profile_repo)

	def resolve_plan_tier(self, user_id: str) -> str:
		tier = self.profile_repo.get_plan_tier(user_id)
		return tier if tier in PLAN_LIMITS else DEFAULT_PLAN

	def check_monthly_quota(
		self,
		user_id: str,
		plan_tier: Optional[str] = None,
		now: Optional[datetime] = None,
	) -> QuotaDecision:
		current = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
		tier = plan_tier or self.resolve_plan_tier(user_id)
		limit = plan_limit(tier)
		since = month_window_start(current)

		used = self.usage_repo.count_done_since(user_id, since)
		if used is None:
			used = self.job_repo.count_done_started_since(user_id, since)

		cutoff = current - timedelta(minutes=settings.AI_QUOTA_PROCESSING_CUTOFF_MINUTES)
		processing = self.job_repo.count_processing_since(user_id, cutoff)

		decision = evaluate_quota(limit, used, processing, bypass=settings.BYPASS_AI_LIMITS)
		self.log_operation(
			"check_monthly_quota",
			user_id=user_id,
			plan_tier=tier,
			limit=limit,
			used=used,
			processing=processing,
			allowed=decision.allowed,
			bypass=settings.BYPASS_AI_LIMITS
		)
		return decision

	def get_quota(self, user_id: str) -> QuotaRead:
		tier = self.resolve_plan_tier(user_id)
		decision = self.check_monthly_quota(user_id, tier)
		return QuotaRead(
			bypass=settings.BYPASS_AI_LIMITS,
			plan_tier=tier,
			limit=decision.limit,
			used=decision.used,
			remaining=None if settings.BYPASS_AI_LIMITS else decision.remaining,
		)

	def record_usage(
		self,
		db: Session,
		user_id: str,
		kind: str,
		job_id: str,
		run_at: Optional[datetime] = None,
	) -> bool:
		"""Append a `done` usage event. Never raises; returns whether it was stored."""
		try:
			self.run_in_transaction(
				db,
				lambda: self.usage_repo.append(user_id, kind, job_id, run_at or datetime.now(timezone.utc)),
				name="record_usage",
			)
			return True
		except Exception as e:
			self.logger.warning(
				"Failed to record AI usage",
				extra={
					"correlation_id": self.correlation_id,
					"service": self.__class__.__name__,
					"user_id": user_id,
					"job_id": job_id,
					"error": str(e)
				}
			)
			return False
