"""Repository for the AI usage ledger."""

from datetime import datetime
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.repositories.base import BaseRepository
from app.db.models.usage_event import AiUsageEvent


class UsageEventRepository(BaseRepository[AiUsageEvent]):
    """Append-only: rows are inserted and counted, never updated."""

    def __init__(self, db: Session, correlation_id: Optional[str] = None):
        super().__init__(db, AiUsageEvent, correlation_id)

    def count_done_since(self, user_id: str, since: datetime) -> Optional[int]:
        """Completed extractions for `user_id` since `since`.

        Returns None when the ledger table is not provisioned, so the caller
        can fall back to counting jobs. The session is rolled back in that
        case; call this before making any writes.
        """
        try:
            count = self.db.query(func.count(self.model.id)).filter(
                self.model.user_id == user_id,
                self.model.status == "done",
                self.model.run_at >= since
            ).scalar()
        except (OperationalError, ProgrammingError) as e:
            self.db.rollback()
            self.logger.warning(
                "Usage ledger unavailable, falling back to job counts",
                extra={
                    "correlation_id": self.correlation_id,
                    "repository": self.__class__.__name__,
                    "error": str(e)
                }
            )
            return None
        self._log_operation("count_done_since", user_id=user_id, count=count)
        return int(count or 0)

    def append(self, user_id: str, kind: str, job_id: str, run_at: datetime, status: str = "done") -> AiUsageEvent:
        return self.create({
            "user_id": user_id,
            "kind": kind,
            "job_id": job_id,
            "run_at": run_at,
            "status": status,
        })
