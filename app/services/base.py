"""Base service class shared by the job, quota, storage and pipeline services."""

import logging
from typing import Optional, Callable, TypeVar, Any, Dict
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

T = TypeVar("T")


class BaseService:
    """Owns the commit boundary and structured logging for a service.

    Repositories flush; services decide when a unit of work is committed.
    Every status transition of a job is its own short transaction so other
    workers see it immediately.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self.logger = logging.getLogger(self.__class__.__name__)

    def _set_repositories(self, **repositories):
        for name, repo in repositories.items():
            setattr(self, name, repo)

    def _log_context(self, operation: str, **fields: Any) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "service": self.__class__.__name__,
            "operation": operation,
            **fields
        }

    def run_in_transaction(self, db: Session, operation: Callable[[], T], name: Optional[str] = None) -> T:
        """Run `operation` and commit; roll back and re-raise on any error.

        The commit expires the session's identity map, so reads after this
        call see what other workers committed in the meantime.

        Args:
            db: Session the operation writes through
            operation: Callable doing the repository calls
            name: Label for the log lines

        Returns:
            Whatever `operation` returned (e.g. whether a conditional update won)
        """
        label = name or getattr(operation, "__name__", "operation")
        try:
            result = operation()
            db.commit()
        except Exception as e:
            db.rollback()
            kind = "Database error" if isinstance(e, SQLAlchemyError) else "Unexpected error"
            self.logger.error(
                f"{kind} in {label}, transaction rolled back",
                extra=self._log_context(label, error=str(e))
            )
            raise
        self.logger.debug("Transaction committed", extra=self._log_context(label))
        return result

    def log_operation(self, operation: str, **kwargs: Any) -> None:
        self.logger.info(f"Service operation: {operation}", extra=self._log_context(operation, **kwargs))
