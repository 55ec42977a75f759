from typing import Optional
from sqlalchemy.orm import Session

from app.repositories.base import BaseRepository
from app.db.models.profile import Profile


class ProfileRepository(BaseRepository[Profile]):
	def __init__(self, db: Session, correlation_id: Optional[str] = None):
		super().__init__(db, Profile, correlation_id)

	def get_plan_tier(self, user_id: str) -> Optional[str]:
		tier = self.db.query(self.model.plan_tier).filter(
			self.model.user_id == user_id,
			self.model.is_deleted == False
		).scalar()
		self._log_operation("get_plan_tier", user_id=user_id, plan_tier=tier)
		return tier
