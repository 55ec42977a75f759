from sqlalchemy import Column, String
from app.db.base_class import AuditMixin, Base


class Profile(Base, AuditMixin):
	__tablename__ = "profiles"

	user_id = Column(String(64), primary_key=True)
	plan_tier = Column(String(16), nullable=False, default="basic")
