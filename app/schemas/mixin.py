from pydantic import BaseModel, ConfigDict
from datetime import datetime

class TimestampModel(BaseModel):
	"""Audit timestamps shared by every row read back from the job tables."""
	model_config = ConfigDict(from_attributes=True)

	created_at: datetime
	updated_at: datetime
