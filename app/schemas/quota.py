from typing import Optional
from pydantic import BaseModel


class QuotaDecision(BaseModel):
	allowed: bool
	limit: int
	used: int
	remaining: int
	processing: int = 0
	reason: Optional[str] = None


class QuotaRead(BaseModel):
	bypass: bool
	plan_tier: str
	limit: int
	used: int
	remaining: Optional[int] = None  # None when limits are bypassed
