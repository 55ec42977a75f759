from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings


def _engine_kwargs(url: str) -> dict:
	if url.startswith("sqlite"):
		# Worker threads share the file; wait on the write lock instead of failing
		return {"connect_args": {"check_same_thread": False, "timeout": 30}}
	return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
