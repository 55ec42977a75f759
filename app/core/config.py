import os
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
	# Accept a direct URL (supports either DATABASE_URL or database_url env vars)
	database_url: str | None = None

	DB_DRIVER: str = "postgresql+psycopg2"
	DB_HOST: str = "localhost"
	DB_USER: str = "postgres"
	DB_PASSWORD: str = "postgres"
	DB_NAME: str = "extraction"
	DB_PORT: int = 5432

	ENVIRONMENT: str = "development"  # development | preview | production

	# Identity provider tokens (HS256 shared secret, e.g. Supabase JWT secret)
	AUTH_JWT_SECRET: str = "secret"
	AUTH_JWT_ALGORITHM: str = "HS256"
	AUTH_JWT_AUDIENCE: str | None = "authenticated"

	# Shared secret for the batch dispatch trigger (cron / manual)
	WORKER_SECRET: str | None = None
	WORKER_MAX_JOBS: int = 8

	GOOGLE_GEMINI_API_KEY: str | None = None
	GEMINI_MODEL: str = "gemini-2.5-flash"
	GEMINI_MAX_RETRIES: int = 5
	GOOGLE_MAPS_SERVER_KEY: str | None = None
	GEOCODING_URL: str = "https://maps.googleapis.com/maps/api/geocode/json"
	GEOCODE_CONCURRENCY: int = 4

	# Quota
	BYPASS_AI_LIMITS: bool = False
	AI_QUOTA_PROCESSING_CUTOFF_MINUTES: int = 30
	MAX_DOCUMENT_BYTES: int = 15 * 1024 * 1024

	# Cache / rate limiting (in-process when REDIS_URL is unset)
	REDIS_URL: str | None = None
	GEOCODE_CACHE_TTL_SECONDS: int = 30 * 24 * 3600
	EXTRACTION_CACHE_TTL_SECONDS: int = 24 * 3600

	# Observability / Telemetry flags
	ENABLE_REQUEST_LOGGING: bool = True
	ENABLE_OUTBOUND_LOGGING: bool = True
	LOG_SAMPLE_RATE: float = 1.0
	LOG_LEVEL: str = "INFO"

	MINIO_ENDPOINT: str = os.getenv("MINIO_ENDPOINT", "localhost:9000")
	MINIO_PUBLIC_ENDPOINT: str = os.getenv("MINIO_PUBLIC_ENDPOINT", "localhost:9000")
	MINIO_ACCESS_KEY: str = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
	MINIO_SECRET_KEY: str = os.getenv("MINIO_SECRET_KEY", "minioadmin")
	MINIO_SECURE: bool = os.getenv("MINIO_SECURE", "false").lower() == "true"
	CALLSHEET_BUCKET: str = "callsheets"
	DOCUMENT_BUCKET: str = "project-documents"
	UPLOAD_URL_EXPIRE_MINUTES: int = 15

	# Prefer explicit database_url if provided; otherwise assemble from parts
	@property
	def DATABASE_URL(self) -> str:
		# 1) Value from settings (supports .env and OS env via BaseSettings)
		if self.database_url and self.database_url.strip() and self.database_url.strip() != "://:@:/":
			return self.database_url.strip()
		# 2) Raw OS env (e.g., uppercase on Windows), as a fallback
		explicit_url = os.getenv("DATABASE_URL")
		if explicit_url and explicit_url.strip() and explicit_url.strip() != "://:@:/":
			return explicit_url.strip()
		# 3) Assemble from parts
		return f"{self.DB_DRIVER}://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

	@property
	def requires_worker_secret(self) -> bool:
		return self.ENVIRONMENT.strip().lower() != "development"

	# Pydantic v2 settings config
	model_config = SettingsConfigDict(
		env_file=".env",
		extra="ignore",  # tolerate unrelated env vars like database_url
		case_sensitive=False,  # accept lowercase keys on Windows and in .env
	)

settings = Settings()
