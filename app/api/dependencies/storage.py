from functools import lru_cache

from minio import Minio
from app.core.config import settings

def _normalize_minio_endpoint(endpoint: str, default_secure: bool) -> tuple[str, bool]:
  ep = (endpoint or "").strip()
  secure = default_secure
  if ep.startswith("http://"):
    secure = False
    ep = ep[len("http://"):]
  elif ep.startswith("https://"):
    secure = True
    ep = ep[len("https://"):]
  if "/" in ep:
    ep = ep.split("/", 1)[0]
  return ep, secure


def _build_client(endpoint: str) -> Minio:
  host, secure = _normalize_minio_endpoint(endpoint, settings.MINIO_SECURE)
  return Minio(
    host,
    access_key=settings.MINIO_ACCESS_KEY,
    secret_key=settings.MINIO_SECRET_KEY,
    secure=secure,
  )


# Clients are created on first use; constructing one does not touch the network.
@lru_cache(maxsize=1)
def get_minio_client() -> Minio:
  return _build_client(settings.MINIO_ENDPOINT)


# Signed upload URLs are handed to browsers, so they are signed for the public host.
@lru_cache(maxsize=1)
def get_public_minio_client() -> Minio:
  return _build_client(settings.MINIO_PUBLIC_ENDPOINT or settings.MINIO_ENDPOINT)
