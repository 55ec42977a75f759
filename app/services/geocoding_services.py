"""Address geocoding via the Google Geocoding REST API.

Enrichment only: `geocode` returns None on any failure and never raises, so a
geocoding outage cannot fail an extraction job.
"""

from typing import Optional, Dict, Any, Protocol

import httpx

from app.core.cache import Cache, get_cache
from app.core.config import settings
from app.core.observability import log_outbound_call
from app.services.base import BaseService


class Geocoder(Protocol):
    def geocode(self, address: str) -> Optional[Dict[str, Any]]:
        ...


def _cache_key(address: str) -> str:
    return "geocode:" + " ".join(address.lower().split())


class GoogleGeocoder(BaseService):
    """Google Geocoding client with a result cache.

    Misses (no result) are not cached so a later run can still resolve them.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        cache: Optional[Cache] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
        correlation_id: Optional[str] = None
    ):
        super().__init__(correlation_id)
        self.api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_SERVER_KEY
        self.cache = cache if cache is not None else get_cache()
        self.http_client = http_client
        self.timeout = timeout

    def _request(self, address: str) -> Dict[str, Any]:
        params = {"address": address, "key": self.api_key}
        if self.http_client is not None:
            response = self.http_client.get(settings.GEOCODING_URL, params=params, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(settings.GEOCODING_URL, params=params)
        response.raise_for_status()
        return response.json()

    def geocode(self, address: str) -> Optional[Dict[str, Any]]:
        address = (address or "").strip()
        if not address:
            return None
        if not self.api_key:
            self.logger.warning("Geocoding skipped: GOOGLE_MAPS_SERVER_KEY is not set")
            return None

        key = _cache_key(address)
        try:
            cached = self.cache.get(key)
        except Exception as e:
            self.logger.warning("Geocode cache read failed", extra={"correlation_id": self.correlation_id, "error": str(e)})
            cached = None
        if cached is not None:
            return cached

        try:
            data = log_outbound_call("google_geocoding", address[:200], "geocode", self.correlation_id,
                                     lambda: self._request(address))
        except Exception as e:
            self.logger.warning(
                "Geocoding request failed",
                extra={"correlation_id": self.correlation_id, "service": self.__class__.__name__, "error": str(e)}
            )
            return None

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(data, dict) or data.get("status") != "OK" or not results:
            self.log_operation("geocode_no_result", status=(data or {}).get("status") if isinstance(data, dict) else None)
            return None

        try:
            first = results[0]
            location = first["geometry"]["location"]
            geo = {
                "formatted_address": first.get("formatted_address"),
                "lat": float(location["lat"]),
                "lng": float(location["lng"]),
                "place_id": first.get("place_id"),
                "quality": first["geometry"].get("location_type"),
            }
        except (KeyError, TypeError, ValueError, IndexError) as e:
            self.logger.warning("Unexpected geocoding payload", extra={"correlation_id": self.correlation_id, "error": str(e)})
            return None

        try:
            self.cache.set(key, geo, ttl=settings.GEOCODE_CACHE_TTL_SECONDS)
        except Exception as e:
            self.logger.warning("Geocode cache write failed", extra={"correlation_id": self.correlation_id, "error": str(e)})
        return geo
