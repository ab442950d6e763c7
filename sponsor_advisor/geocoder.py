"""Location resolution for business profiles.

resolve() returns None when a location cannot be resolved; callers treat None as
"search cannot run" and never substitute a default point.
"""

import logging
from typing import Dict, Optional, Tuple

import httpx

from .config import GOOGLE_MAPS_API_KEY, STEP_TIMEOUT_S
from .models import Location

logger = logging.getLogger(__name__)

GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class AbstractGeocoder:
    """Interface for geocoders."""

    async def resolve(
        self, city: Optional[str], state: Optional[str], postal_code: Optional[str] = None
    ) -> Optional[Location]:
        raise NotImplementedError


class GoogleGeocoder(AbstractGeocoder):
    """Async adapter for the Google Geocoding API."""

    def __init__(
        self,
        api_key: str = GOOGLE_MAPS_API_KEY,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = STEP_TIMEOUT_S,
    ) -> None:
        if not api_key:
            raise RuntimeError("GOOGLE_MAPS_API_KEY is not set")
        self._api_key = api_key
        self._client = client
        self._timeout_s = timeout_s

    @staticmethod
    def build_address(city: Optional[str], state: Optional[str], postal_code: Optional[str]) -> Optional[str]:
        # Postal code first: it is the most precise input we get
        if postal_code:
            return f"{postal_code}, {state}, USA" if state else f"{postal_code}, USA"
        if city and state:
            return f"{city}, {state}, USA"
        return None

    async def resolve(
        self, city: Optional[str], state: Optional[str], postal_code: Optional[str] = None
    ) -> Optional[Location]:
        address = self.build_address(city, state, postal_code)
        if address is None:
            logger.debug("Geocoding skipped: need a postal code or city and state")
            return None

        params = {"address": address, "key": self._api_key}
        try:
            if self._client is not None:
                response = await self._client.get(GOOGLE_GEOCODE_URL, params=params, timeout=self._timeout_s)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                    response = await client.get(GOOGLE_GEOCODE_URL, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Geocoding request failed for %r: %s", address, e)
            return None

        results = data.get("results") or []
        if data.get("status") != "OK" or not results:
            logger.info("Could not geocode %r: %s %s", address, data.get("status"), data.get("error_message", ""))
            return None

        point = results[0].get("geometry", {}).get("location", {})
        if point.get("lat") is None or point.get("lng") is None:
            return None
        logger.info("Geocoded %r to (%.4f, %.4f)", address, point["lat"], point["lng"])
        return Location(latitude=float(point["lat"]), longitude=float(point["lng"]))


class StaticGeocoder(AbstractGeocoder):
    """Lookup-table geocoder keyed by postal code or (city, state)."""

    def __init__(
        self,
        by_postal_code: Optional[Dict[str, Location]] = None,
        by_city: Optional[Dict[Tuple[str, str], Location]] = None,
    ) -> None:
        self._by_postal_code = dict(by_postal_code or {})
        self._by_city = {(c.lower(), s.lower()): loc for (c, s), loc in (by_city or {}).items()}

    async def resolve(
        self, city: Optional[str], state: Optional[str], postal_code: Optional[str] = None
    ) -> Optional[Location]:
        if postal_code:
            # ZIP+4 resolves like its 5-digit prefix
            return self._by_postal_code.get(postal_code.split("-")[0])
        if city and state:
            return self._by_city.get((city.lower(), state.lower()))
        return None
