"""
Place-name geocoding for the analytics map, backed by OpenStreetMap Nominatim.

Results (including misses) are cached per place name so repeated dashboard
refreshes don't hit the public API, which allows about one request a second.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class NominatimGeocoder:
    def __init__(
        self,
        url: str,
        user_agent: str,
        region: Optional[str] = None,
        timeout: float = 10.0,
        min_interval: float = 0.25,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url
        self.user_agent = user_agent
        self.region = region
        self.timeout = timeout
        self.min_interval = min_interval
        self.session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock
        self._cache: Dict[str, Optional[dict]] = {}
        self._lock = threading.Lock()
        self._last_request: Optional[float] = None

    @staticmethod
    def cache_key(place: str) -> str:
        return place.strip().lower()

    def cached(self, place: str):
        return self._cache.get(self.cache_key(place))

    def _throttle(self) -> None:
        if self._last_request is not None:
            wait = self.min_interval - (self._clock() - self._last_request)
            if wait > 0:
                self._sleep(wait)
        self._last_request = self._clock()

    def geocode(self, place: Optional[str]) -> Optional[dict]:
        """Return ``{"lat": float, "lng": float}`` for ``place`` or None."""
        if not place or not place.strip():
            return None
        key = self.cache_key(place)
        with self._lock:
            if key in self._cache:
                return self._cache[key]
            self._throttle()
            found, coords = self._lookup(place.strip())
            # Failed requests are not cached so a later refresh can retry
            if found:
                self._cache[key] = coords
            return coords

    def _lookup(self, place: str):
        """Return ``(answered, coords)``; ``answered`` is False on transport errors."""
        query = f"{place}, {self.region}" if self.region else place
        try:
            response = self.session.get(
                self.url,
                params={"format": "json", "q": query, "limit": 1},
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Geocode request failed: %s", e)
            return False, None

        if isinstance(body, list) and body:
            try:
                return True, {"lat": float(body[0]["lat"]), "lng": float(body[0]["lon"])}
            except (KeyError, TypeError, ValueError):
                logger.warning("Geocode response had no usable coordinates")
        return True, None
