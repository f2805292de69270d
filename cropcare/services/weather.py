"""Weather and farming advice for a location."""

import logging
from datetime import timedelta

from pydantic import ValidationError as PydanticValidationError

from cropcare.api.functions import FunctionsClient
from cropcare.core.constants import CacheLimits, Functions
from cropcare.exceptions import CropCareError, ServiceError, ValidationError
from cropcare.models.weather import WeatherReport
from cropcare.storage.cache import CacheKeys, LocalCache
from cropcare.sync.network import NetworkMonitor

logger = logging.getLogger(__name__)

WEATHER_TTL = timedelta(minutes=CacheLimits.WEATHER_TTL_MINUTES)


def weather_key(lat: float, lon: float) -> str:
    return f"{CacheKeys.WEATHER.value}_{lat:.2f}_{lon:.2f}"


class WeatherService:
    """Fetches weather reports, cached for 30 minutes per location."""

    def __init__(self, functions: FunctionsClient, cache: LocalCache, monitor: NetworkMonitor) -> None:
        self.functions = functions
        self.cache = cache
        self.monitor = monitor

    def cached(self, lat: float, lon: float) -> WeatherReport | None:
        data = self.cache.get(weather_key(lat, lon))
        if data is None:
            return None
        try:
            return WeatherReport.model_validate(data)
        except PydanticValidationError as e:
            logger.warning(f"Discarding cached weather: {e}")
            self.cache.remove(weather_key(lat, lon))
            return None

    async def fetch(self, lat: float, lon: float, name: str | None = None, refresh: bool = False) -> WeatherReport:
        """Weather for a coordinate.

        A fresh cached report is returned without a call unless ``refresh`` is set.
        Offline, or when the call fails, the cached report is returned if there is one.

        Raises:
            ValidationError: For out-of-range coordinates
            CropCareError: If the call fails and nothing is cached
        """
        if not -90 <= lat <= 90:
            raise ValidationError("lat", lat, "Latitude must be between -90 and 90")
        if not -180 <= lon <= 180:
            raise ValidationError("lon", lon, "Longitude must be between -180 and 180")

        cached = self.cached(lat, lon)
        if cached is not None and (not refresh or not self.monitor.is_online):
            return cached
        if not self.monitor.is_online:
            raise ServiceError(503, "Weather unavailable offline")

        body: dict[str, object] = {"lat": lat, "lon": lon}
        if name:
            body["locationName"] = name
        try:
            data = await self.functions.invoke_with_retry(Functions.WEATHER, body)
            report = WeatherReport.model_validate(data)
        except PydanticValidationError as e:
            logger.error(f"Weather fetch error: {e}")
            if cached is not None:
                return cached
            raise ServiceError(502, "Unexpected weather payload") from e
        except CropCareError as e:
            logger.error(f"Weather fetch error: {e}")
            if cached is not None:
                return cached
            raise

        self.cache.set(weather_key(lat, lon), report.model_dump(mode="json", by_alias=True), ttl=WEATHER_TTL)
        return report
