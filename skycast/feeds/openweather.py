"""OpenWeather current-conditions provider.

Feeds the weather confidence model with live observations. Any transport
or payload problem surfaces as SignalUnavailable so the valuation engine
can fall back to a zero weather bonus.
"""

from typing import Any, Optional

import httpx
import structlog

from config.settings import settings
from skycast.exceptions import SignalUnavailable
from skycast.feeds.base import Observation, WeatherSignalProvider
from skycast.utils.resilience import with_retry

logger = structlog.get_logger()

CITY_COORDS: dict[str, dict[str, float]] = {
    "New York": {"lat": 40.7128, "lon": -74.0060},
    "Tokyo": {"lat": 35.6762, "lon": 139.6503},
    "London": {"lat": 51.5074, "lon": -0.1278},
    "Paris": {"lat": 48.8566, "lon": 2.3522},
    "Sydney": {"lat": -33.8688, "lon": 151.2093},
    "Cape Town": {"lat": -33.9249, "lon": 18.4241},
    "Sao Paulo": {"lat": -23.5505, "lon": -46.6333},
    "Mumbai": {"lat": 19.0760, "lon": 72.8777},
    "Cairo": {"lat": 30.0444, "lon": 31.2357},
    "Toronto": {"lat": 43.6532, "lon": -79.3832},
}


def parse_current(city: str, data: dict[str, Any]) -> Observation:
    """Parse an OpenWeather ``/weather`` response into an Observation."""
    main = data.get("main") or {}
    if "temp" not in main:
        raise SignalUnavailable(f"no temperature in response for {city}")

    conditions = data.get("weather") or []
    labels = " ".join(
        f"{w.get('main', '')} {w.get('description', '')}".lower()
        for w in conditions
    )
    if "snow" in labels:
        precipitation = "snow"
    elif "rain" in labels or "drizzle" in labels or "thunderstorm" in labels:
        precipitation = "rain"
    else:
        precipitation = "none"

    wind = data.get("wind") or {}
    clouds = data.get("clouds") or {}
    rain = data.get("rain") or {}
    return Observation(
        city=city,
        temperature=float(main["temp"]),
        precipitation=precipitation,
        wind_speed=_opt_float(wind.get("speed")),
        humidity=_opt_float(main.get("humidity")),
        pressure=_opt_float(main.get("pressure")),
        cloud_coverage=_opt_float(clouds.get("all")),
        rainfall=_opt_float(rain.get("1h")),
    )


def _opt_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


class OpenWeatherProvider(WeatherSignalProvider):
    """Fetches current observations for the supported cities."""

    def __init__(
        self, api_key: str = "", base_url: str = "", units: str = "",
        timeout: float = 0.0, max_attempts: int = 0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key or settings.OPENWEATHER_API_KEY
        self.base_url = base_url or settings.OPENWEATHER_BASE_URL
        self.units = units or settings.OPENWEATHER_UNITS
        self.max_attempts = max_attempts or settings.WEATHER_FETCH_MAX_ATTEMPTS
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.WEATHER_FETCH_TIMEOUT_SECONDS)

    async def get_observation(self, city: str) -> Observation:
        coords = CITY_COORDS.get(city)
        if coords is None:
            raise SignalUnavailable(f"unknown city {city!r}")
        if not self.api_key:
            raise SignalUnavailable("OPENWEATHER_API_KEY not configured")

        params = {
            "lat": coords["lat"],
            "lon": coords["lon"],
            "units": self.units,
            "appid": self.api_key,
        }

        async def _get() -> dict[str, Any]:
            r = await self._client.get(self.base_url, params=params)
            r.raise_for_status()
            return r.json()

        try:
            data = await with_retry(
                _get, max_attempts=self.max_attempts, base_delay=0.5,
                operation="openweather_current")
        except (httpx.HTTPError, ValueError) as e:
            raise SignalUnavailable(f"weather fetch failed for {city}: {e}") from e

        observation = parse_current(city, data)
        logger.debug("weather_observed", city=city,
                     temp=observation.temperature,
                     precipitation=observation.precipitation)
        return observation

    async def close(self) -> None:
        await self._client.aclose()
