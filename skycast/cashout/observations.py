# skycast/cashout/observations.py
from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from skycast.feeds.base import Observation, WeatherSignalProvider

logger = structlog.get_logger()


class ObservationCache:
    """Per-pass observation lookups, one provider call per city.

    Concurrent requests for the same city share a single in-flight fetch.
    Failures resolve to None so callers fall back to a zero weather bonus.
    """

    def __init__(self, provider: WeatherSignalProvider) -> None:
        self.provider = provider
        self._tasks: dict[str, asyncio.Task] = {}

    async def get(self, city: str) -> Optional[Observation]:
        task = self._tasks.get(city)
        if task is None:
            task = asyncio.ensure_future(self._fetch(city))
            self._tasks[city] = task
        return await asyncio.shield(task)

    async def _fetch(self, city: str) -> Optional[Observation]:
        try:
            return await self.provider.get_observation(city)
        except Exception as e:
            logger.warning("weather_signal_unavailable", city=city,
                           error=str(e))
            return None

    def __len__(self) -> int:
        return len(self._tasks)
