from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional
import time


@dataclass
class Observation:
    """Current weather at a city, as reported by a signal provider."""
    city: str
    temperature: float
    precipitation: str = "none"  # none, rain, snow
    wind_speed: Optional[float] = None
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    cloud_coverage: Optional[float] = None
    dew_point: Optional[float] = None
    rainfall: Optional[float] = None  # mm over the last hour
    observed_at: float = field(default_factory=time.time)

    @property
    def is_raining(self) -> bool:
        return self.precipitation == "rain"

    @property
    def is_snowing(self) -> bool:
        return self.precipitation == "snow"


class WeatherSignalProvider(ABC):
    """Source of current weather observations."""

    @abstractmethod
    async def get_observation(self, city: str) -> Observation:
        """Return the current observation for ``city``.

        Raises SignalUnavailable on any network or service failure.
        """

    async def close(self) -> None:
        """Release any held connections."""
