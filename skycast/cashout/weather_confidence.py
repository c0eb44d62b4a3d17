# skycast/cashout/weather_confidence.py
from __future__ import annotations

import re
from typing import Optional

import structlog

from skycast.feeds.base import Observation

logger = structlog.get_logger()

BINARY_TYPES = {"rain": "is_raining", "snow": "is_snowing"}

# prediction_type -> Observation attribute
NUMERIC_TYPES = {
    "temperature": "temperature",
    "wind": "wind_speed",
    "humidity": "humidity",
    "pressure": "pressure",
    "cloud_coverage": "cloud_coverage",
    "dew_point": "dew_point",
    "rainfall": "rainfall",
}

_YES = {"yes", "true", "1", "y"}
_NO = {"no", "false", "0", "n"}

# "20-25", "-5--1", "20 - 25", "20-25°C"
_RANGE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*-\s*(-?\d+(?:\.\d+)?)")
_NUMBER = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")

# |observed - predicted| -> fraction of the weather scale
_EXACT_STEPS = ((0, 1.0), (1, 0.75), (2, 0.5), (4, 0.25))


def parse_range(value: str) -> Optional[tuple[float, float]]:
    m = _RANGE.match(value)
    if not m:
        return None
    lo, hi = float(m.group(1)), float(m.group(2))
    return (lo, hi) if lo <= hi else (hi, lo)


def parse_number(value: str) -> Optional[float]:
    m = _NUMBER.match(value)
    return float(m.group(1)) if m else None


class WeatherConfidenceModel:
    """Scores how well current weather supports a prediction.

    Never raises: missing observations, unknown prediction types and
    unparsable values all score zero.
    """

    def __init__(self, *, weather_scale: float) -> None:
        if weather_scale < 0:
            raise ValueError("weather_scale must be >= 0")
        self.weather_scale = weather_scale

    def weather_bonus(
        self, observation: Optional[Observation],
        prediction_type: str, prediction_value: str,
    ) -> float:
        return self.weather_scale * self.confidence(
            observation, prediction_type, prediction_value)

    def confidence(
        self, observation: Optional[Observation],
        prediction_type: str, prediction_value: str,
    ) -> float:
        """Unscaled confidence in [0, 1]."""
        if observation is None:
            return 0.0
        ptype = (prediction_type or "").strip().lower()
        value = str(prediction_value or "").strip().lower()

        if ptype in BINARY_TYPES:
            return self._binary(getattr(observation, BINARY_TYPES[ptype]), value)

        attr = NUMERIC_TYPES.get(ptype)
        if attr is None:
            logger.debug("unknown_prediction_type", prediction_type=ptype)
            return 0.0
        observed = getattr(observation, attr, None)
        if observed is None:
            return 0.0

        bounds = parse_range(value)
        if bounds is not None:
            return self._ranged(observed, *bounds)
        predicted = parse_number(value)
        if predicted is None:
            logger.debug("unparsable_prediction", prediction_type=ptype,
                         prediction_value=value)
            return 0.0
        return self._exact(observed, predicted)

    @staticmethod
    def _binary(observed_state: bool, value: str) -> float:
        if value in _YES:
            predicted = True
        elif value in _NO:
            predicted = False
        else:
            return 0.0
        return 1.0 if observed_state == predicted else 0.0

    @staticmethod
    def _ranged(observed: float, lo: float, hi: float) -> float:
        if lo <= observed <= hi:
            return 1.0
        distance = lo - observed if observed < lo else observed - hi
        return 0.5 if distance <= hi - lo else 0.0

    @staticmethod
    def _exact(observed: float, predicted: float) -> float:
        diff = abs(round(observed) - predicted)
        for max_diff, fraction in _EXACT_STEPS:
            if diff <= max_diff:
                return fraction
        return 0.0
