"""Credential and configuration validators."""

from skycast.exceptions import ConfigError


def validate_openweather() -> None:
    """Raise ConfigError if the OpenWeather API key is missing."""
    from config.settings import settings
    if not settings.OPENWEATHER_API_KEY:
        raise ConfigError("OPENWEATHER_API_KEY is required for live weather bonuses")


def validate_push() -> None:
    """Raise ConfigError if push notification credentials are missing."""
    from config.settings import settings
    if not settings.PUSH_NOTIFY_URL:
        raise ConfigError("PUSH_NOTIFY_URL is required")
    if not settings.PUSH_NOTIFY_TOKEN:
        raise ConfigError("PUSH_NOTIFY_TOKEN is required")


def validate_calibration(
    base_rate: float, time_scale: float, weather_scale: float, cap: float,
    *, label: str = "",
) -> None:
    """Raise ConfigError unless the constants keep the house edge.

    The sum of all contributions must stay under the cap, and the cap
    itself must be strictly below 1 so no offer reaches the potential win.
    """
    for name, value in (("base_rate", base_rate), ("time_scale", time_scale),
                        ("weather_scale", weather_scale)):
        if value < 0:
            raise ConfigError(f"{label} {name} must be >= 0, got {value}")
    if not 0 < cap < 1:
        raise ConfigError(f"{label} cap must be in (0, 1), got {cap}")
    total = base_rate + time_scale + weather_scale
    if total > cap + 1e-9:
        raise ConfigError(
            f"{label} base_rate + time_scale + weather_scale = {total:.4f} "
            f"exceeds cap {cap:.4f}")


def validate_cashout_settings() -> None:
    """Validate both cash-out calibrations from settings."""
    from config.settings import settings
    validate_calibration(
        settings.CASHOUT_SINGLE_BASE_RATE,
        settings.CASHOUT_SINGLE_TIME_SCALE,
        settings.CASHOUT_SINGLE_WEATHER_SCALE,
        settings.CASHOUT_SINGLE_CAP,
        label="single")
    validate_calibration(
        settings.CASHOUT_MULTI_BASE_RATE,
        settings.CASHOUT_MULTI_TIME_SCALE,
        settings.CASHOUT_MULTI_WEATHER_SCALE,
        settings.CASHOUT_MULTI_CAP,
        label="multi")
    if not 0 < settings.CASHOUT_TIME_CURVE_EXPONENT <= 1:
        raise ConfigError("CASHOUT_TIME_CURVE_EXPONENT must be in (0, 1]")
    if not 1 <= settings.CASHOUT_PARTIAL_MIN_PCT <= 100:
        raise ConfigError("CASHOUT_PARTIAL_MIN_PCT must be in [1, 100]")
