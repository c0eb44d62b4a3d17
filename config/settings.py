"""Runtime configuration for the Skycast cash-out engine."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # === Database ===
    DATABASE_URL: str = "sqlite+aiosqlite:///data/skycast.db"

    # === OpenWeather (current observations) ===
    OPENWEATHER_API_KEY: str = ""
    OPENWEATHER_BASE_URL: str = "https://api.openweathermap.org/data/2.5/weather"
    OPENWEATHER_UNITS: str = "metric"
    WEATHER_FETCH_TIMEOUT_SECONDS: float = 10.0
    WEATHER_FETCH_MAX_ATTEMPTS: int = 2

    # === Push notifications ===
    PUSH_NOTIFY_URL: str = ""
    PUSH_NOTIFY_TOKEN: str = ""
    PUSH_NOTIFY_TIMEOUT_SECONDS: float = 10.0

    # === Cash-out calibration (base + time + weather must stay within cap) ===
    # Single bets: 0.40 + 0.30 + 0.15 = 0.85 <= cap
    CASHOUT_SINGLE_BASE_RATE: float = 0.40
    CASHOUT_SINGLE_TIME_SCALE: float = 0.30
    CASHOUT_SINGLE_WEATHER_SCALE: float = 0.15
    CASHOUT_SINGLE_CAP: float = 0.85

    # Parlays and combined bets: 0.30 + 0.35 + 0.15 = 0.80 <= cap
    CASHOUT_MULTI_BASE_RATE: float = 0.30
    CASHOUT_MULTI_TIME_SCALE: float = 0.35
    CASHOUT_MULTI_WEATHER_SCALE: float = 0.15
    CASHOUT_MULTI_CAP: float = 0.80

    CASHOUT_TIME_CURVE_EXPONENT: float = 1.0  # 1.0 = linear, <1 = concave
    CASHOUT_DEFAULT_WINDOW_SECONDS: float = 3600.0  # bets without expires_at
    CASHOUT_FRESH_WINDOW_SECONDS: float = 300.0  # no day-zero profit window

    # === Partial cash-out ===
    CASHOUT_PARTIAL_MIN_PCT: int = 10

    # === Polling ===
    CASHOUT_POLL_INTERVAL_SECONDS: float = 30.0

    model_config = {"env_file": ".env"}


settings = Settings()
