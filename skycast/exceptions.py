"""Custom exceptions for the Skycast cash-out engine."""


class SkycastError(Exception):
    """Base exception for all Skycast errors."""


class InvalidWager(SkycastError):
    """Wager cannot be valued (stake <= 0, odds < 1, not pending, no legs)."""


class SignalUnavailable(SkycastError):
    """Weather observation could not be fetched."""


class CashoutError(SkycastError):
    """User-facing cash-out failure."""

    user_message = "Cash-out failed, please retry"


class SettlementConflict(CashoutError):
    """Wager left the pending state before the settlement could be written."""

    user_message = "Bet no longer eligible for cash-out"


class InvalidPartialCashout(CashoutError):
    """Partial cash-out percentage or amount is out of bounds."""

    user_message = "Invalid partial cash-out"


class CashoutFailed(CashoutError):
    """Settlement write failed; nothing was changed."""


class NotificationFailure(SkycastError):
    """Push notification could not be delivered."""


class PersistenceError(SkycastError):
    """Database persistence failure."""


class ConfigError(SkycastError):
    """Missing or invalid configuration."""
