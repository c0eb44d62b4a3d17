"""Push notifications for cash-out events."""

from dataclasses import dataclass, field
from typing import Optional

import httpx
import structlog

from config.settings import settings
from skycast.utils.resilience import with_retry

logger = structlog.get_logger()

_AUTO_CASHOUT_REASONS = {
    "percentage_above": "cash-out value reached {threshold:g}%",
    "percentage_below": "cash-out value dropped to {threshold:g}%",
    "weather_bonus_above": "weather bonus hit {threshold:g}%",
    "weather_bonus_below": "weather bonus fell to {threshold:g}%",
    "time_bonus_above": "time bonus reached {threshold:g}%",
    "time_bonus_below": "time bonus fell to {threshold:g}%",
    "amount_above": "value reached {amount}",
}

_BET_NOUNS = {"bet": "bet", "parlay": "parlay", "combined_bet": "combined bet"}


def auto_cashout_message(
    bet_type: str, rule_type: str, threshold: float, amount: int,
) -> tuple[str, str]:
    """Title and body for an auto cash-out notification."""
    template = _AUTO_CASHOUT_REASONS.get(rule_type, "threshold of {threshold:g}")
    reason = template.format(threshold=threshold, amount=amount)
    noun = _BET_NOUNS.get(bet_type, bet_type)
    return (
        "Auto Cash-Out Triggered!",
        f"Your {noun} was automatically cashed out for {amount} points "
        f"because {reason}.",
    )


@dataclass
class PushNotifier:
    """Posts notifications to the push delivery endpoint.

    ``notify`` never raises; delivery problems are logged and reported
    as ``False``.
    """

    url: str = ""
    token: str = ""
    timeout: float = 0.0
    _client: Optional[httpx.AsyncClient] = field(default=None, repr=False)

    def __post_init__(self):
        self.url = self.url or settings.PUSH_NOTIFY_URL
        self.token = self.token or settings.PUSH_NOTIFY_TOKEN
        self.timeout = self.timeout or settings.PUSH_NOTIFY_TIMEOUT_SECONDS

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        reference_id: str,
        reference_type: str,
        url: str = "/cashout",
    ) -> bool:
        if not self.url:
            logger.debug("push_not_configured", user_id=user_id, title=title)
            return False
        payload = {
            "userId": user_id,
            "title": title,
            "body": body,
            "url": url,
            "referenceId": reference_id,
            "referenceType": reference_type,
        }
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        async def _post() -> httpx.Response:
            r = await self._get_client().post(self.url, json=payload, headers=headers)
            r.raise_for_status()
            return r

        try:
            await with_retry(_post, max_attempts=2, base_delay=0.5,
                             operation="push_notify")
            logger.info("push_sent", user_id=user_id, reference_id=reference_id)
            return True
        except Exception as e:
            logger.warning("push_failed", user_id=user_id,
                           reference_id=reference_id, error=str(e))
            return False

    async def send_auto_cashout(
        self, *, user_id: str, bet_id: str, bet_type: str,
        rule_type: str, threshold_value: float, cashout_amount: int,
    ) -> bool:
        title, body = auto_cashout_message(
            bet_type, rule_type, threshold_value, cashout_amount)
        return await self.notify(
            user_id, title, body, bet_id, f"auto_cashout_{bet_type}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
