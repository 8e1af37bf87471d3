"""Telegram bot token validation against the Bot API ``getMe`` endpoint."""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from provisioner.infra.circuit_breaker import CircuitBreaker
from provisioner.infra.error_handler import APIError, NetworkError, ValidationError
from provisioner.infra.timeout import BOT_VALIDATION_TIMEOUT

logger = logging.getLogger(__name__)


# Telegram Bot API base URL
TELEGRAM_API_BASE = "https://api.telegram.org/bot"

# "<numeric bot id>:<secret>"
_TOKEN_RE = re.compile(r"^\d+:[A-Za-z0-9_-]+$")


@dataclass
class BotInfo:
    """Identity of a bot as reported by ``getMe``."""
    id: int
    username: str
    first_name: str = ""
    is_bot: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "is_bot": self.is_bot,
        }


def check_token_format(token: str) -> None:
    """Reject tokens that cannot possibly be valid without calling Telegram."""
    if not token or not _TOKEN_RE.match(token):
        raise ValidationError("malformed bot token")


def _retry_after(body: Dict[str, Any]) -> Optional[float]:
    parameters = body.get("parameters") or {}
    value = parameters.get("retry_after")
    return float(value) if value is not None else None


async def fetch_bot_info(
    token: str,
    timeout: float = BOT_VALIDATION_TIMEOUT,
    api_base: str = TELEGRAM_API_BASE,
) -> BotInfo:
    """
    Call ``getMe`` for ``token``.

    The token is never included in exception messages or logs.

    Raises:
        ValidationError: Telegram rejected the token, or it is not a bot
        NetworkError: Transport failure or timeout
        APIError: Telegram answered with an unexpected error
    """
    check_token_format(token)
    url = f"{api_base}{token}/getMe"

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url)
    except httpx.TimeoutException as e:
        raise NetworkError("telegram getMe timed out") from e
    except httpx.HTTPError as e:
        raise NetworkError(f"telegram getMe failed: {type(e).__name__}") from e

    try:
        body = response.json()
    except ValueError:
        body = {}

    status = response.status_code
    if status in (401, 404):
        raise ValidationError("telegram rejected the bot token")
    if status == 429:
        raise APIError("telegram rate limited the request", status_code=status,
                       retryable=True, retry_after=_retry_after(body))
    if status >= 500:
        raise APIError(f"telegram returned {status}", status_code=status, retryable=True)
    if status >= 400:
        raise APIError(f"telegram returned {status}: {body.get('description', '')}", status_code=status)

    if not body.get("ok"):
        raise ValidationError(f"telegram rejected the bot token: {body.get('description', 'not ok')}")

    result = body.get("result") or {}
    if not result.get("is_bot"):
        raise ValidationError("token does not belong to a bot")

    return BotInfo(
        id=int(result.get("id", 0)),
        username=result.get("username", ""),
        first_name=result.get("first_name", ""),
        is_bot=True,
    )


class TelegramBotValidator:
    """
    Validates bot tokens through a circuit breaker.

    Only network and API failures count against the breaker; a rejected
    token is a valid answer from a healthy dependency.
    """

    def __init__(
        self,
        breaker: Optional[CircuitBreaker] = None,
        timeout: float = BOT_VALIDATION_TIMEOUT,
        api_base: str = TELEGRAM_API_BASE,
    ):
        self.breaker = breaker or CircuitBreaker("telegram", expected_exception=(NetworkError, APIError))
        self.timeout = timeout
        self.api_base = api_base

    async def validate(self, token: str) -> BotInfo:
        """
        Raises:
            ValidationError: Token is malformed or rejected
            CircuitOpenError: Telegram is short-circuited
            NetworkError, APIError: Telegram could not be reached
        """
        # Malformed tokens never reach the breaker
        check_token_format(token)
        info = await self.breaker.call_async(fetch_bot_info, token, self.timeout, self.api_base)
        logger.info("Bot token validated", extra={"bot_username": info.username})
        return info

    def stats(self) -> Dict[str, Any]:
        return self.breaker.stats()

    def reset(self) -> None:
        self.breaker.reset()
