from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from sms_relay.common.config import TelegramConfig
from sms_relay.common.metrics import metrics, measure_time
from sms_relay.common.models import DestinationInfo, Failure, OutboundResult, Success


def describe_error(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


class TelegramClient:
    """Stateless wrapper around the two Telegram Bot API calls the relay uses.

    Every call is a single attempt. Errors never escape as exceptions; they
    come back as ``Failure`` with a human readable reason.
    """

    def __init__(
        self,
        api_base: str = "https://api.telegram.org",
        connect_timeout: float = 15,
        read_timeout: float = 30,
        total_timeout: float = 30,
        max_message_length: int = 3900,
    ):
        self.api_base = api_base.rstrip("/")
        self.max_message_length = max_message_length
        self.timeout = aiohttp.ClientTimeout(
            total=total_timeout,
            connect=connect_timeout,
            sock_read=read_timeout,
        )

    @classmethod
    def from_config(cls, config: TelegramConfig) -> "TelegramClient":
        return cls(
            api_base=config.api_base,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            total_timeout=config.total_timeout,
            max_message_length=config.max_message_length,
        )

    def _url(self, token: str, method: str) -> str:
        return f"{self.api_base}/bot{token}/{method}"

    def _redacted_url(self, method: str) -> str:
        return f"{self.api_base}/bot***/{method}"

    @measure_time(metrics.request_latency, {"operation": "sendMessage"})
    async def send(self, token: str, destination_id: str, text: str) -> OutboundResult:
        """Deliver ``text`` to a chat, truncated to the service limit."""
        safe_text = text[: self.max_message_length]
        if len(safe_text) < len(text):
            logger.debug(
                f"Truncated message from {len(text)} to {len(safe_text)} characters"
            )

        form = {"chat_id": destination_id, "text": safe_text}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self._url(token, "sendMessage"), data=form) as response:
                    if 200 <= response.status < 300:
                        metrics.send_total.inc()
                        logger.info(
                            f"Message delivered to chat {destination_id} "
                            f"(status={response.status})"
                        )
                        return Success()

                    metrics.send_errors.labels(status_code=response.status).inc()
                    response_text = await response.text()
                    logger.error(
                        f"Failed to deliver message to {self._redacted_url('sendMessage')} "
                        f"(status={response.status}): {response_text}"
                    )
                    return Failure(reason=f"Telegram API error {response.status}")
        except Exception as e:
            metrics.send_errors.labels(status_code="error").inc()
            logger.error(
                f"Error delivering message to {self._redacted_url('sendMessage')}: {e!r}"
            )
            return Failure(reason=describe_error(e))

    @measure_time(metrics.request_latency, {"operation": "getUpdates"})
    async def list_destinations(self, token: str) -> OutboundResult:
        """List the chats that recently talked to the bot.

        On success the result value is a list of ``DestinationInfo``.
        """
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(self._url(token, "getUpdates")) as response:
                    if not 200 <= response.status < 300:
                        body = await response.text()
                        metrics.lookup_errors.inc()
                        logger.error(f"getUpdates returned status {response.status}: {body}")
                        return Failure(reason=f"Telegram API error {response.status}")

                    try:
                        envelope = await response.json(content_type=None)
                    except (aiohttp.ContentTypeError, ValueError):
                        metrics.lookup_errors.inc()
                        logger.error("getUpdates returned a body that is not JSON")
                        return Failure(reason="Malformed response from Telegram")
        except Exception as e:
            metrics.lookup_errors.inc()
            logger.error(
                f"Error fetching updates from {self._redacted_url('getUpdates')}: {e!r}"
            )
            return Failure(reason=describe_error(e))

        if not isinstance(envelope, dict):
            metrics.lookup_errors.inc()
            return Failure(reason="Malformed response from Telegram")

        if envelope.get("ok") is not True:
            metrics.lookup_errors.inc()
            description = envelope.get("description") or "request was not successful"
            logger.warning(f"getUpdates envelope not ok: {description}")
            return Failure(reason=f"Telegram API error: {description}")

        updates = envelope.get("result")
        if updates is None:
            updates = []
        if not isinstance(updates, list):
            metrics.lookup_errors.inc()
            return Failure(reason="Malformed response from Telegram")

        destinations = parse_destinations(updates)
        metrics.lookup_total.inc()
        logger.info(f"Found {len(destinations)} destination chat(s)")
        return Success(value=destinations)


def _chat_from_update(update: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(update, dict):
        return None
    message = update.get("message")
    if not isinstance(message, dict):
        return None
    chat = message.get("chat")
    if not isinstance(chat, dict):
        return None
    return chat


def parse_destinations(updates: List[Any]) -> List[DestinationInfo]:
    """Extract unique chats from a getUpdates result, first occurrence wins."""
    destinations: Dict[int, DestinationInfo] = {}
    for update in updates:
        chat = _chat_from_update(update)
        if chat is None:
            continue

        chat_id = chat.get("id")
        # bool is an int subclass but never a valid chat id
        if not isinstance(chat_id, int) or isinstance(chat_id, bool):
            logger.debug(f"Skipping chat without a numeric id: {chat!r}")
            continue
        if chat_id in destinations:
            continue

        destinations[chat_id] = DestinationInfo(
            id=chat_id,
            first_name=str(chat.get("first_name") or ""),
            username=str(chat.get("username") or ""),
            title=str(chat.get("title") or ""),
        )

    return list(destinations.values())
