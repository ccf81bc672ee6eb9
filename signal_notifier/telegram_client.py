from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import ProxyHandler, Request, build_opener

MAX_MESSAGE_LENGTH = 4096


@dataclass(frozen=True)
class TelegramConfig:
    """Configuration for sending desk status messages to Telegram."""

    bot_token: str
    chat_id: str
    proxy: str | None = None
    timeout: float = 10.0
    max_retries: int = 3
    initial_retry_delay: float = 1.0
    max_retry_delay: float = 30.0
    retry_backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if not self.bot_token.strip():
            raise ValueError("Telegram bot token must not be empty")
        if not self.chat_id.strip():
            raise ValueError("Telegram chat_id must not be empty")
        if self.timeout <= 0:
            raise ValueError("Telegram timeout must be positive")
        if self.max_retries < 1:
            raise ValueError("Telegram max_retries must be at least 1")
        if self.initial_retry_delay <= 0 or self.max_retry_delay <= 0:
            raise ValueError("Telegram retry delays must be positive")
        if self.retry_backoff_multiplier < 1:
            raise ValueError("Telegram retry_backoff_multiplier must be >= 1")

    def as_proxy_dict(self) -> Dict[str, str] | None:
        proxy = (self.proxy or "").strip()
        if not proxy:
            return None
        return {"http": proxy, "https": proxy}


def _retry_after(payload: Mapping[str, Any]) -> float | None:
    parameters = payload.get("parameters") or {}
    try:
        value = float(parameters.get("retry_after"))
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def truncate_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class TelegramClient:
    """Thin client for the Telegram Bot API ``sendMessage`` call."""

    def __init__(
        self, config: TelegramConfig, logger: logging.Logger | None = None
    ) -> None:
        self._config = config
        self._log = logger or logging.getLogger(__name__)
        self._send_message_url = (
            f"https://api.telegram.org/bot{config.bot_token}/sendMessage"
        )
        handlers = []
        proxy_dict = config.as_proxy_dict()
        if proxy_dict:
            handlers.append(ProxyHandler(proxy_dict))
        self._opener = build_opener(*handlers)

    @property
    def chat_id(self) -> str:
        return self._config.chat_id

    def send_message(self, text: str, *, silent: bool = False) -> None:
        """Send ``text`` to the configured chat, retrying transient failures.

        Raises:
            ValueError: If ``text`` is blank
            RuntimeError: If the message could not be delivered
        """
        message = str(text)
        if not message.strip():
            raise ValueError("Telegram message text must not be empty")

        encoded = urlencode(
            {
                "chat_id": self._config.chat_id,
                "text": truncate_message(message),
                "disable_web_page_preview": "true",
                "disable_notification": "true" if silent else "false",
            }
        ).encode("utf-8")

        delay = self._config.initial_retry_delay
        last_attempt = self._config.max_retries - 1
        for attempt in range(self._config.max_retries):
            try:
                data = self._post(encoded)
                if data.get("ok"):
                    self._log.debug("Sent message to Telegram chat %s", self._config.chat_id)
                    return
                retry, description, retry_after = self._classify_api_error(data)
            except HTTPError as exc:
                retry, description, retry_after = self._classify_http_error(exc)
                if not retry or attempt == last_attempt:
                    raise RuntimeError(
                        f"Telegram HTTP error {exc.code}: {description}"
                    ) from exc
            except URLError as exc:
                if attempt == last_attempt:
                    raise RuntimeError(
                        f"Telegram connection error: {exc.reason or exc}"
                    ) from exc
                retry, description, retry_after = True, str(exc.reason or exc), None
            else:
                if not retry or attempt == last_attempt:
                    raise RuntimeError(f"Telegram API error: {description}")

            if retry_after is not None:
                delay = max(delay, retry_after)
            self._log.warning(
                "Telegram send failed (%s), retrying in %.1fs...", description, delay
            )
            time.sleep(delay)
            delay = min(
                delay * self._config.retry_backoff_multiplier,
                self._config.max_retry_delay,
            )

        raise RuntimeError("Telegram send failed after retries")

    def _post(self, encoded: bytes) -> Dict[str, Any]:
        request = Request(
            self._send_message_url,
            data=encoded,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        with self._opener.open(request, timeout=self._config.timeout) as response:
            body = response.read()
        return json.loads(body)

    @staticmethod
    def _classify_api_error(
        data: Mapping[str, Any],
    ) -> Tuple[bool, str, float | None]:
        description = str(data.get("description", "unknown error"))
        retry = data.get("error_code") == 429 or "Too Many Requests" in description
        return retry, description, _retry_after(data)

    @staticmethod
    def _classify_http_error(exc: HTTPError) -> Tuple[bool, str, float | None]:
        body = exc.read().decode("utf-8", errors="ignore") if hasattr(exc, "read") else ""
        description = body
        retry_after: float | None = None
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            description = str(payload.get("description", body))
            retry_after = _retry_after(payload)
        header = exc.headers.get("Retry-After") if exc.headers else None
        if retry_after is None and header:
            try:
                retry_after = float(header) if float(header) > 0 else None
            except (TypeError, ValueError):
                retry_after = None
        retry = exc.code >= 500 or exc.code in (429, 408)
        return retry, description, retry_after
