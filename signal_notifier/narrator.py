from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Dict, Tuple

from .telegram_client import TelegramClient

DEFAULT_THROTTLE_SECONDS = 30.0


class TelegramNarrator:
    """Status narrator that mirrors the desk's narrative to a Telegram chat.

    Delivery happens on a single background worker so messages keep their
    order and the caller never waits on the network. A line identical to the
    last one delivered for the same symbol is suppressed for
    ``throttle_seconds``; changed lines and errors are always sent.
    """

    def __init__(
        self,
        client: TelegramClient,
        *,
        throttle_seconds: float = DEFAULT_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        executor: Executor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if throttle_seconds < 0:
            raise ValueError("throttle_seconds must be non-negative")
        self._client = client
        self._throttle = throttle_seconds
        self._clock = clock
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="telegram-narrator"
        )
        self._log = logger or logging.getLogger(__name__)
        self._last_sent: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def update_status_narrative(self, symbol: str, text: str) -> None:
        if not text or not text.strip():
            return
        now = self._clock()
        with self._lock:
            previous = self._last_sent.get(symbol)
            if previous is not None:
                last_text, sent_at = previous
                if last_text == text and now - sent_at < self._throttle:
                    self._log.debug("Throttled repeated narrative for %s", symbol)
                    return
            self._last_sent[symbol] = (text, now)
        self._submit(f"[{symbol}] {text}", silent=True)

    def report_error(self, message: str) -> None:
        self._submit(f"❌ {message}", silent=False)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _submit(self, message: str, *, silent: bool) -> None:
        try:
            self._executor.submit(self._deliver, message, silent)
        except RuntimeError as exc:
            # Executor already shut down.
            self._log.warning("Dropping Telegram message: %s", exc)

    def _deliver(self, message: str, silent: bool) -> None:
        try:
            self._client.send_message(message, silent=silent)
        except Exception:  # pragma: no cover - delivery is best effort
            self._log.exception("Failed to deliver Telegram message")
