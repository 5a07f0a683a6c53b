"""Telegram notification sink for operational alerts.

Messages are queued and delivered by a background worker so that a slow
or failing Telegram API never blocks a reconciliation pass.
"""

import queue
import threading

import requests

from vault_secret_syncer import console

TELEGRAM_API_URL = "https://api.telegram.org"

_QUEUE_SIZE = 100
_SEND_TIMEOUT = 10


class TelegramNotifier:
    """Sends free-text alerts to a Telegram chat.

    Attributes:
        chat_id: Target chat id; 0 disables delivery.

    """

    def __init__(self, chat_id: int = 0, token: str = "", *, session: requests.Session | None = None) -> None:
        self.chat_id: int = chat_id
        self._token: str = token
        self._session = session or requests.Session()
        self._queue: queue.Queue[str | None] = queue.Queue(maxsize=_QUEUE_SIZE)
        self._thread: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"TelegramNotifier(chat_id={self.chat_id!r}, enabled={self.enabled!r})"

    @property
    def enabled(self) -> bool:
        return bool(self.chat_id and self._token)

    def configure(self, chat_id: int, token: str) -> None:
        """Replace the delivery credentials."""
        self.chat_id = chat_id
        self._token = token

    def start(self) -> None:
        """Start the delivery worker thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="telegram-notifier", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the worker after the messages already queued are delivered."""
        if self._thread is None:
            return
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            console.warning("Notification queue is full, dropping pending messages")
        self._thread.join(timeout)
        self._thread = None

    def send(self, message: str) -> None:
        """Queue a message for the running worker; never blocks and never raises.

        Args:
            message: The text to send.

        """
        if not self.enabled:
            console.debug(f"Telegram is not configured, dropping notification: {message}")
            return
        if self._thread is None:
            console.debug(f"Notifier is not running, dropping notification: {message}")
            return
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            console.warning("Notification queue is full, dropping message")

    def deliver(self, message: str) -> bool:
        """Post a message to the Telegram Bot API.

        Args:
            message: The text to send.

        Returns:
            True if Telegram accepted the message.

        """
        url = f"{TELEGRAM_API_URL}/bot{self._token}/sendMessage"
        try:
            response = self._session.post(
                url,
                json={"chat_id": self.chat_id, "text": message},
                timeout=_SEND_TIMEOUT,
            )
        except requests.RequestException as err:
            console.error(f"Failed to send Telegram notification: {err.__class__.__name__}")
            return False
        if response.status_code != 200:
            console.error(f"Failed to send Telegram notification. Status was {response.status_code}")
            return False
        return True

    def _run(self) -> None:
        while True:
            message = self._queue.get()
            if message is None:
                return
            self.deliver(message)
