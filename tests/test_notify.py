"""Tests for notify.py module."""

from unittest.mock import MagicMock

import requests
from conftest import wait_for

from vault_secret_syncer.notify import TELEGRAM_API_URL, TelegramNotifier


def make_session(status_code=200):
    session = MagicMock(spec=requests.Session)
    session.post.return_value.status_code = status_code
    return session


class TestTelegramNotifier:
    """Tests for Telegram delivery."""

    def test_disabled_without_credentials(self):
        """Test that nothing is sent until chat id and token are set."""
        session = make_session()
        notifier = TelegramNotifier(session=session)

        notifier.send("hello")

        assert not notifier.enabled
        session.post.assert_not_called()

    def test_deliver(self):
        """Test the Bot API request."""
        session = make_session()
        notifier = TelegramNotifier(-100123, "bot-token", session=session)

        assert notifier.deliver("hello")
        session.post.assert_called_once_with(
            f"{TELEGRAM_API_URL}/botbot-token/sendMessage",
            json={"chat_id": -100123, "text": "hello"},
            timeout=10,
        )

    def test_deliver_rejected(self):
        """Test that a non-200 response is reported as failure."""
        notifier = TelegramNotifier(-100123, "bot-token", session=make_session(401))

        assert not notifier.deliver("hello")

    def test_deliver_network_error(self):
        """Test that network errors are logged, not raised."""
        session = make_session()
        session.post.side_effect = requests.ConnectionError("no route")
        notifier = TelegramNotifier(-100123, "bot-token", session=session)

        assert not notifier.deliver("hello")

    def test_configure(self):
        """Test that credentials can be set after construction."""
        session = make_session()
        notifier = TelegramNotifier(session=session)

        notifier.configure(-100123, "bot-token")
        notifier.start()
        notifier.send("hello")
        notifier.stop(timeout=2)

        assert notifier.enabled
        session.post.assert_called_once()

    def test_send_without_worker_drops(self):
        """Test that messages sent before start or after stop are dropped."""
        session = make_session()
        notifier = TelegramNotifier(-100123, "bot-token", session=session)

        notifier.send("before start")
        notifier.start()
        notifier.stop(timeout=2)
        notifier.send("after stop")

        session.post.assert_not_called()

    def test_worker_delivers_queued_messages(self):
        """Test that started notifiers deliver from the background worker."""
        session = make_session()
        notifier = TelegramNotifier(-100123, "bot-token", session=session)
        notifier.start()

        notifier.send("one")
        notifier.send("two")
        notifier.stop(timeout=2)

        assert wait_for(lambda: session.post.call_count == 2)
        texts = [call.kwargs["json"]["text"] for call in session.post.call_args_list]
        assert texts == ["one", "two"]

    def test_send_never_raises(self):
        """Test that delivery failures never reach the caller."""
        session = make_session()
        session.post.side_effect = requests.Timeout("slow")
        notifier = TelegramNotifier(-100123, "bot-token", session=session)
        notifier.start()

        notifier.send("hello")
        notifier.stop(timeout=2)

        session.post.assert_called_once()
