import logging
import os

import httpx
from jinja2 import Environment, FileSystemLoader

from config import TELEGRAM_CONFIG

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")

_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    trim_blocks=True,
    lstrip_blocks=True,
    autoescape=False,
)


class NotificationError(Exception):
    """Raised when the result message could not be delivered"""


def render_result_message(summary):
    """Render the human-readable result message sent to the relay"""
    return _env.get_template("result_message.txt").render(**summary)


class TelegramNotifier:
    """Sends result messages through the Telegram Bot API."""

    def __init__(self, bot_token=None, chat_id=None, api_url=None, timeout=None, transport=None):
        self.bot_token = bot_token if bot_token is not None else TELEGRAM_CONFIG['bot_token']
        self.chat_id = chat_id if chat_id is not None else TELEGRAM_CONFIG['chat_id']
        self.api_url = (api_url or TELEGRAM_CONFIG['api_url']).rstrip("/")
        self.timeout = timeout if timeout is not None else TELEGRAM_CONFIG['timeout']
        self._transport = transport

    @property
    def configured(self):
        return bool(self.bot_token and self.chat_id)

    async def send(self, message):
        if not self.configured:
            raise NotificationError("Telegram bot token or chat id is not configured")

        url = f"{self.api_url}/bot{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": message, "parse_mode": "Markdown"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(url, json=payload)
        except httpx.RequestError as exc:
            raise NotificationError(f"HTTP request failed: {exc}") from exc

        if r.status_code != 200:
            error_detail = r.text
            try:
                error_detail = r.json().get("description", r.text)
            except ValueError:
                pass
            raise NotificationError(f"Telegram API Error: {r.status_code} - {error_detail}")

        logger.info("Result message delivered to chat %s", self.chat_id)
