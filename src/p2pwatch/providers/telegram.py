import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..commands import InboundUpdate
from .base import NotificationSink, NotificationSinkError

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class TelegramNotifier(NotificationSink):
    """Telegram Bot API sink bound to a single operator chat."""

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 10.0, poll_timeout: int = 25,
                 session: Optional[requests.Session] = None, api_base: str = TELEGRAM_API):
        self.chat_id = str(chat_id)
        self.timeout = timeout
        self.poll_timeout = int(poll_timeout)
        self.base_url = f"{api_base.rstrip('/')}/bot{bot_token}"
        self.session = session or requests.Session()
        # getUpdates runs in its own worker thread while messages are sent
        self.poll_session = session or requests.Session()
        self._last_update_id = 0

    def _call(self, method: str, payload: Dict[str, Any], timeout: Optional[float] = None,
              session: Optional[requests.Session] = None) -> Any:
        url = f"{self.base_url}/{method}"
        try:
            r = (session or self.session).post(url, json=payload, timeout=timeout or self.timeout)
            data = r.json()
        except requests.RequestException as e:
            raise NotificationSinkError(f"{method}: {e}") from e
        except ValueError as e:
            raise NotificationSinkError(f"{method}: HTTP {r.status_code} undecodable body") from e
        if not isinstance(data, dict) or not data.get('ok'):
            description = data.get('description') if isinstance(data, dict) else data
            raise NotificationSinkError(f"{method}: HTTP {r.status_code} {description}")
        return data.get('result')

    def send_text(self, text: str) -> None:
        self._call('sendMessage', {
            'chat_id': self.chat_id,
            'text': text,
            'parse_mode': 'HTML',
            'disable_web_page_preview': True,
        })

    def send_choice(self, text: str, buttons: Sequence[tuple]) -> None:
        keyboard = [[{'text': label, 'callback_data': data} for label, data in buttons]]
        self._call('sendMessage', {
            'chat_id': self.chat_id,
            'text': text,
            'parse_mode': 'HTML',
            'disable_web_page_preview': True,
            'reply_markup': {'inline_keyboard': keyboard},
        })

    def acknowledge(self, callback_id: str, text: str = '') -> None:
        payload = {'callback_query_id': callback_id}
        if text:
            payload['text'] = text
        self._call('answerCallbackQuery', payload)

    def fetch_updates(self) -> List[InboundUpdate]:
        """Long-poll for button presses and text messages from the operator chat."""
        payload: Dict[str, Any] = {
            'timeout': self.poll_timeout,
            'allowed_updates': ['callback_query', 'message'],
        }
        if self._last_update_id > 0:
            payload['offset'] = self._last_update_id + 1

        result = self._call('getUpdates', payload, timeout=self.poll_timeout + self.timeout,
                            session=self.poll_session)
        updates: List[InboundUpdate] = []
        for update in result or []:
            update_id = update.get('update_id', 0)
            if update_id > self._last_update_id:
                self._last_update_id = update_id

            cb = update.get('callback_query')
            if cb:
                chat_id = str(((cb.get('message') or {}).get('chat') or {}).get('id', ''))
                if chat_id != self.chat_id:
                    logger.warning("Ignoring callback from unauthorized chat %s", chat_id)
                    continue
                updates.append(InboundUpdate(callback_data=cb.get('data') or '', callback_id=str(cb.get('id', ''))))
                continue

            msg = update.get('message')
            if not msg:
                continue
            chat_id = str((msg.get('chat') or {}).get('id', ''))
            if chat_id != self.chat_id:
                logger.warning("Ignoring message from unauthorized chat %s", chat_id)
                continue
            text = msg.get('text') or ''
            if text:
                updates.append(InboundUpdate(text=text))
        return updates
