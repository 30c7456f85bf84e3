import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from .commands import ButtonPress, Command, CommandKind, parse_update
from .config import WatchConfig
from .messages import HELP_TEXT, monitoring_state, render_event, render_notice
from .providers.base import GatewayError, NotificationSink, NotificationSinkError, OrderGateway
from .providers.confirmation import ConfirmationService, Notice
from .providers.gateway import BybitP2PGateway
from .providers.reconciliation import ReconciliationService
from .providers.telegram import TelegramNotifier
from .state.models import Event, WatchState
from .state.store import ConfirmationBook, OrderStateStore
from .utils.logging import json_msg
from .utils.time import now_s

logger = logging.getLogger(__name__)

MAX_LISTEN_BACKOFF = 60  # seconds


@dataclass(frozen=True)
class Tick:
    pass


InboxMessage = Union[Tick, Command, ButtonPress]


class Watcher:
    """Owns all watcher state; every mutation happens on the inbox consumer.

    Ticks and chat input are queued on one inbox and handled one at a time,
    so a poll cycle never overlaps another poll cycle or an operator press.
    """

    def __init__(self, config: WatchConfig, gateway: Optional[OrderGateway] = None,
                 sink: Optional[NotificationSink] = None, clock: Callable[[], float] = now_s):
        self.config = config
        self.gateway = gateway or BybitP2PGateway(
            config.bybit_base_url,
            config.bybit_api_key,
            config.bybit_api_secret,
            recv_window_ms=config.recv_window_ms,
            timeout=config.http_timeout_s,
            page_size=config.page_size,
            max_pages=config.max_pages,
        )
        self.sink = sink or TelegramNotifier(
            config.telegram_token,
            config.telegram_chat_id,
            timeout=config.http_timeout_s,
            poll_timeout=config.telegram_poll_timeout_s,
        )
        self.state = WatchState(monitoring_enabled=config.monitoring_enabled)
        self.store = OrderStateStore(self.state)
        self.confirmations = ConfirmationBook(self.state)
        self.recon = ReconciliationService(self.gateway, self.store, self.confirmations, clock=clock)
        self.confirm = ConfirmationService(
            self.gateway,
            self.confirmations,
            finalize_enabled=config.finalize_enabled,
            timeout_s=config.confirmation_timeout_s,
            clock=clock,
        )
        self._inbox: Optional[asyncio.Queue] = None
        self._tick_pending = False
        self._running = False
        self.listen_backoff_s = 1.0

    @property
    def inbox(self) -> asyncio.Queue:
        # created lazily so it binds to the running loop
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        return self._inbox

    # outbound

    async def _notify(self, text: str, buttons: Optional[Sequence[tuple]] = None) -> bool:
        try:
            if buttons:
                await asyncio.to_thread(self.sink.send_choice, text, buttons)
            else:
                await asyncio.to_thread(self.sink.send_text, text)
            return True
        except NotificationSinkError as e:
            logger.error(json_msg({'event': 'notify_failed', 'error': str(e)}))
            return False

    async def _deliver_events(self, events: Sequence[Event]) -> None:
        for event in events:
            text, buttons = render_event(event)
            await self._notify(text, buttons)

    async def _deliver_notices(self, notices: Sequence[Notice]) -> None:
        for notice in notices:
            text, buttons = render_notice(notice)
            await self._notify(text, buttons)

    # handlers

    async def poll_once(self) -> list:
        if not self.state.monitoring_enabled:
            logger.debug(json_msg({'event': 'poll_skipped', 'reason': 'monitoring_disabled'}))
            return []
        self.state.cycles += 1
        try:
            events = await asyncio.to_thread(self.recon.poll_cycle)
        except GatewayError as e:
            logger.warning(json_msg({'event': 'poll_failed', 'cycle': self.state.cycles, 'error': str(e)}))
            return []
        logger.info(json_msg({'event': 'poll_done', 'cycle': self.state.cycles, 'tracked': len(self.store),
                              'confirmations': len(self.confirmations), 'events': len(events)}))
        await self._deliver_events(events)
        return events

    async def on_tick(self) -> None:
        try:
            await self._deliver_notices(self.confirm.expire())
            await self.poll_once()
        finally:
            self._tick_pending = False

    async def on_command(self, cmd: Command) -> None:
        if cmd.kind is CommandKind.ON:
            self.state.monitoring_enabled = True
        elif cmd.kind is CommandKind.OFF:
            self.state.monitoring_enabled = False
        if cmd.kind is CommandKind.HELP:
            await self._notify(HELP_TEXT)
            return
        logger.info(json_msg({'event': 'command', 'command': cmd.kind.value,
                              'monitoring_enabled': self.state.monitoring_enabled}))
        await self._notify(monitoring_state(self.state.monitoring_enabled))

    async def on_press(self, press: ButtonPress) -> None:
        if press.callback_id:
            try:
                await asyncio.to_thread(self.sink.acknowledge, press.callback_id)
            except NotificationSinkError as e:
                logger.warning(json_msg({'event': 'ack_failed', 'error': str(e)}))
        notices = await asyncio.to_thread(self.confirm.handle, press)
        await self._deliver_notices(notices)

    async def dispatch(self, msg: InboxMessage) -> None:
        if isinstance(msg, Tick):
            await self.on_tick()
        elif isinstance(msg, Command):
            await self.on_command(msg)
        elif isinstance(msg, ButtonPress):
            await self.on_press(msg)
        else:
            logger.warning(json_msg({'event': 'unknown_inbox_message', 'type': type(msg).__name__}))

    # producers

    def submit_tick(self) -> bool:
        if self._tick_pending:
            logger.info(json_msg({'event': 'tick_dropped', 'reason': 'cycle_in_flight'}))
            return False
        self._tick_pending = True
        self.inbox.put_nowait(Tick())
        return True

    async def ticker(self) -> None:
        while self._running:
            self.submit_tick()
            await asyncio.sleep(self.config.poll_s)

    @staticmethod
    async def _in_daemon_thread(fn: Callable[[], Any]) -> Any:
        """Run ``fn`` on a daemon thread so a long-poll in flight never holds up shutdown."""
        loop = asyncio.get_running_loop()
        fut = loop.create_future()

        def _settle(result, error):
            if fut.done():
                return
            if error is not None:
                fut.set_exception(error)
            else:
                fut.set_result(result)

        def _worker():
            try:
                result, error = fn(), None
            except Exception as e:
                result, error = None, e
            try:
                loop.call_soon_threadsafe(_settle, result, error)
            except RuntimeError:
                # loop already closed
                pass

        threading.Thread(target=_worker, daemon=True, name='p2pwatch-updates').start()
        return await fut

    async def listen(self) -> None:
        backoff = self.listen_backoff_s
        while self._running:
            try:
                updates = await self._in_daemon_thread(self.sink.fetch_updates)
                backoff = self.listen_backoff_s
            except NotificationSinkError as e:
                logger.error(json_msg({'event': 'fetch_updates_failed', 'error': str(e), 'retry_in_s': backoff}))
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_LISTEN_BACKOFF)
                continue
            except Exception:
                logger.exception(json_msg({'event': 'fetch_updates_crashed', 'retry_in_s': backoff}))
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_LISTEN_BACKOFF)
                continue
            for update in updates:
                try:
                    parsed = parse_update(update)
                except Exception:
                    logger.exception('unparseable update: %r', update)
                    continue
                if parsed is None:
                    logger.debug(json_msg({'event': 'update_ignored', 'text': update.text, 'data': update.callback_data}))
                    continue
                self.inbox.put_nowait(parsed)

    async def _supervise(self, name: str, factory: Callable[[], Awaitable[None]]) -> None:
        # producers are restarted until the watcher stops
        while self._running:
            try:
                await factory()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(json_msg({'event': 'task_crashed', 'task': name, 'restart_in_s': self.listen_backoff_s}))
                await asyncio.sleep(self.listen_backoff_s)

    async def process(self) -> None:
        while self._running:
            try:
                msg = await asyncio.wait_for(self.inbox.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await self.dispatch(msg)
            except Exception:
                # one bad message must not stop the actor
                logger.exception('inbox message failed: %r', msg)

    async def run(self) -> None:
        self._running = True
        logger.info(json_msg({'event': 'watcher_start', 'monitoring_enabled': self.state.monitoring_enabled,
                              'finalize_enabled': self.config.finalize_enabled,
                              'poll_s': self.config.poll_s,
                              'confirmation_timeout_s': self.config.confirmation_timeout_s}))
        tasks: List[asyncio.Task] = [
            asyncio.create_task(self._supervise('ticker', self.ticker)),
            asyncio.create_task(self._supervise('listen', self.listen)),
        ]
        try:
            await self.process()
        finally:
            self._running = False
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(json_msg({'event': 'watcher_stop', 'tracked': len(self.store),
                                  'confirmations': self.confirmations.to_dict()}))

    def stop(self) -> None:
        self._running = False
