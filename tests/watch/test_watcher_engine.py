import asyncio
import threading
import time

import pytest

from p2pwatch.commands import ButtonAction, ButtonPress, Command, CommandKind, InboundUpdate, callback_data
from p2pwatch.config import WatchConfig
from p2pwatch.engine import Tick, Watcher
from p2pwatch.messages import HELP_TEXT, MONITORING_OFF, MONITORING_ON
from p2pwatch.providers.base import NotificationSinkError, TransportError
from p2pwatch.state.models import ConfirmationStage, Order


def make_config(**overrides):
    values = dict(
        telegram_token='t', telegram_chat_id='42', telegram_poll_timeout_s=0,
        bybit_api_key='k', bybit_api_secret='s', bybit_base_url='https://api.bybit.test',
        recv_window_ms=5000, http_timeout_s=1.0, poll_s=0.01, page_size=10, max_pages=1,
        monitoring_enabled=False, finalize_enabled=True, confirmation_timeout_s=None,
        log_level='INFO', log_file='',
    )
    values.update(overrides)
    return WatchConfig(**values)


class FakeGateway:
    def __init__(self, pending=None, details=None):
        self.pending = list(pending or [])
        self.details = dict(details or {})
        self.list_calls = 0
        self.list_error = None
        self.finalize_calls = []

    def list_pending_orders(self):
        self.list_calls += 1
        if self.list_error:
            raise self.list_error
        return list(self.pending)

    def fetch_order_detail(self, order_id):
        return self.details.get(order_id)

    def finalize_order(self, order_id):
        self.finalize_calls.append(order_id)


class FakeSink:
    def __init__(self, fail=False):
        self.fail = fail
        self.texts = []
        self.choices = []
        self.acks = []
        self.updates = []

    def send_text(self, text):
        if self.fail:
            raise NotificationSinkError('sendMessage: HTTP 502')
        self.texts.append(text)

    def send_choice(self, text, buttons):
        if self.fail:
            raise NotificationSinkError('sendMessage: HTTP 502')
        self.choices.append((text, list(buttons)))

    def acknowledge(self, callback_id, text=''):
        self.acks.append(callback_id)

    def fetch_updates(self):
        out, self.updates = self.updates, []
        return out


def make_watcher(gateway=None, sink=None, **overrides):
    gw = gateway or FakeGateway()
    sk = sink or FakeSink()
    return Watcher(make_config(**overrides), gateway=gw, sink=sk), gw, sk


def test_monitoring_defaults_off_and_tick_makes_no_network_call():
    w, gw, sink = make_watcher(FakeGateway(pending=[Order('X1', 10)]))
    assert w.state.monitoring_enabled is False
    asyncio.run(w.on_tick())
    assert gw.list_calls == 0
    assert sink.texts == []


def test_on_off_status_help_commands():
    w, gw, sink = make_watcher()

    async def scenario():
        await w.on_command(Command(CommandKind.ON))
        assert w.state.monitoring_enabled is True
        await w.on_command(Command(CommandKind.STATUS))
        await w.on_command(Command(CommandKind.OFF))
        assert w.state.monitoring_enabled is False
        await w.on_command(Command(CommandKind.STATUS))
        await w.on_command(Command(CommandKind.HELP))

    asyncio.run(scenario())
    assert sink.texts == [MONITORING_ON, MONITORING_ON, MONITORING_OFF, MONITORING_OFF, HELP_TEXT]
    assert gw.list_calls == 0


def test_new_order_notifies_operator():
    w, gw, sink = make_watcher(FakeGateway(pending=[Order('X1', 10, amount='5000', currency_id='RUB')]),
                               monitoring_enabled=True)
    asyncio.run(w.on_tick())
    assert gw.list_calls == 1
    assert len(sink.texts) == 1
    assert 'New order' in sink.texts[0]
    assert '5000 RUB' in sink.texts[0]
    assert w.store.get('X1').status == 10


def test_full_release_flow():
    gw = FakeGateway(pending=[Order('X1', 10)])
    w, gw, sink = make_watcher(gw, monitoring_enabled=True)

    async def scenario():
        await w.on_tick()
        gw.pending = [Order('X1', 20)]
        await w.on_tick()
        assert w.confirmations.get('X1').stage is ConfirmationStage.AWAITING_FIRST_APPROVAL
        await w.on_press(ButtonPress(ButtonAction.FIRST_CONFIRM, 'X1', callback_id='cb1'))
        await w.on_press(ButtonPress(ButtonAction.SECOND_CONFIRM, 'X1', callback_id='cb2'))
        await w.on_press(ButtonPress(ButtonAction.SECOND_CONFIRM, 'X1', callback_id='cb3'))

    asyncio.run(scenario())
    assert gw.finalize_calls == ['X1']
    assert 'X1' not in w.confirmations
    first_text, first_buttons = sink.choices[0]
    assert first_buttons == [('Confirm', callback_data(ButtonAction.FIRST_CONFIRM, 'X1')),
                             ('No', callback_data(ButtonAction.CANCEL, 'X1'))]
    second_text, second_buttons = sink.choices[1]
    assert second_buttons[0][1] == 'confirm2_X1'
    assert any('released successfully' in t for t in sink.texts)
    assert sink.acks == ['cb1', 'cb2', 'cb3']


def test_listing_failure_is_logged_and_next_cycle_runs():
    gw = FakeGateway(pending=[Order('X1', 10)])
    w, gw, sink = make_watcher(gw, monitoring_enabled=True)

    async def scenario():
        gw.list_error = TransportError('connect timeout')
        await w.on_tick()
        gw.list_error = None
        await w.on_tick()

    asyncio.run(scenario())
    assert gw.list_calls == 2
    assert 'X1' in w.store


def test_sink_failure_does_not_break_the_cycle():
    gw = FakeGateway(pending=[Order('X1', 20)])
    w, gw, sink = make_watcher(gw, FakeSink(fail=True), monitoring_enabled=True)
    asyncio.run(w.on_tick())
    assert 'X1' in w.store
    assert 'X1' in w.confirmations


def test_tick_is_dropped_while_one_is_pending():
    w, gw, sink = make_watcher(monitoring_enabled=True)

    async def scenario():
        assert w.submit_tick() is True
        assert w.submit_tick() is False
        assert w.inbox.qsize() == 1
        msg = w.inbox.get_nowait()
        assert isinstance(msg, Tick)
        await w.dispatch(msg)
        assert w.submit_tick() is True

    asyncio.run(scenario())
    assert gw.list_calls == 1


def test_run_processes_updates_until_stopped():
    gw = FakeGateway(pending=[Order('X1', 20)])
    sink = FakeSink()
    sink.updates = [
        InboundUpdate(text='/ON'),
        InboundUpdate(text='hello'),
        InboundUpdate(callback_data='bogus'),
    ]
    w, gw, sink = make_watcher(gw, sink)

    async def scenario():
        task = asyncio.create_task(w.run())
        for _ in range(200):
            await asyncio.sleep(0.01)
            if w.confirmations.get('X1') is not None:
                break
        w.stop()
        await asyncio.wait_for(task, timeout=5)

    asyncio.run(scenario())
    assert w.state.monitoring_enabled is True
    assert MONITORING_ON in sink.texts
    assert w.confirmations.get('X1') is not None
    assert gw.list_calls >= 1


def test_expired_confirmation_is_reported_on_tick():
    now = [1000.0]
    gw = FakeGateway(pending=[Order('X1', 20)])
    w = Watcher(make_config(monitoring_enabled=True, confirmation_timeout_s=60), gateway=gw, sink=FakeSink(),
                clock=lambda: now[0])
    sink = w.sink

    async def scenario():
        await w.on_tick()
        assert 'X1' in w.confirmations
        now[0] += 61
        await w.on_tick()

    asyncio.run(scenario())
    assert any('expired' in t for t in sink.texts)
    # still waiting for release, so a fresh prompt follows the expiry
    assert len(sink.choices) == 2
    assert 'X1' in w.confirmations


class FlakySink(FakeSink):
    def __init__(self, error):
        super().__init__()
        self.error = error
        self.fetch_calls = 0

    def fetch_updates(self):
        self.fetch_calls += 1
        if self.fetch_calls == 1:
            raise self.error
        if self.fetch_calls == 2:
            return [InboundUpdate(text='/on')]
        return []


@pytest.mark.parametrize('error', [
    NotificationSinkError('getUpdates: HTTP 502'),
    AttributeError("'NoneType' object has no attribute 'get'"),
])
def test_listener_recovers_after_fetch_failure(error):
    sink = FlakySink(error)
    w, gw, sink = make_watcher(sink=sink)
    w.listen_backoff_s = 0.01

    async def scenario():
        task = asyncio.create_task(w.run())
        for _ in range(300):
            await asyncio.sleep(0.01)
            if w.state.monitoring_enabled:
                break
        w.stop()
        await asyncio.wait_for(task, timeout=5)

    asyncio.run(scenario())
    assert sink.fetch_calls >= 2
    assert w.state.monitoring_enabled is True
    assert MONITORING_ON in sink.texts


def test_crashed_producer_is_restarted():
    w, gw, sink = make_watcher()
    w.listen_backoff_s = 0.01
    runs = []

    async def producer():
        runs.append(1)
        if len(runs) == 1:
            raise RuntimeError('boom')
        w.stop()

    async def scenario():
        w._running = True
        await asyncio.wait_for(w._supervise('producer', producer), timeout=5)

    asyncio.run(scenario())
    assert len(runs) == 2


class BlockingSink(FakeSink):
    """Long-poll that never answers until released."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def fetch_updates(self):
        self.release.wait(10)
        return []


def test_stop_does_not_wait_for_long_poll_in_flight():
    sink = BlockingSink()
    w, gw, sink = make_watcher(sink=sink)

    async def scenario():
        task = asyncio.create_task(w.run())
        await asyncio.sleep(0.05)
        w.stop()
        await asyncio.wait_for(task, timeout=5)

    started = time.monotonic()
    try:
        asyncio.run(scenario())
    finally:
        sink.release.set()
    assert time.monotonic() - started < 5
