import pytest

from p2pwatch.commands import (
    ButtonAction,
    ButtonPress,
    Command,
    CommandKind,
    InboundUpdate,
    callback_data,
    parse_callback,
    parse_command,
    parse_update,
)


@pytest.mark.parametrize('text,kind', [
    ('/on', CommandKind.ON),
    ('/OFF', CommandKind.OFF),
    ('status', CommandKind.STATUS),
    ('  /Help  ', CommandKind.HELP),
    ('/status@P2PWatchBot', CommandKind.STATUS),
])
def test_commands_are_case_insensitive(text, kind):
    assert parse_command(text) == Command(kind)


@pytest.mark.parametrize('text', ['', None, '/start', 'hello there', '/', 'onn', 'off we go', 'status of X1?', '/on now'])
def test_unknown_text_is_not_a_command(text):
    assert parse_command(text) is None


def test_callback_round_trip_keeps_order_id():
    data = callback_data(ButtonAction.SECOND_CONFIRM, '1852374629184')
    assert data == 'confirm2_1852374629184'
    assert parse_callback(data, 'cb') == ButtonPress(ButtonAction.SECOND_CONFIRM, '1852374629184', 'cb')


def test_callback_order_id_may_contain_separator():
    assert parse_callback('cancel_A_B').order_id == 'A_B'


@pytest.mark.parametrize('data', ['', 'confirm1', 'confirm1_', 'approve_1', 'm:status'])
def test_malformed_callbacks_are_rejected(data):
    assert parse_callback(data) is None


def test_parse_update_prefers_callback_data():
    assert parse_update(InboundUpdate(text='/on', callback_data='confirm1_9', callback_id='c')) == \
        ButtonPress(ButtonAction.FIRST_CONFIRM, '9', 'c')
    assert parse_update(InboundUpdate(text='/off')) == Command(CommandKind.OFF)
