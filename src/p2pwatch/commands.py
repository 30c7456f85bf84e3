"""Parse raw chat input into typed values.

Everything past this module works with ``Command`` and ``ButtonPress``;
no other module looks at command strings or callback payloads.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class CommandKind(str, Enum):
    ON = 'on'
    OFF = 'off'
    STATUS = 'status'
    HELP = 'help'


class ButtonAction(str, Enum):
    FIRST_CONFIRM = 'confirm1'
    SECOND_CONFIRM = 'confirm2'
    CANCEL = 'cancel'


@dataclass(frozen=True)
class Command:
    kind: CommandKind


@dataclass(frozen=True)
class ButtonPress:
    action: ButtonAction
    order_id: str
    callback_id: str = ''


@dataclass(frozen=True)
class InboundUpdate:
    """One update from the chat, as delivered by the sink."""
    text: str = ''
    callback_data: str = ''
    callback_id: str = ''


Inbound = Union[Command, ButtonPress]


def parse_command(text: Optional[str]) -> Optional[Command]:
    # the whole message must be the command; "off we go" is chat, not /off
    word = (text or '').strip().lower()
    if not word:
        return None
    if word.startswith('/'):
        word = word[1:]
    # group chats deliver "/status@SomeBot"
    word = word.split('@', 1)[0]
    try:
        return Command(CommandKind(word))
    except ValueError:
        return None


def callback_data(action: ButtonAction, order_id: str) -> str:
    return f"{action.value}_{order_id}"


def parse_callback(data: Optional[str], callback_id: str = '') -> Optional[ButtonPress]:
    raw = (data or '').strip()
    if '_' not in raw:
        return None
    action_raw, order_id = raw.split('_', 1)
    if not order_id:
        return None
    try:
        action = ButtonAction(action_raw)
    except ValueError:
        return None
    return ButtonPress(action=action, order_id=order_id, callback_id=callback_id)


def parse_update(update: InboundUpdate) -> Optional[Inbound]:
    if update.callback_data:
        return parse_callback(update.callback_data, update.callback_id)
    return parse_command(update.text)
