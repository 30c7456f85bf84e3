"""Operator-facing text for every event, notice and command reply (Telegram HTML)."""
import html
from typing import List, Optional, Tuple

from .commands import ButtonAction, callback_data
from .providers.confirmation import (
    ConfirmationCanceled,
    ConfirmationExpired,
    FinalizeFailed,
    FinalizeSucceeded,
    Notice,
    ReconfirmPrompt,
)
from .state.models import (
    ConfirmationRequested,
    Event,
    NewOrder,
    Order,
    OrderAppealed,
    OrderCanceled,
    OrderCompleted,
    StatusChanged,
    UnreadMessage,
    known_status,
)

Buttons = List[Tuple[str, str]]

HELP_TEXT = (
    "ℹ️ <b>P2P watcher</b>\n\n"
    "/on - start watching orders\n"
    "/off - stop watching orders\n"
    "/status - show whether watching is on\n"
    "/help - show this message\n\n"
    "The bot reports:\n"
    "• new P2P orders\n"
    "• order status changes\n"
    "• new chat messages on an order\n"
    "• orders waiting for release, with a double confirmation\n\n"
    "Use the buttons to confirm releasing an order."
)

MONITORING_ON = "✅ P2P monitoring is on."
MONITORING_OFF = "📴 P2P monitoring is off."


def _e(value) -> str:
    return html.escape(str(value), quote=False)


def status_label(code: int) -> str:
    status = known_status(code)
    if status is None:
        return str(code)
    return f"{status.name.lower().replace('_', ' ')} ({code})"


def format_order(order: Order) -> str:
    return (
        f"ID: {_e(order.order_id)}\n"
        f"Amount: {_e(order.amount)} {_e(order.currency_id)}\n"
        f"Token: {_e(order.token_id)} ({_e(order.token_quantity)})\n"
        f"Buyer: {_e(order.buyer_name)}\n"
        f"Seller: {_e(order.seller_name)}\n"
        f"Price: {_e(order.price)}"
    )


def first_prompt(order_id: str) -> Tuple[str, Buttons]:
    text = f"❗ Confirm releasing order <b>{_e(order_id)}</b>?"
    return text, [
        ("Confirm", callback_data(ButtonAction.FIRST_CONFIRM, order_id)),
        ("No", callback_data(ButtonAction.CANCEL, order_id)),
    ]


def second_prompt(order_id: str) -> Tuple[str, Buttons]:
    text = f"❓ Are you sure you want to release order <b>{_e(order_id)}</b>? This cannot be undone."
    return text, [
        ("Yes", callback_data(ButtonAction.SECOND_CONFIRM, order_id)),
        ("No", callback_data(ButtonAction.CANCEL, order_id)),
    ]


def render_event(event: Event) -> Tuple[str, Optional[Buttons]]:
    if isinstance(event, NewOrder):
        return f"🔔 New order:\n{format_order(event.order)}", None
    if isinstance(event, StatusChanged):
        return (f"🔄 Order {_e(event.order.order_id)} status changed: "
                f"{status_label(event.old_status)} → {status_label(event.new_status)}"), None
    if isinstance(event, UnreadMessage):
        return f"💬 New message on order {_e(event.order.order_id)}", None
    if isinstance(event, ConfirmationRequested):
        return first_prompt(event.order_id)
    if isinstance(event, OrderCompleted):
        return f"✅ Order {_e(event.order.order_id)} completed!\n{format_order(event.order)}", None
    if isinstance(event, OrderCanceled):
        return f"❌ Order {_e(event.order_id)} was canceled.", None
    if isinstance(event, OrderAppealed):
        return f"⚠️ Appeal opened on order {_e(event.order_id)}!", None
    raise TypeError(f"unknown event {event!r}")


def render_notice(notice: Notice) -> Tuple[str, Optional[Buttons]]:
    if isinstance(notice, ReconfirmPrompt):
        return second_prompt(notice.order_id)
    if isinstance(notice, ConfirmationCanceled):
        return f"❌ Confirmation canceled for order {_e(notice.order_id)}", None
    if isinstance(notice, FinalizeSucceeded):
        prefix = "[DRY RUN] " if notice.simulated else ""
        return f"✅ {prefix}Order {_e(notice.order_id)} released successfully", None
    if isinstance(notice, FinalizeFailed):
        return f"⚠️ Failed to release order {_e(notice.order_id)}: {_e(notice.detail)}", None
    if isinstance(notice, ConfirmationExpired):
        return (f"⌛ Confirmation for order {_e(notice.order_id)} expired. "
                f"It will be asked again while the order waits for release."), None
    raise TypeError(f"unknown notice {notice!r}")


def monitoring_state(enabled: bool) -> str:
    return MONITORING_ON if enabled else MONITORING_OFF
