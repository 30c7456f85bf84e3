from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Union


class OrderStatus(IntEnum):
    """Bybit P2P order status codes this watcher acts on.

    The numeric values are the exchange's contract. Any other code is kept on
    the order as a plain int and only compared for change detection.
    """
    PENDING = 10
    AWAITING_CONFIRMATION = 20
    APPEALED = 30
    CANCELED = 40
    COMPLETED = 50


def known_status(code: int) -> Optional[OrderStatus]:
    try:
        return OrderStatus(code)
    except ValueError:
        return None


def _as_int(raw: Any, default: int = 0) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _as_text(raw: Any) -> str:
    if raw is None:
        return ''
    return str(raw)


@dataclass(frozen=True)
class Order:
    order_id: str
    status: int
    amount: str = ''
    currency_id: str = ''
    token_id: str = ''
    token_quantity: str = ''
    buyer_name: str = ''
    seller_name: str = ''
    price: str = ''
    unread_count: int = 0

    @property
    def known_status(self) -> Optional[OrderStatus]:
        return known_status(self.status)

    @property
    def has_unread(self) -> bool:
        return self.unread_count != 0

    @classmethod
    def from_api(cls, o: Dict[str, Any]) -> 'Order':
        # the pending list and the detail endpoint name a few fields differently
        return cls(
            order_id=_as_text(o.get('id') or o.get('orderId')),
            status=_as_int(o.get('status'), default=-1),
            amount=_as_text(o.get('amount')),
            currency_id=_as_text(o.get('currencyId')),
            token_id=_as_text(o.get('tokenId')),
            token_quantity=_as_text(o.get('notifyTokenQuantity') or o.get('quantity')),
            buyer_name=_as_text(o.get('buyerRealName')),
            seller_name=_as_text(o.get('sellerRealName')),
            price=_as_text(o.get('price')),
            unread_count=_as_int(o.get('selfUnreadMsgCount')),
        )


class OrderListing(list):
    """Orders from one pending listing.

    ``truncated`` is set when the page walk stopped before the end of the
    listing, so an order missing from it may still be pending.
    """

    def __init__(self, orders=(), truncated: bool = False):
        super().__init__(orders)
        self.truncated = truncated


# Diff engine events

@dataclass(frozen=True)
class NewOrder:
    order: Order


@dataclass(frozen=True)
class StatusChanged:
    order: Order
    old_status: int
    new_status: int


@dataclass(frozen=True)
class UnreadMessage:
    order: Order


@dataclass(frozen=True)
class ConfirmationRequested:
    order_id: str


@dataclass(frozen=True)
class OrderCompleted:
    order: Order


@dataclass(frozen=True)
class OrderCanceled:
    order_id: str


@dataclass(frozen=True)
class OrderAppealed:
    order_id: str


Event = Union[
    NewOrder,
    StatusChanged,
    UnreadMessage,
    ConfirmationRequested,
    OrderCompleted,
    OrderCanceled,
    OrderAppealed,
]


class ConfirmationStage(str, Enum):
    AWAITING_FIRST_APPROVAL = 'AWAITING_FIRST_APPROVAL'
    AWAITING_SECOND_APPROVAL = 'AWAITING_SECOND_APPROVAL'
    FINALIZING = 'FINALIZING'


@dataclass
class ConfirmationEntry:
    order_id: str
    created_ts: float
    stage: ConfirmationStage = ConfirmationStage.AWAITING_FIRST_APPROVAL
    finalize_calls: int = 0


@dataclass
class WatchState:
    monitoring_enabled: bool = False
    orders: Dict[str, Order] = field(default_factory=dict)
    confirmations: Dict[str, ConfirmationEntry] = field(default_factory=dict)
    cycles: int = 0
