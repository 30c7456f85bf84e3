import logging
from typing import Callable, List, Sequence

from ..state.models import (
    ConfirmationRequested,
    ConfirmationStage,
    Event,
    NewOrder,
    Order,
    OrderAppealed,
    OrderCanceled,
    OrderCompleted,
    OrderStatus,
    StatusChanged,
    UnreadMessage,
)
from ..state.store import ConfirmationBook, OrderStateStore
from ..utils.logging import json_msg
from ..utils.time import now_s
from .base import GatewayError, OrderGateway

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Diff a fresh pending-order listing against the last observed state."""

    def __init__(self, gateway: OrderGateway, store: OrderStateStore, confirmations: ConfirmationBook,
                 clock: Callable[[], float] = now_s):
        self.gateway = gateway
        self.store = store
        self.confirmations = confirmations
        self.clock = clock

    def reconcile(self, fresh: Sequence[Order]) -> List[Event]:
        events: List[Event] = []

        # A. everything still pending, in listing order
        for order in fresh:
            existing = self.store.get(order.order_id)
            if existing is None:
                self.store.put(order)
                logger.info(json_msg({'event': 'new_order', 'order_id': order.order_id, 'status': order.status}))
                events.append(NewOrder(order))
            elif existing.status != order.status:
                self.store.put(order)
                logger.info(json_msg({'event': 'status_changed', 'order_id': order.order_id,
                                      'old_status': existing.status, 'status': order.status}))
                events.append(StatusChanged(order, existing.status, order.status))

            # level-triggered: repeats every cycle while the counter is non-zero
            if order.has_unread:
                logger.info(json_msg({'event': 'unread_message', 'order_id': order.order_id,
                                      'unread': order.unread_count}))
                events.append(UnreadMessage(order))

            if order.status == OrderStatus.AWAITING_CONFIRMATION:
                if self.confirmations.open(order.order_id, self.clock()) is not None:
                    logger.info(json_msg({'event': 'confirmation_opened', 'order_id': order.order_id}))
                    events.append(ConfirmationRequested(order.order_id))

        # B. orders that dropped off the pending list reached a terminal state;
        # a truncated listing cannot tell a vanished order from an unfetched page
        if getattr(fresh, 'truncated', False):
            logger.warning(json_msg({'event': 'vanish_check_skipped', 'reason': 'listing_truncated',
                                     'fetched': len(fresh), 'tracked': len(self.store)}))
            return events

        for order_id in self.store.vanished(o.order_id for o in fresh):
            events.extend(self._resolve_vanished(order_id))
            self.store.remove(order_id)
            entry = self.confirmations.get(order_id)
            if entry is not None and entry.stage is not ConfirmationStage.FINALIZING:
                self.confirmations.close(order_id)
                logger.info(json_msg({'event': 'confirmation_dropped', 'order_id': order_id,
                                      'stage': entry.stage.value}))

        return events

    def _resolve_vanished(self, order_id: str) -> List[Event]:
        logger.info(json_msg({'event': 'order_vanished', 'order_id': order_id}))
        try:
            detail = self.gateway.fetch_order_detail(order_id)
        except GatewayError as e:
            logger.warning(json_msg({'event': 'vanished_detail_failed', 'order_id': order_id, 'error': str(e)}))
            return []
        if detail is None:
            return []

        status = detail.known_status
        logger.info(json_msg({'event': 'order_resolved', 'order_id': order_id, 'status': detail.status}))
        if status is OrderStatus.COMPLETED:
            return [OrderCompleted(detail)]
        if status is OrderStatus.CANCELED:
            return [OrderCanceled(order_id)]
        if status is OrderStatus.APPEALED:
            return [OrderAppealed(order_id)]
        return []

    def poll_cycle(self) -> List[Event]:
        """Fetch the pending listing and reconcile it.

        A failed listing propagates; the store is left untouched so the
        next cycle diffs against the same state.
        """
        fresh = self.gateway.list_pending_orders()
        return self.reconcile(fresh)
