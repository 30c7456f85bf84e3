from typing import Dict, Iterable, List, Optional

from .models import ConfirmationEntry, ConfirmationStage, Order, WatchState


class OrderStateStore:
    """Last observed snapshot per open order id."""

    def __init__(self, state: WatchState):
        self._state = state

    def get(self, order_id: str) -> Optional[Order]:
        return self._state.orders.get(order_id)

    def put(self, order: Order) -> None:
        self._state.orders[order.order_id] = order

    def remove(self, order_id: str) -> Optional[Order]:
        return self._state.orders.pop(order_id, None)

    def ids(self) -> List[str]:
        return list(self._state.orders.keys())

    def __contains__(self, order_id: str) -> bool:
        return order_id in self._state.orders

    def __len__(self) -> int:
        return len(self._state.orders)

    def vanished(self, fresh_ids: Iterable[str]) -> List[str]:
        seen = set(fresh_ids)
        return [oid for oid in self._state.orders if oid not in seen]


class ConfirmationBook:
    """At most one confirmation entry per order id."""

    def __init__(self, state: WatchState):
        self._state = state

    def get(self, order_id: str) -> Optional[ConfirmationEntry]:
        return self._state.confirmations.get(order_id)

    def open(self, order_id: str, now_s: float) -> Optional[ConfirmationEntry]:
        # returns None when a workflow for this order is already running
        if order_id in self._state.confirmations:
            return None
        entry = ConfirmationEntry(order_id=order_id, created_ts=now_s)
        self._state.confirmations[order_id] = entry
        return entry

    def advance(self, order_id: str, stage: ConfirmationStage) -> None:
        self._state.confirmations[order_id].stage = stage

    def close(self, order_id: str) -> Optional[ConfirmationEntry]:
        return self._state.confirmations.pop(order_id, None)

    def expired(self, now_s: float, timeout_s: Optional[float]) -> List[ConfirmationEntry]:
        if timeout_s is None:
            return []
        return [
            e for e in self._state.confirmations.values()
            if e.stage is not ConfirmationStage.FINALIZING and now_s - e.created_ts >= timeout_s
        ]

    def __contains__(self, order_id: str) -> bool:
        return order_id in self._state.confirmations

    def __len__(self) -> int:
        return len(self._state.confirmations)

    def to_dict(self) -> Dict[str, str]:
        return {oid: e.stage.value for oid, e in self._state.confirmations.items()}
