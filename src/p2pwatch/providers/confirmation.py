"""Two-step operator approval in front of the irreversible finish call.

Stages per order (see ConfirmationStage):

    (none) --requested--> AWAITING_FIRST_APPROVAL --confirm1--> AWAITING_SECOND_APPROVAL
    AWAITING_SECOND_APPROVAL --confirm2--> FINALIZING --outcome--> (none)
    AWAITING_*_APPROVAL --cancel--> (none)

Presses that do not match the current stage, or arrive for an order with no
entry, change nothing. There is no timeout unless one is configured.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from ..commands import ButtonAction, ButtonPress
from ..state.models import ConfirmationStage
from ..state.store import ConfirmationBook
from ..utils.logging import json_msg
from ..utils.time import now_s
from .base import GatewayError, OrderGateway, RemoteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconfirmPrompt:
    order_id: str


@dataclass(frozen=True)
class ConfirmationCanceled:
    order_id: str


@dataclass(frozen=True)
class FinalizeSucceeded:
    order_id: str
    simulated: bool = False


@dataclass(frozen=True)
class FinalizeFailed:
    order_id: str
    detail: str


@dataclass(frozen=True)
class ConfirmationExpired:
    order_id: str


Notice = Union[ReconfirmPrompt, ConfirmationCanceled, FinalizeSucceeded, FinalizeFailed, ConfirmationExpired]


class ConfirmationService:
    def __init__(self, gateway: OrderGateway, book: ConfirmationBook, finalize_enabled: bool = True,
                 timeout_s: Optional[float] = None, clock: Callable[[], float] = now_s):
        self.gateway = gateway
        self.book = book
        self.finalize_enabled = finalize_enabled
        self.timeout_s = timeout_s
        self.clock = clock

    def handle(self, press: ButtonPress) -> List[Notice]:
        entry = self.book.get(press.order_id)
        if entry is None:
            logger.info(json_msg({'event': 'press_without_entry', 'order_id': press.order_id,
                                  'action': press.action.value}))
            return []

        stage = entry.stage
        if press.action is ButtonAction.CANCEL and stage is not ConfirmationStage.FINALIZING:
            self.book.close(press.order_id)
            logger.info(json_msg({'event': 'confirmation_canceled', 'order_id': press.order_id, 'stage': stage.value}))
            return [ConfirmationCanceled(press.order_id)]

        if press.action is ButtonAction.FIRST_CONFIRM and stage is ConfirmationStage.AWAITING_FIRST_APPROVAL:
            self.book.advance(press.order_id, ConfirmationStage.AWAITING_SECOND_APPROVAL)
            logger.info(json_msg({'event': 'first_approval', 'order_id': press.order_id}))
            return [ReconfirmPrompt(press.order_id)]

        if press.action is ButtonAction.SECOND_CONFIRM and stage is ConfirmationStage.AWAITING_SECOND_APPROVAL:
            return [self._finalize(press.order_id)]

        logger.warning(json_msg({'event': 'press_out_of_stage', 'order_id': press.order_id,
                                 'action': press.action.value, 'stage': stage.value}))
        return []

    def _finalize(self, order_id: str) -> Notice:
        entry = self.book.get(order_id)
        self.book.advance(order_id, ConfirmationStage.FINALIZING)
        entry.finalize_calls += 1
        try:
            if not self.finalize_enabled:
                logger.info(json_msg({'event': 'finalize_simulated', 'order_id': order_id}))
                return FinalizeSucceeded(order_id, simulated=True)
            self.gateway.finalize_order(order_id)
            logger.info(json_msg({'event': 'finalize_ok', 'order_id': order_id}))
            return FinalizeSucceeded(order_id)
        except RemoteError as e:
            logger.error(json_msg({'event': 'finalize_rejected', 'order_id': order_id, 'ret_code': e.code, 'ret_msg': e.message}))
            return FinalizeFailed(order_id, e.message or str(e))
        except GatewayError as e:
            logger.error(json_msg({'event': 'finalize_failed', 'order_id': order_id, 'error': str(e)}))
            return FinalizeFailed(order_id, str(e))
        finally:
            # success or failure, the workflow is over; no automatic retry
            self.book.close(order_id)

    def expire(self) -> List[Notice]:
        notices: List[Notice] = []
        for entry in self.book.expired(self.clock(), self.timeout_s):
            self.book.close(entry.order_id)
            logger.info(json_msg({'event': 'confirmation_expired', 'order_id': entry.order_id, 'stage': entry.stage.value}))
            notices.append(ConfirmationExpired(entry.order_id))
        return notices
