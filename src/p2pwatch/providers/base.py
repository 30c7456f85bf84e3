from typing import List, Optional, Sequence

from ..state.models import Order


class GatewayError(Exception):
    """Any failure talking to the order gateway."""


class TransportError(GatewayError):
    """Network failure, timeout or an unreadable response body."""


class RemoteError(GatewayError):
    """The exchange answered with a non-zero result code."""

    def __init__(self, code: int, message: str, path: str = ''):
        super().__init__(f"{path} ret_code={code} ret_msg={message}" if path else f"ret_code={code} ret_msg={message}")
        self.code = code
        self.message = message
        self.path = path


class NotificationSinkError(Exception):
    """A chat message could not be delivered."""


class OrderGateway:
    """Abstract-ish interface for the remote order service.

    Methods:
      - list_pending_orders() -> List[Order]; raises TransportError / RemoteError
      - fetch_order_detail(order_id) -> Optional[Order]; None on RemoteError, raises TransportError
      - finalize_order(order_id) -> None; raises TransportError / RemoteError
    """

    def list_pending_orders(self) -> List[Order]:
        raise NotImplementedError()

    def fetch_order_detail(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError()

    def finalize_order(self, order_id: str) -> None:
        raise NotImplementedError()


class NotificationSink:
    """Abstract-ish interface for the operator chat.

    Outbound calls raise NotificationSinkError on delivery failure.
    fetch_updates() returns raw inbound updates (already filtered to the
    operator chat) for the commands module to parse.
    """

    def send_text(self, text: str) -> None:
        raise NotImplementedError()

    def send_choice(self, text: str, buttons: Sequence[tuple]) -> None:
        """buttons: (label, callback_data) pairs rendered as one row."""
        raise NotImplementedError()

    def fetch_updates(self) -> list:
        """Return a list of commands.InboundUpdate from the operator chat."""
        raise NotImplementedError()

    def acknowledge(self, callback_id: str, text: str = '') -> None:
        return None
