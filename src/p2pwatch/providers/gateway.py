import json
import logging
from typing import Any, Dict, List, Optional

import requests
from cryptography.hazmat.primitives import hashes, hmac

from ..state.models import Order, OrderListing
from ..utils.logging import json_msg
from ..utils.time import now_ms
from .base import OrderGateway, RemoteError, TransportError

logger = logging.getLogger(__name__)

PENDING_LIST_PATH = '/v5/p2p/order/pending/simplifyList'
ORDER_INFO_PATH = '/v5/p2p/order/info'
ORDER_FINISH_PATH = '/v5/p2p/order/finish'


def sign_payload(secret: str, timestamp: str, api_key: str, recv_window: str, body: str) -> str:
    """Hex HMAC-SHA256 over timestamp + api key + recv window + body."""
    h = hmac.HMAC(secret.encode('utf-8'), hashes.SHA256())
    h.update((timestamp + api_key + recv_window + body).encode('utf-8'))
    return h.finalize().hex()


class BybitP2PGateway(OrderGateway):
    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        recv_window_ms: int = 5000,
        timeout: float = 10.0,
        page_size: int = 10,
        max_pages: int = 1,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self._api_secret = api_secret
        self.recv_window = str(int(recv_window_ms))
        self.timeout = timeout
        self.page_size = int(page_size)
        self.max_pages = max(1, int(max_pages))
        self.session = session or requests.Session()

    def _endpoint(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _signed_headers(self, body: str) -> Dict[str, str]:
        ts = str(now_ms())
        return {
            'X-BAPI-SIGN': sign_payload(self._api_secret, ts, self.api_key, self.recv_window, body),
            'X-BAPI-API-KEY': self.api_key,
            'X-BAPI-TIMESTAMP': ts,
            'X-BAPI-RECV-WINDOW': self.recv_window,
            'Content-Type': 'application/json',
        }

    def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        """POST a signed body and return the envelope's ``result``.

        Raises TransportError for network/timeout/decoding problems and
        RemoteError when ret_code is non-zero.
        """
        url = self._endpoint(path)
        # the signature covers these exact bytes, so serialize once
        body = json.dumps(payload, separators=(',', ':'), ensure_ascii=False)
        headers = self._signed_headers(body)
        t0 = now_ms()
        try:
            r = self.session.post(url, data=body.encode('utf-8'), headers=headers, timeout=self.timeout)
            r.raise_for_status()
            j = r.json()
        except requests.RequestException as e:
            raise TransportError(f"{path}: {e}") from e
        except ValueError as e:
            raise TransportError(f"{path}: undecodable response: {e}") from e
        latency = now_ms() - t0

        if not isinstance(j, dict):
            raise TransportError(f"{path}: unexpected JSON root type {type(j).__name__}")
        code = j.get('ret_code', j.get('retCode'))
        message = j.get('ret_msg', j.get('retMsg')) or ''
        try:
            code = int(code)
        except (TypeError, ValueError):
            raise TransportError(f"{path}: response without result code keys={list(j.keys())}")
        logger.debug(json_msg({'event': 'gateway_response', 'path': path, 'ret_code': code, 'latency_ms': latency}))
        if code != 0:
            raise RemoteError(code, str(message), path)
        return j.get('result')

    def list_pending_orders(self) -> OrderListing:
        orders: List[Order] = []
        truncated = False
        total = None
        for page in range(1, self.max_pages + 1):
            result = self._post(PENDING_LIST_PATH, {
                'status': None,
                'side': None,
                'page': page,
                'size': self.page_size,
            })
            items = (result or {}).get('items') if isinstance(result, dict) else None
            if not isinstance(items, list):
                items = []
            if isinstance(result, dict) and result.get('count') is not None:
                try:
                    total = int(result['count'])
                except (TypeError, ValueError):
                    total = None
            orders.extend(Order.from_api(o) for o in items if isinstance(o, dict))
            if len(items) < self.page_size:
                break
        else:
            # stopped at max_pages on a full page
            truncated = total is None or len(orders) < total
        if truncated:
            logger.warning(json_msg({'event': 'pending_list_truncated', 'fetched': len(orders),
                                     'count': total, 'max_pages': self.max_pages}))
        return OrderListing((o for o in orders if o.order_id), truncated=truncated)

    def fetch_order_detail(self, order_id: str) -> Optional[Order]:
        try:
            result = self._post(ORDER_INFO_PATH, {'orderId': order_id})
        except RemoteError as e:
            logger.error(json_msg({'event': 'order_detail_failed', 'order_id': order_id, 'ret_code': e.code, 'ret_msg': e.message}))
            return None
        if not isinstance(result, dict):
            logger.error(json_msg({'event': 'order_detail_empty', 'order_id': order_id}))
            return None
        order = Order.from_api(result)
        if not order.order_id:
            # some responses omit the id on the detail object
            order = Order.from_api(dict(result, id=order_id))
        return order

    def finalize_order(self, order_id: str) -> None:
        logger.info(json_msg({'event': 'finalize_request', 'order_id': order_id}))
        self._post(ORDER_FINISH_PATH, {'orderId': order_id})
        logger.info(json_msg({'event': 'finalize_ok', 'order_id': order_id}))
