"""
Node relay
Forwards signed raw transactions to an Ethereum-style JSON-RPC node and
reads the node's head for health reporting
"""

import itertools
import logging
import re
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

RAW_TX_PATTERN = re.compile(r"^0x[0-9a-fA-F]+$")


class NodeRPCError(Exception):
    """JSON-RPC call failed or the node returned an error object"""


class NodeRelay:
    """Thin JSON-RPC client for the node backing the explorer"""

    def __init__(self, rpc_url: str, timeout: int = 15, retry_count: int = 3):
        self.rpc_url = rpc_url.rstrip("/")
        self.timeout = timeout
        self._ids = itertools.count(1)

        # Retries apply to idempotent verbs only; eth_sendRawTransaction is a POST
        self.session = requests.Session()
        retry = Retry(
            total=retry_count, backoff_factor=0.5, status_forcelist=[500, 502, 503, 504]
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"RPC {method} failed: {self.rpc_url} - {e}")
            raise NodeRPCError(str(e)) from e

        if not isinstance(body, dict):
            logger.error(f"RPC {method} returned a non-object reply: {body!r}")
            raise NodeRPCError(f"malformed RPC reply: {body!r}")
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise NodeRPCError(message or "unknown RPC error")
        return body.get("result")

    def send_raw_transaction(self, raw_tx: Any) -> Dict[str, Any]:
        """Relay a signed transaction; returns {success, hash} or {success, reason}"""
        if not isinstance(raw_tx, str) or not RAW_TX_PATTERN.match(raw_tx):
            return {"success": False, "reason": "Invalid raw transaction"}
        try:
            tx_hash = self._call("eth_sendRawTransaction", [raw_tx])
        except NodeRPCError as e:
            logger.warning(f"Raw transaction rejected: {e}")
            return {"success": False, "reason": str(e)}
        logger.info(f"Relayed transaction {tx_hash}")
        return {"success": True, "hash": tx_hash}

    def latest_block_number(self) -> Optional[int]:
        """Node head, or None when the node cannot be reached"""
        try:
            result = self._call("eth_blockNumber")
            return int(result, 16)
        except (NodeRPCError, TypeError, ValueError) as e:
            logger.warning(f"RPC health degraded: {e}")
            return None
